from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.employees.routes import router as employee_router
from app.features.tenants.routes import router as tenant_router
from app.features.permissions.routes import router as permission_router
from app.features.employees.dependencies import get_authorization_header
from app.features.permissions.dependencies import load_policy
from app.features.permissions.exceptions import RbacError
from app.features.permissions.policy import build_default_policy
from app.features.permissions.roles import RoleMapper
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Case Management Access Control",
    description="Tenant-scoped RBAC for the case management backend, with Appwrite authentication",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter

# Replaced with the stored policy on startup
app.state.policy = build_default_policy()
app.state.role_mapper = RoleMapper()


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(RbacError)
async def rbac_exception_handler(_request: Request, exc: RbacError):
    log.warning("Access control error: %s", exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.on_event("startup")
async def startup():
    """Initialize database and load the permission policy on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    async with AsyncSessionLocal() as db:
        app.state.policy = await load_policy(db)


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Case Management Access Control API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/employees/*", "/tenants/*", "/permissions/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "permissions": "Tenant-scoped RBAC with own/team/all record scopes",
            "employees": "Employees, operational roles and the reporting hierarchy",
            "tenants": "Multi-tenant firm isolation"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(employee_router, prefix="/employees", tags=["employees"])

# Tenant routes
app.include_router(tenant_router, prefix="/tenants", tags=["tenants"])

# Permission routes (RBAC)
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
