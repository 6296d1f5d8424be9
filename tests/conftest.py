"""
Shared pytest fixtures.

The database URL is pointed at a throwaway SQLite file before any app module
is imported, so the engine in app.core.database.engine never touches data.db.
"""
import asyncio
import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="rbac-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["SEED_DEFAULT_GRANTS"] = "1"

from typing import Annotated  # noqa: E402

import pytest  # noqa: E402
from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.engine import AsyncSessionLocal, drop_db, get_db, init_db  # noqa: E402
from app.features.employees.dependencies import get_current_employee  # noqa: E402
from app.features.employees.models import Employee  # noqa: E402
from app.features.permissions.hierarchy import HierarchySnapshot  # noqa: E402
from app.features.tenants.models import Tenant  # noqa: E402
from tests.sample_org import OTHER_TENANT_ID, SAMPLE_ORG, TENANT_ID, make_snapshot  # noqa: E402


@pytest.fixture
def snapshot() -> HierarchySnapshot:
    """Immutable hierarchy of the sample organization."""
    return make_snapshot()


async def _seed_sample_org() -> None:
    async with AsyncSessionLocal() as db:
        db.add(Tenant(id=TENANT_ID, name="Sharma & Associates", slug="sharma"))
        db.add(Tenant(id=OTHER_TENANT_ID, name="Iyer Tax Chambers", slug="iyer"))
        await db.flush()
        for emp_id, tenant_id, role, manager_id, status in SAMPLE_ORG:
            db.add(Employee(
                id=emp_id,
                tenant_id=tenant_id,
                email=f"{emp_id}@{tenant_id}.lawfirm.com",
                full_name=f"Employee {emp_id[-3:]}",
                role=role,
                manager_id=manager_id,
                status=status,
            ))
            await db.flush()
        await db.commit()


@pytest.fixture
def database():
    """Fresh schema for each test."""
    asyncio.run(drop_db())
    asyncio.run(init_db())
    yield
    asyncio.run(drop_db())


@pytest.fixture
def sample_org(database):
    """Database populated with the sample organization."""
    asyncio.run(_seed_sample_org())


@pytest.fixture
def client(sample_org):
    """Test client; startup loads (and seeds) the default policy."""
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """
    Authenticate requests as the given employee id.

    Replaces the Appwrite JWT dependency with a plain database lookup.
    """
    from app.main import app

    def _login(employee_id: str) -> None:
        async def _current_employee(db: Annotated[AsyncSession, Depends(get_db)]) -> Employee:
            return await db.get(Employee, employee_id)

        app.dependency_overrides[get_current_employee] = _current_employee

    yield _login
    app.dependency_overrides.clear()
