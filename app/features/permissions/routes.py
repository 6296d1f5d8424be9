"""
Permission API routes.

Provides permission checks for the UI route guard, the caller's permission
matrix, record visibility, and management of grants and role assignments.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, BackgroundTasks
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.employees.dependencies import get_current_employee, get_employee_by_id
from app.features.employees.models import Employee
from app.features.permissions.exceptions import UnknownRoleError
from app.features.permissions.hierarchy import ScopeResolver
from app.features.permissions.models import (
    ASSIGNMENT_SOURCE_MANUAL,
    AuditLog,
    RoleAssignment,
)
from app.features.permissions.policy import PermissionEvaluator, PermissionPolicy
from app.features.permissions.roles import Action, Module, PermissionRoleId, RoleMapper
from app.features.permissions.schemas import (
    AssignRoleToEmployee,
    AuditLogListResponse,
    AuditLogResponse,
    GrantResponse,
    ModulePermissions,
    MyPermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PolicyReloadResponse,
    RoleAssignmentResponse,
    RoleMappingResponse,
    VisibleUsersResponse,
)
from app.features.permissions.dependencies import (
    create_audit_log,
    get_employee_role_ids,
    get_evaluator,
    get_policy,
    get_role_mapper,
    load_hierarchy,
    load_policy,
    require_permission,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(get_current_employee)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_evaluator)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)],
):
    """Check if the current employee may perform an action on a module."""
    role_ids = await get_employee_role_ids(db, current, mapper)
    scope = evaluator.scope_for(role_ids, check_request.module, check_request.action)

    return PermissionCheckResponse(
        has_permission=scope is not None,
        scope=scope,
        reason=None if scope is not None else "Permission denied"
    )


@router.get("/me", response_model=MyPermissionsResponse)
async def get_my_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(get_current_employee)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_evaluator)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)],
):
    """Get the current employee's roles and full permission matrix."""
    role_ids = await get_employee_role_ids(db, current, mapper)
    matrix = evaluator.permission_matrix(role_ids)

    return MyPermissionsResponse(
        employee_id=current.id,
        operational_role=current.role,
        roles=sorted(role_ids, key=lambda r: r.value),
        is_unrestricted=PermissionRoleId.SUPER_ADMIN in role_ids,
        modules=[ModulePermissions(module=module, actions=actions) for module, actions in matrix.items()],
    )


@router.get("/visible-users", response_model=VisibleUsersResponse)
async def get_visible_users(
    module: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(get_current_employee)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_evaluator)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)],
    action: str = "read",
):
    """List the employees whose records the caller may see in a module."""
    try:
        module_key = Module.parse(module)
        action_key = Action.parse(action)
    except UnknownRoleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    role_ids = await get_employee_role_ids(db, current, mapper)
    scope = evaluator.scope_for(role_ids, module_key, action_key)
    if scope is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: {action_key.value} on {module_key.value}"
        )

    snapshot = await load_hierarchy(db, current.tenant_id)
    visible = ScopeResolver(snapshot).visible_user_ids_for_scope(current.id, scope)

    return VisibleUsersResponse(
        module=module_key,
        action=action_key,
        scope=scope,
        user_ids=sorted(visible),
    )


# ============================================================================
# Role and Grant Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleMappingResponse])
async def list_role_mapping(
    current: Annotated[Employee, Depends(get_current_employee)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)],
):
    """List operational roles and the permission roles they map to."""
    return [
        RoleMappingResponse(
            operational_role=role,
            permission_roles=sorted(role_ids, key=lambda r: r.value),
        )
        for role, role_ids in mapper.mapping.items()
    ]


@router.get("/grants", response_model=List[GrantResponse])
async def list_grants(
    current: Annotated[Employee, Depends(require_permission("rbac", "read"))],
    policy: Annotated[PermissionPolicy, Depends(get_policy)],
    role: Optional[str] = None,
):
    """List the grants of the active policy, optionally for one role."""
    if role is None:
        grants = policy.grants()
    else:
        try:
            grants = policy.grants_for(PermissionRoleId.parse(role))
        except UnknownRoleError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [GrantResponse(role=g.role, module=g.module, action=g.action, scope=g.scope) for g in grants]


@router.post("/policy/reload", response_model=PolicyReloadResponse)
async def reload_policy(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(require_permission("rbac", "admin"))],
):
    """Rebuild the runtime policy from the permission_grants table."""
    policy = await load_policy(db)
    request.app.state.policy = policy
    log.info(f"Permission policy reloaded by {current.id}")

    await create_audit_log(
        db=db,
        employee_id=current.id,
        action="reload_policy",
        resource_type="permission_policy",
        tenant_id=current.tenant_id,
        details={"grants": len(policy)},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return PolicyReloadResponse(
        grants=len(policy),
        roles=sorted(policy.roles(), key=lambda r: r.value),
    )


# ============================================================================
# Assignment Routes
# ============================================================================

@router.get("/assignments/{employee_id}", response_model=List[RoleAssignmentResponse])
async def list_assignments(
    employee: Annotated[Employee, Depends(get_employee_by_id)],
    current: Annotated[Employee, Depends(require_permission("rbac", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_revoked: bool = False,
):
    """List role assignments of an employee."""
    stmt = select(RoleAssignment).where(RoleAssignment.employee_id == employee.id)
    if not include_revoked:
        stmt = stmt.where(RoleAssignment.is_active.is_(True))
    result = await db.execute(stmt.order_by(RoleAssignment.granted_at))
    return result.scalars().all()


@router.post("/assignments", response_model=RoleAssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_role(
    assignment: AssignRoleToEmployee,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(require_permission("rbac", "write"))],
):
    """Manually assign a permission role to an employee."""
    employee = await db.get(Employee, assignment.employee_id)
    if employee is None or employee.tenant_id != current.tenant_id:
        raise HTTPException(status_code=404, detail="Employee not found")
    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot assign roles to an inactive employee"
        )

    stmt = select(RoleAssignment).where(
        RoleAssignment.employee_id == employee.id,
        RoleAssignment.role == assignment.role,
        RoleAssignment.source == ASSIGNMENT_SOURCE_MANUAL,
        RoleAssignment.is_active.is_(True),
    )
    existing = (await db.execute(stmt)).scalars().first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role already assigned to employee"
        )

    db_assignment = RoleAssignment(
        tenant_id=employee.tenant_id,
        employee_id=employee.id,
        role=assignment.role,
        source=ASSIGNMENT_SOURCE_MANUAL,
        granted_by_id=current.id,
        granted_at=datetime.now(),
    )
    db.add(db_assignment)
    await db.commit()
    await db.refresh(db_assignment)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        employee_id=current.id,
        action="assign_role",
        resource_type="employee",
        resource_id=employee.id,
        tenant_id=employee.tenant_id,
        details={"role": assignment.role},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return db_assignment


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_role(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(require_permission("rbac", "write"))],
):
    """Revoke a manual role assignment."""
    db_assignment = await db.get(RoleAssignment, assignment_id)
    if db_assignment is None or db_assignment.tenant_id != current.tenant_id:
        raise HTTPException(status_code=404, detail="Assignment not found")
    if db_assignment.source != ASSIGNMENT_SOURCE_MANUAL:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Operational assignments follow the employee's role; change the role instead"
        )

    if db_assignment.is_active:
        db_assignment.is_active = False
        db_assignment.revoked_at = datetime.now()
        await db.commit()

        background_tasks.add_task(
            create_audit_log,
            db=db,
            employee_id=current.id,
            action="revoke_role",
            resource_type="employee",
            resource_id=db_assignment.employee_id,
            tenant_id=db_assignment.tenant_id,
            details={"role": db_assignment.role, "assignment_id": assignment_id},
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )

    return None


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current: Annotated[Employee, Depends(require_permission("audit", "read"))],
    skip: int = 0,
    limit: int = 50,
    employee_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
):
    """List the tenant's audit logs with optional filtering."""
    stmt = select(AuditLog).where(AuditLog.tenant_id == current.tenant_id)

    if employee_id:
        stmt = stmt.where(AuditLog.employee_id == employee_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
