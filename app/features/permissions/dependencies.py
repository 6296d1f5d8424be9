"""
Permission checking utilities and dependencies.

Implements:
- Loading the permission policy and hierarchy snapshots from the database
- Resolving an employee's permission roles
- FastAPI dependencies for route protection and record scoping
- Role assignment synchronisation and audit logging helpers
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.employees.dependencies import get_current_employee
from app.features.employees.models import Employee
from app.features.permissions.exceptions import UnknownRoleError
from app.features.permissions.hierarchy import HierarchySnapshot, ScopeResolver
from app.features.permissions.models import (
    ASSIGNMENT_SOURCE_OPERATIONAL,
    AuditLog,
    PermissionGrant,
    RoleAssignment,
)
from app.features.permissions.policy import (
    DEFAULT_PERMISSIONS,
    PermissionEvaluator,
    PermissionPolicy,
    build_default_policy,
    default_grants,
)
from app.features.permissions.roles import Action, Module, PermissionRoleId, RoleMapper, Scope
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Policy loading
# ============================================================================

async def seed_default_grants(db: AsyncSession) -> int:
    """
    Write the default grant table into permission_grants.

    Existing rows are left alone. Returns the number of rows created.
    """
    descriptions = {
        (module, action, scope): description
        for _, module, action, scope, description in DEFAULT_PERMISSIONS
    }
    existing = {
        (row.role, row.module, row.action, row.scope)
        for row in (await db.execute(select(PermissionGrant))).scalars().all()
    }

    created = 0
    for grant in default_grants():
        key = (grant.role.value, grant.module.value, grant.action.value, grant.scope.value)
        if key in existing:
            continue
        db.add(PermissionGrant(
            role=key[0],
            module=key[1],
            action=key[2],
            scope=key[3],
            description=descriptions.get(key[1:]),
        ))
        existing.add(key)
        created += 1

    await db.commit()
    log.info(f"Seeded {created} permission grants")
    return created


async def load_policy(db: AsyncSession) -> PermissionPolicy:
    """
    Build the runtime policy from permission_grants.

    Invalid rows are skipped. An empty table falls back to the default grants
    (and seeds them when SEED_DEFAULT_GRANTS is on).
    """
    rows = (await db.execute(select(PermissionGrant))).scalars().all()
    if not rows:
        log.warning("No permission grants stored - using default policy")
        if config.SEED_DEFAULT_GRANTS:
            await seed_default_grants(db)
        return build_default_policy()

    policy = PermissionPolicy.from_grants(
        ((row.role, row.module, row.action, row.scope) for row in rows),
        strict=False,
    )
    log.info(f"Loaded permission policy with {len(policy)} grants from {len(rows)} rows")
    return policy


def get_policy(request: Request) -> PermissionPolicy:
    return request.app.state.policy


def get_evaluator(request: Request) -> PermissionEvaluator:
    return PermissionEvaluator(request.app.state.policy)


def get_role_mapper(request: Request) -> RoleMapper:
    return request.app.state.role_mapper


# ============================================================================
# Role and hierarchy lookups
# ============================================================================

async def get_employee_role_ids(
    db: AsyncSession,
    employee: Employee,
    mapper: RoleMapper
) -> frozenset[PermissionRoleId]:
    """
    Get the permission roles an employee holds.

    Union of the roles mapped from their operational role and their active
    manual assignments. Inactive employees hold nothing.
    """
    if not employee.is_active:
        return frozenset()

    role_ids = set(mapper.roles_for(employee.role))

    stmt = select(RoleAssignment.role).where(
        RoleAssignment.employee_id == employee.id,
        RoleAssignment.is_active.is_(True),
    )
    for role in (await db.execute(stmt)).scalars().all():
        try:
            role_ids.add(PermissionRoleId.parse(role))
        except UnknownRoleError as e:
            log.warning(f"Ignoring assignment for employee {employee.id}: {e}")

    return frozenset(role_ids)


async def load_hierarchy(db: AsyncSession, tenant_id: str) -> HierarchySnapshot:
    """Snapshot of one tenant's employees for the duration of a request."""
    result = await db.execute(select(Employee).where(Employee.tenant_id == tenant_id))
    return HierarchySnapshot(emp.to_record() for emp in result.scalars().all())


async def sync_role_assignments(
    db: AsyncSession,
    employee: Employee,
    mapper: RoleMapper,
    actor_id: Optional[str] = None
) -> list[RoleAssignment]:
    """
    Bring operational role assignments in line with the employee record.

    Called after an employee is created, changes role or is deactivated.
    Deactivation revokes every active assignment, manual ones included.
    Does not commit.
    """
    now = datetime.now()
    wanted = set() if not employee.is_active else {r.value for r in mapper.roles_for(employee.role)}

    stmt = select(RoleAssignment).where(
        RoleAssignment.employee_id == employee.id,
        RoleAssignment.is_active.is_(True),
    )
    active = (await db.execute(stmt)).scalars().all()

    kept: set[str] = set()
    for assignment in active:
        revoke = not employee.is_active or (
            assignment.source == ASSIGNMENT_SOURCE_OPERATIONAL and assignment.role not in wanted
        )
        if revoke:
            assignment.is_active = False
            assignment.revoked_at = now
            log.info(f"Revoked {assignment.role} from employee {employee.id}")
        elif assignment.source == ASSIGNMENT_SOURCE_OPERATIONAL:
            kept.add(assignment.role)

    created = []
    for role in sorted(wanted - kept):
        assignment = RoleAssignment(
            tenant_id=employee.tenant_id,
            employee_id=employee.id,
            role=role,
            source=ASSIGNMENT_SOURCE_OPERATIONAL,
            granted_by_id=actor_id,
            granted_at=now,
        )
        db.add(assignment)
        created.append(assignment)
        log.info(f"Assigned {role} to employee {employee.id}")

    return created


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_permission(module: str, action: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/employees")
        async def create_employee(
            employee: Employee = Depends(require_permission("employees", "write"))
        ):
            ...

    Raises:
        HTTPException: 403 if the employee doesn't have permission
    """
    module = Module.parse(module)
    action = Action.parse(action)

    async def permission_dependency(
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
        current: Annotated[Employee, Depends(get_current_employee)],
    ) -> Employee:
        role_ids = await get_employee_role_ids(db, current, get_role_mapper(request))
        if not get_evaluator(request).can_perform(role_ids, module, action):
            log.info(f"Employee {current.id} denied {action.value} on {module.value}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action.value} on {module.value}"
            )
        return current

    return permission_dependency


@dataclass(frozen=True)
class ScopedAccess:
    """Result of a scoped permission check for record-level filtering."""
    employee: Employee
    scope: Scope
    visible_user_ids: Optional[frozenset[str]]  # None means unrestricted


def require_scope(module: str, action: str = "read"):
    """
    FastAPI dependency resolving which owners' records the caller may see.

    Usage:
        @router.get("/employees")
        async def list_employees(access: ScopedAccess = Depends(require_scope("employees"))):
            stmt = apply_scope(select(Employee), Employee.id, access.visible_user_ids)
    """
    module = Module.parse(module)
    action = Action.parse(action)

    async def scope_dependency(
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
        current: Annotated[Employee, Depends(get_current_employee)],
    ) -> ScopedAccess:
        role_ids = await get_employee_role_ids(db, current, get_role_mapper(request))
        scope = get_evaluator(request).scope_for(role_ids, module, action)
        if scope is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action.value} on {module.value}"
            )
        if scope == Scope.ALL:
            return ScopedAccess(current, scope, None)

        snapshot = await load_hierarchy(db, current.tenant_id)
        visible = ScopeResolver(snapshot).visible_user_ids_for_scope(current.id, scope)
        return ScopedAccess(current, scope, visible)

    return scope_dependency


def apply_scope(stmt, owner_column, visible_user_ids: Optional[frozenset[str]]):
    """Restrict a select to rows owned by visible users. None leaves it unrestricted."""
    if visible_user_ids is None:
        return stmt
    return stmt.where(owner_column.in_(sorted(visible_user_ids)))


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    employee_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        employee_id: Employee performing the action
        action: Action performed (e.g., "assign_role", "revoke_role", "deactivate")
        resource_type: Type of resource (e.g., "employee", "role_assignment")
        resource_id: ID of the resource
        tenant_id: Tenant context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent
    """
    audit_log = AuditLog(
        employee_id=employee_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        tenant_id=tenant_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(
        f"Audit: employee={employee_id} action={action} resource={resource_type}:{resource_id} tenant={tenant_id}"
    )

    return audit_log
