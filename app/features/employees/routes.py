"""
Employee feature routes.

Listings and lookups are restricted to the records the caller's scope makes
visible; role and manager changes keep role assignments and the reporting
hierarchy consistent.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status, Request, BackgroundTasks
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.employees.dependencies import get_current_employee
from app.features.employees.models import Employee
from app.features.employees.schemas import (
    EmployeeCreate,
    EmployeePublic,
    EmployeeResponse,
    EmployeeUpdate,
    TeamMember,
    TeamResponse,
)
from app.features.permissions.dependencies import (
    ScopedAccess,
    apply_scope,
    create_audit_log,
    get_role_mapper,
    load_hierarchy,
    require_permission,
    require_scope,
    sync_role_assignments,
)
from app.features.permissions.exceptions import HierarchyCycleError
from app.features.permissions.hierarchy import ScopeResolver
from app.features.permissions.roles import EmployeeStatus, RoleMapper
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["employees"])


async def _get_visible_employee(db: AsyncSession, access: ScopedAccess, employee_id: str) -> Employee:
    employee = await db.get(Employee, employee_id)
    if employee is None or employee.tenant_id != access.employee.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    if access.visible_user_ids is not None and employee.id not in access.visible_user_ids:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


async def _validate_manager(db: AsyncSession, tenant_id: str, manager_id: str) -> None:
    manager = await db.get(Employee, manager_id)
    if manager is None or manager.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Manager not found"
        )
    if not manager.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Manager is inactive"
        )


@router.get("/me", response_model=EmployeeResponse)
async def get_current_employee_profile(
    current: Annotated[Employee, Depends(get_current_employee)]
):
    """Get the current authenticated employee's profile."""
    return current


@router.get("/", response_model=list[EmployeeResponse])
async def list_employees(
    access: Annotated[ScopedAccess, Depends(require_scope("employees", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = False,
    skip: int = 0,
    limit: int = 50
):
    """List employees visible to the caller."""
    stmt = select(Employee).where(Employee.tenant_id == access.employee.tenant_id)
    stmt = apply_scope(stmt, Employee.id, access.visible_user_ids)
    if not include_inactive:
        stmt = stmt.where(func.lower(func.trim(Employee.status)) == EmployeeStatus.ACTIVE.value.lower())

    result = await db.execute(stmt.order_by(Employee.full_name).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: str,
    access: Annotated[ScopedAccess, Depends(require_scope("employees", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get an employee by ID."""
    return await _get_visible_employee(db, access, employee_id)


@router.post("/", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
async def create_employee(
    employee_data: EmployeeCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    current: Annotated[Employee, Depends(require_permission("employees", "write"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)]
):
    """Create an employee in the caller's tenant and assign their roles."""
    if employee_data.manager_id:
        await _validate_manager(db, current.tenant_id, employee_data.manager_id)

    employee = Employee(
        tenant_id=current.tenant_id,
        email=employee_data.email,
        full_name=employee_data.full_name,
        department=employee_data.department,
        role=employee_data.role.value,
        manager_id=employee_data.manager_id,
        status=EmployeeStatus.ACTIVE.value,
    )
    db.add(employee)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Employee with this email already exists"
        )

    await sync_role_assignments(db, employee, mapper, actor_id=current.id)
    await db.commit()
    await db.refresh(employee)

    background_tasks.add_task(
        create_audit_log,
        db=db,
        employee_id=current.id,
        action="create",
        resource_type="employee",
        resource_id=employee.id,
        tenant_id=employee.tenant_id,
        details={"role": employee.role, "manager_id": employee.manager_id},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return employee


@router.patch("/{employee_id}", response_model=EmployeeResponse)
async def update_employee(
    employee_id: str,
    update_data: EmployeeUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    current: Annotated[Employee, Depends(require_permission("employees", "write"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)]
):
    """Update an employee. Role changes re-sync role assignments."""
    employee = await db.get(Employee, employee_id)
    if employee is None or employee.tenant_id != current.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    changes = update_data.model_dump(exclude_unset=True)

    if "manager_id" in changes and changes["manager_id"] != employee.manager_id:
        new_manager_id = changes["manager_id"]
        if new_manager_id:
            await _validate_manager(db, employee.tenant_id, new_manager_id)
            snapshot = await load_hierarchy(db, employee.tenant_id)
            if ScopeResolver(snapshot).would_create_cycle(employee.id, new_manager_id):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Manager change would create a reporting cycle"
                )
        employee.manager_id = new_manager_id

    if changes.get("full_name") is not None:
        employee.full_name = changes["full_name"]
    if "department" in changes:
        employee.department = changes["department"]

    role_changed = changes.get("role") is not None and changes["role"].value != employee.role
    if role_changed:
        previous_role = employee.role
        employee.role = changes["role"].value
        await sync_role_assignments(db, employee, mapper, actor_id=current.id)
        log.info(f"Employee {employee.id} role changed {previous_role} -> {employee.role}")

    await db.commit()
    await db.refresh(employee)

    if role_changed:
        background_tasks.add_task(
            create_audit_log,
            db=db,
            employee_id=current.id,
            action="change_role",
            resource_type="employee",
            resource_id=employee.id,
            tenant_id=employee.tenant_id,
            details={"from": previous_role, "to": employee.role},
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )

    return employee


@router.delete("/{employee_id}")
async def deactivate_employee(
    employee_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    current: Annotated[Employee, Depends(require_permission("employees", "delete"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    mapper: Annotated[RoleMapper, Depends(get_role_mapper)]
):
    """Deactivate an employee and revoke all of their role assignments."""
    employee = await db.get(Employee, employee_id)
    if employee is None or employee.tenant_id != current.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    # Prevent self-deactivation
    if employee.id == current.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    employee.status = EmployeeStatus.INACTIVE.value
    await sync_role_assignments(db, employee, mapper, actor_id=current.id)
    await db.commit()

    background_tasks.add_task(
        create_audit_log,
        db=db,
        employee_id=current.id,
        action="deactivate",
        resource_type="employee",
        resource_id=employee.id,
        tenant_id=employee.tenant_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return {"message": "Employee deactivated successfully"}


@router.get("/{employee_id}/manager-chain", response_model=list[EmployeePublic])
async def get_manager_chain(
    employee_id: str,
    access: Annotated[ScopedAccess, Depends(require_scope("employees", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Managers above an employee, nearest first."""
    employee = await _get_visible_employee(db, access, employee_id)
    snapshot = await load_hierarchy(db, employee.tenant_id)
    try:
        chain = ScopeResolver(snapshot).manager_chain(employee.id)
    except HierarchyCycleError as e:
        log.error(str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reporting hierarchy contains a cycle")

    managers = {emp.id: emp for emp in (await db.execute(
        select(Employee).where(Employee.id.in_(chain))
    )).scalars().all()}
    return [managers[manager_id] for manager_id in chain if manager_id in managers]


@router.get("/{employee_id}/team", response_model=TeamResponse)
async def get_team(
    employee_id: str,
    access: Annotated[ScopedAccess, Depends(require_scope("employees", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Everyone whose records team scope makes visible to an employee, with their level."""
    employee = await _get_visible_employee(db, access, employee_id)
    snapshot = await load_hierarchy(db, employee.tenant_id)
    levels = ScopeResolver(snapshot).team_levels(employee.id)

    result = await db.execute(
        select(Employee).where(Employee.id.in_(sorted(levels))).order_by(Employee.full_name)
    )
    members = [
        TeamMember(id=emp.id, full_name=emp.full_name, role=emp.role, level=levels[emp.id])
        for emp in result.scalars().all()
    ]
    members.sort(key=lambda member: member.level)
    return TeamResponse(employee_id=employee.id, members=members)
