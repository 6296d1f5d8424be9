"""
Tenant feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.employees.dependencies import get_current_employee
from app.features.employees.models import Employee
from app.features.permissions.dependencies import require_permission
from app.features.permissions.roles import EmployeeStatus
from app.features.tenants.models import Tenant
from app.features.tenants.schemas import TenantResponse, TenantSummary


router = APIRouter(tags=["tenants"])


async def _get_tenant(db: AsyncSession, tenant_id: str) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )
    return tenant


@router.get("/current", response_model=TenantResponse)
async def get_current_tenant(
    current: Annotated[Employee, Depends(get_current_employee)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the tenant the current employee belongs to."""
    return await _get_tenant(db, current.tenant_id)


@router.get("/current/summary", response_model=TenantSummary)
async def get_current_tenant_summary(
    current: Annotated[Employee, Depends(require_permission("settings", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the current tenant with employee headcounts."""
    tenant = await _get_tenant(db, current.tenant_id)

    result = await db.execute(
        select(Employee.status, func.count(Employee.id))
        .where(Employee.tenant_id == tenant.id)
        .group_by(Employee.status)
    )
    counts = dict(result.all())
    active_count = sum(
        count for stored, count in counts.items()
        if EmployeeStatus.from_stored(stored) is EmployeeStatus.ACTIVE
    )

    return TenantSummary(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        is_active=tenant.is_active,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
        employee_count=sum(counts.values()),
        active_employee_count=active_count,
    )
