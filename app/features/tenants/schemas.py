"""
Pydantic schemas for tenant responses.
"""
from datetime import datetime
from pydantic import BaseModel


class TenantResponse(BaseModel):
    """Schema for tenant responses."""
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantSummary(TenantResponse):
    """Tenant with headcounts for the settings screen."""
    employee_count: int
    active_employee_count: int
