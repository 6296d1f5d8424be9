"""
Pydantic schemas for employee-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.features.permissions.roles import EmployeeStatus, OperationalRole


class EmployeeBase(BaseModel):
    """Base employee schema with common fields."""
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    department: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()


class EmployeeCreate(EmployeeBase):
    """Schema for creating a new employee in the caller's tenant."""
    role: OperationalRole
    manager_id: str | None = None


class EmployeeUpdate(BaseModel):
    """Schema for updating employee information."""
    full_name: str | None = Field(None, min_length=1, max_length=255)
    department: str | None = Field(None, max_length=100)
    role: OperationalRole | None = None
    manager_id: str | None = None


class EmployeeResponse(EmployeeBase):
    """Schema for employee responses."""
    id: str
    tenant_id: str
    role: str
    status: EmployeeStatus
    manager_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("status", mode="before")
    @classmethod
    def stored_status(cls, v):
        return EmployeeStatus.from_stored(v)


class EmployeePublic(BaseModel):
    """Limited employee information used in hierarchy views."""
    id: str
    full_name: str
    role: str

    model_config = {"from_attributes": True}


class TeamMember(EmployeePublic):
    """A team member and their depth below the team lead (the lead is 0)."""
    level: int


class TeamResponse(BaseModel):
    """An employee's team: everyone whose records team scope makes visible."""
    employee_id: str
    members: list[TeamMember]
