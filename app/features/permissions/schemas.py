"""
Pydantic schemas for permission management.

Request and response models for permission checks, grants, role assignments
and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.roles import (
    Action,
    Module,
    OperationalRole,
    PermissionRoleId,
    Scope,
)


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if the current employee has a permission."""
    module: str = Field(..., description="Module key, e.g. 'cases'")
    action: str = Field(..., description="Action, e.g. 'read', 'write'")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    scope: Optional[Scope] = None
    reason: Optional[str] = None


class ModulePermissions(BaseModel):
    """Granted actions on one module with their widest scope."""
    module: Module
    actions: Dict[Action, Scope]


class MyPermissionsResponse(BaseModel):
    """Everything the current employee may do."""
    employee_id: str
    operational_role: str
    roles: List[PermissionRoleId]
    is_unrestricted: bool
    modules: List[ModulePermissions] = []


class VisibleUsersResponse(BaseModel):
    """Owners whose records the current employee may see for a module."""
    module: Module
    action: Action
    scope: Scope
    user_ids: List[str]


# ============================================================================
# Role and Grant Schemas
# ============================================================================

class RoleMappingResponse(BaseModel):
    """Operational role and the permission roles it maps to."""
    operational_role: OperationalRole
    permission_roles: List[PermissionRoleId]


class GrantResponse(BaseModel):
    """Single (expanded) grant of the active policy."""
    role: PermissionRoleId
    module: Module
    action: Action
    scope: Scope


class PolicyReloadResponse(BaseModel):
    grants: int
    roles: List[PermissionRoleId]


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToEmployee(BaseModel):
    """Schema for manually assigning a permission role to an employee."""
    employee_id: str = Field(..., description="Employee ID")
    role: str = Field(..., description="Permission role id (SuperAdmin, Admin, Manager, Staff)")

    @field_validator("role")
    @classmethod
    def role_known(cls, v: str) -> str:
        """Reject roles outside the permission-role enum."""
        return PermissionRoleId.parse(v).value


class RoleAssignmentResponse(BaseModel):
    """Schema for role assignment response."""
    id: str
    tenant_id: str
    employee_id: str
    role: str
    source: str
    is_active: bool
    granted_by_id: Optional[str]
    granted_at: datetime
    revoked_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    employee_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    tenant_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
