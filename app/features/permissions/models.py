"""
Permission grant, role assignment and audit models.

- permission_grants: the additive (role, module, action, scope) table the
  runtime policy is built from
- role_assignments: which permission roles an employee holds, either derived
  from their operational role or granted manually by an admin
- audit_logs: who changed what
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Text, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


ASSIGNMENT_SOURCE_OPERATIONAL = "operational"
ASSIGNMENT_SOURCE_MANUAL = "manual"


class PermissionGrant(Base, TimestampMixin):
    """
    Allow rule for a permission role.

    Examples:
    - role="Manager", module="cases", action="write", scope="team"
    - role="Staff", module="documents", action="read", scope="team"
    """
    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint("role", "module", "action", "scope", name="uq_permission_grant"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PermissionGrant(role={self.role}, {self.module}.{self.action}.{self.scope})>"


class RoleAssignment(Base, TimestampMixin):
    """
    A permission role held by an employee.

    Operational assignments are kept in sync with the employee's role; manual
    ones are added and revoked by administrators. Revocation sets is_active to
    False and keeps the row for history.
    """
    __tablename__ = "role_assignments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    employee_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    role: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=ASSIGNMENT_SOURCE_MANUAL)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    granted_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.now)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<RoleAssignment(employee_id={self.employee_id}, role={self.role}, active={self.is_active})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking access-control changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    employee_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    tenant_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, employee_id={self.employee_id}, action={self.action}, resource={self.resource_type})>"
