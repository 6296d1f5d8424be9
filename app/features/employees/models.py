"""
Employee model with ULID primary keys.
"""
from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin
from app.features.permissions.hierarchy import EmployeeRecord
from app.features.permissions.roles import EmployeeStatus


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


class Employee(Base, TimestampMixin):
    """
    Employee of a tenant firm.

    ``role`` holds the operational role title (Partner, CA, ...) and
    ``manager_id`` points at the employee this one reports to. Values are
    validated by the API schemas; rows written by other tools are validated
    again when converted with ``to_record``.
    """
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Appwrite account id, linked on first login
    auth_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)

    role: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EmployeeStatus.ACTIVE.value)

    manager_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    @property
    def is_active(self) -> bool:
        return EmployeeStatus.from_stored(self.status, employee_id=self.id) is EmployeeStatus.ACTIVE

    def to_record(self) -> EmployeeRecord:
        return EmployeeRecord.from_values(
            id=self.id,
            role=self.role,
            manager_id=self.manager_id,
            status=self.status,
            tenant_id=self.tenant_id,
        )

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, email={self.email!r}, role={self.role})>"
