"""
Tenant model.

A tenant is one customer firm. Every employee, role assignment and audit entry
belongs to exactly one tenant, and hierarchy snapshots never cross tenants.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


class Tenant(Base, TimestampMixin):
    """Isolated customer organization."""
    __tablename__ = "tenants"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug!r})>"
