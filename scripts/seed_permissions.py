"""
Seed script to populate the default permission grants.

Run this script after database initialization to create:
- The default grant table (permission_grants)
- Optionally, a demo tenant with a small reporting hierarchy

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --demo
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.employees.models import Employee
from app.features.permissions.dependencies import seed_default_grants, sync_role_assignments
from app.features.permissions.policy import DEFAULT_ROLE_GRANTS
from app.features.permissions.roles import OperationalRole, RoleMapper
from app.features.tenants.models import Tenant
from app.utils import get_logger


log = get_logger(__name__)


DEMO_TENANT = ("Demo Law & Tax", "demo")

# (email, full name, role, manager email)
DEMO_EMPLOYEES = [
    ("partner@demo.example", "Priya Partner", OperationalRole.PARTNER, None),
    ("ca@demo.example", "Chetan CA", OperationalRole.CA, "partner@demo.example"),
    ("manager@demo.example", "Meera Manager", OperationalRole.MANAGER, "partner@demo.example"),
    ("advocate@demo.example", "Arjun Advocate", OperationalRole.ADVOCATE, "manager@demo.example"),
    ("staff@demo.example", "Sana Staff", OperationalRole.STAFF, "ca@demo.example"),
    ("finance@demo.example", "Farid Finance", OperationalRole.FINANCE, "manager@demo.example"),
]


async def seed_demo_tenant(db: AsyncSession) -> Tenant:
    """
    Create the demo tenant and its employees.

    Employees are created top-down so every manager exists before their reports.
    """
    name, slug = DEMO_TENANT
    result = await db.execute(select(Tenant).where(Tenant.slug == slug))
    tenant = result.scalar_one_or_none()
    if tenant is None:
        tenant = Tenant(name=name, slug=slug)
        db.add(tenant)
        await db.flush()
        log.info(f"Created tenant: {slug}")

    mapper = RoleMapper()
    by_email: dict[str, Employee] = {}
    for email, full_name, role, manager_email in DEMO_EMPLOYEES:
        result = await db.execute(select(Employee).where(Employee.email == email))
        employee = result.scalar_one_or_none()
        if employee:
            log.debug(f"Employee '{email}' already exists, skipping")
            by_email[email] = employee
            continue

        manager = by_email.get(manager_email) if manager_email else None
        employee = Employee(
            tenant_id=tenant.id,
            email=email,
            full_name=full_name,
            role=role.value,
            manager_id=manager.id if manager else None,
        )
        db.add(employee)
        await db.flush()
        await sync_role_assignments(db, employee, mapper)
        by_email[email] = employee
        log.info(f"Created employee: {email} ({role.value})")

    await db.commit()
    return tenant


async def main(demo: bool = False):
    """Main function to seed grants and, optionally, demo data."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            created = await seed_default_grants(db)
            log.info(f"Permission seeding completed: {created} grants created")
            log.info("")
            log.info("Default roles:")
            for role_name, role_config in DEFAULT_ROLE_GRANTS.items():
                log.info(f"  - {role_name}: {role_config['description']}")

            if demo:
                tenant = await seed_demo_tenant(db)
                log.info(f"Demo tenant ready: {tenant.slug} ({tenant.id})")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed default permission grants")
    parser.add_argument("--demo", action="store_true", help="Also create a demo tenant")
    args = parser.parse_args()
    asyncio.run(main(demo=args.demo))
