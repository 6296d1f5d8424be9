"""
FastAPI dependencies for authentication and employee lookup.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.employees.models import Employee
from app.features.employees.auth import verify_jwt_token, get_appwrite_account
from app.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


async def get_current_employee(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Employee:
    """
    Get the current authenticated employee from the JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies it with Appwrite and reads the account it belongs to
    3. Looks up the employee linked to that account
    4. On first login, links the account to the employee with the same email
    5. Rejects inactive employees
    """
    payload = verify_jwt_token(credentials.credentials)
    appwrite_user = await get_appwrite_account(credentials.credentials)
    appwrite_user_id = appwrite_user.get("$id")

    if not appwrite_user_id or payload.get("userId") != appwrite_user_id:
        log.warning(f"Token claims do not match Appwrite account {appwrite_user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(
        select(Employee).where(Employee.auth_id == appwrite_user_id)
    )
    employee = result.scalar_one_or_none()

    if employee is None:
        email = (appwrite_user.get("email") or "").lower()
        result = await db.execute(
            select(Employee).where(Employee.email == email, Employee.auth_id.is_(None))
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No employee profile for this account",
            )
        employee.auth_id = appwrite_user_id
        await db.commit()
        await db.refresh(employee)
        log.info(f"Linked Appwrite account {appwrite_user_id} to employee {employee.id}")

    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employee account is deactivated",
        )

    return employee


async def get_employee_by_id(
    employee_id: str,
    current: Annotated[Employee, Depends(get_current_employee)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Employee:
    """
    Get an employee of the caller's tenant or raise 404.

    Employees of other tenants are reported as not found.
    """
    employee = await db.get(Employee, employee_id)
    if employee is None or employee.tenant_id != current.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Employee not found"
        )
    return employee


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
