"""
Authentication utilities for Appwrite JWT verification.

Tokens are decoded locally only to reject expired or malformed ones early.
The caller's identity always comes from Appwrite: the token is sent back to
the Appwrite account endpoint, which checks the signature and returns the
account it belongs to.
"""
import jwt
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.account import Account
from appwrite.exception import AppwriteException

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Factory for Appwrite clients acting on behalf of a user session."""

    @staticmethod
    def for_jwt(token: str) -> Client:
        """Create a client authenticated with the caller's JWT."""
        client = Client()
        client.set_endpoint(config.APPWRITE_ENDPOINT)
        client.set_project(config.APPWRITE_PROJECT_ID)
        client.set_jwt(token)
        return client


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite JWT and reject it if it is expired or malformed.

    The signature is not checked here and the claims are not trusted;
    use get_appwrite_account to establish who the caller is.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded (unverified) JWT payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_appwrite_account(token: str) -> dict:
    """
    Get the Appwrite account the token was issued for.

    Appwrite verifies the token signature and session; a forged or revoked
    token is rejected.

    Raises:
        HTTPException: 401 if Appwrite does not accept the token
    """
    try:
        account = Account(AppwriteClient.for_jwt(token))
        return account.get()

    except AppwriteException as e:
        log.warning(f"Appwrite rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Failed to verify token",
            headers={"WWW-Authenticate": "Bearer"},
        )
