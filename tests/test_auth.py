"""Tests for bearer-token authentication and first-login account linking."""
import time

import jwt
import pytest
from appwrite.exception import AppwriteException
from fastapi import HTTPException

from app.features.employees import auth
from app.features.employees.auth import verify_jwt_token


def _token(user_id="appwrite-user-1", expires_in=3600, key="appwrite-signing-key"):
    return jwt.encode({"userId": user_id, "exp": int(time.time()) + expires_in}, key, algorithm="HS256")


class TestVerifyJwtToken:
    def test_payload(self):
        assert verify_jwt_token(_token())["userId"] == "appwrite-user-1"

    def test_expired(self):
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token(_token(expires_in=-60))
        assert exc_info.value.status_code == 401

    def test_garbage(self):
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token("not-a-token")
        assert exc_info.value.status_code == 401


@pytest.fixture
def appwrite(monkeypatch):
    """
    Stand-in for the Appwrite account endpoint.

    Only tokens registered with ``issue`` are accepted, the way Appwrite only
    accepts JWTs it signed for a live session.
    """
    class FakeAppwrite:
        def __init__(self):
            self.accounts = {}

        def issue(self, user_id="appwrite-user-1", email="", **kwargs):
            token = _token(user_id, **kwargs)
            self.accounts[token] = {"$id": user_id, "email": email}
            return token

    service = FakeAppwrite()

    class FakeAccount:
        def __init__(self, client):
            self.token = client

        def get(self):
            if self.token not in service.accounts:
                raise AppwriteException("User (role: guests) missing scope (account)", 401)
            return service.accounts[self.token]

    monkeypatch.setattr(auth.AppwriteClient, "for_jwt", staticmethod(lambda token: token))
    monkeypatch.setattr(auth, "Account", FakeAccount)
    return service


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestGetAppwriteAccount:
    @pytest.mark.asyncio
    async def test_accepted_token(self, appwrite):
        token = appwrite.issue(email="someone@tenant-1.lawfirm.com")
        account = await auth.get_appwrite_account(token)
        assert account["$id"] == "appwrite-user-1"

    @pytest.mark.asyncio
    async def test_rejected_token(self, appwrite):
        with pytest.raises(HTTPException) as exc_info:
            await auth.get_appwrite_account(_token())
        assert exc_info.value.status_code == 401


class TestCurrentEmployee:
    """Appwrite accounts are linked to employee records by email."""

    def test_first_login_links_account(self, client, appwrite):
        token = appwrite.issue(email="EMP-003@tenant-1.lawfirm.com")

        response = client.get("/employees/me", headers=_bearer(token))
        assert response.status_code == 200
        assert response.json()["id"] == "emp-003"

        # Linked by account id from now on
        second = appwrite.issue(expires_in=1800)
        assert client.get("/employees/me", headers=_bearer(second)).json()["id"] == "emp-003"

    def test_unknown_account(self, client, appwrite):
        token = appwrite.issue(email="stranger@elsewhere.com")
        assert client.get("/employees/me", headers=_bearer(token)).status_code == 403

    def test_inactive_employee(self, client, appwrite):
        token = appwrite.issue(email="emp-007@tenant-1.lawfirm.com")
        assert client.get("/employees/me", headers=_bearer(token)).status_code == 403

    def test_expired_token(self, client, appwrite):
        token = appwrite.issue(email="emp-003@tenant-1.lawfirm.com", expires_in=-60)
        assert client.get("/employees/me", headers=_bearer(token)).status_code == 401


class TestForgedTokens:
    """Only tokens Appwrite accepts authenticate, whatever their claims say."""

    def test_forged_token_for_linked_account_is_rejected(self, client, appwrite):
        token = appwrite.issue(email="emp-001@tenant-1.lawfirm.com")
        assert client.get("/employees/me", headers=_bearer(token)).json()["id"] == "emp-001"

        forged = _token("appwrite-user-1", key="attacker-key")
        assert client.get("/employees/me", headers=_bearer(forged)).status_code == 401
        response = client.post(
            "/permissions/check",
            json={"module": "rbac", "action": "admin"},
            headers=_bearer(forged),
        )
        assert response.status_code == 401

    def test_claims_must_match_account(self, client, appwrite):
        """A token whose userId claim names another account is rejected."""
        token = appwrite.issue(email="emp-003@tenant-1.lawfirm.com")
        appwrite.accounts[token] = {"$id": "appwrite-user-2", "email": "emp-003@tenant-1.lawfirm.com"}
        assert client.get("/employees/me", headers=_bearer(token)).status_code == 401
