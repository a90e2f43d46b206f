from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from chatdesk.apps.api.main import create_app
from chatdesk.services.auth.tokens import issue_token
from chatdesk.tests.utils.auth import TEST_PASSWORD
from chatdesk.tests.utils.tenants import create_test_tenant


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


def _cookie_header(response) -> dict[str, str]:
    return {"Cookie": f"auth_token={response.cookies['auth_token']}"}


_SIGNUP = {
    "email": "Owner@Acme.com",
    "password": "acme-password",
    "name": "Acme",
    "domain": "www.acme.com",
    "business_type": "restaurant",
}


@pytest.mark.asyncio
async def test_signup_sets_session_cookie_and_creates_tenant() -> None:
    async with _client() as client:
        response = await client.post("/v1/auth/signup", json=_SIGNUP)
        assert response.status_code == 201
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "max-age=604800" in set_cookie
        data = response.json()["data"]
        assert data["user"]["email"] == "owner@acme.com"
        assert data["tenant"]["domain"] == "acme.com"
        assert data["tenant"]["plan"] == "starter"
        assert "password_hash" not in data["user"]

        me = await client.get("/v1/auth/me", headers=_cookie_header(response))
    assert me.status_code == 200
    me_data = me.json()["data"]
    assert me_data["user"]["id"] == data["user"]["id"]
    assert me_data["tenant"]["id"] == data["tenant"]["id"]
    assert me_data["usage"] == {"plan": "starter", "limit": 1000, "used": 0, "remaining": 1000, "unlimited": False}


@pytest.mark.asyncio
async def test_signup_conflicts() -> None:
    async with _client() as client:
        first = await client.post("/v1/auth/signup", json=_SIGNUP)
        same_email = await client.post("/v1/auth/signup", json={**_SIGNUP, "domain": "other.com"})
        same_domain = await client.post(
            "/v1/auth/signup", json={**_SIGNUP, "email": "second@acme.com", "domain": "https://acme.com"}
        )
        bad_domain = await client.post(
            "/v1/auth/signup", json={**_SIGNUP, "email": "third@acme.com", "domain": "localhost"}
        )
    assert first.status_code == 201
    assert same_email.status_code == 409
    assert same_email.json()["error"]["code"] == "EMAIL_TAKEN"
    assert same_domain.status_code == 409
    assert same_domain.json()["error"]["code"] == "DOMAIN_TAKEN"
    assert bad_domain.status_code == 400
    assert bad_domain.json()["error"]["code"] == "INVALID_DOMAIN"


@pytest.mark.asyncio
async def test_login_and_logout() -> None:
    owner, tenant = await create_test_tenant()
    async with _client() as client:
        wrong = await client.post("/v1/auth/login", json={"email": owner.email, "password": "nope-nope"})
        assert wrong.status_code == 401
        assert wrong.json()["error"]["code"] == "INVALID_CREDENTIALS"
        assert wrong.headers["WWW-Authenticate"] == "Bearer"

        login = await client.post("/v1/auth/login", json={"email": owner.email, "password": TEST_PASSWORD})
        assert login.status_code == 200
        assert login.json()["data"]["tenant"]["id"] == tenant.id
        assert login.json()["data"]["user"]["last_login_at"] is not None

        logout = await client.post("/v1/auth/logout", headers=_cookie_header(login))
    assert logout.status_code == 200
    assert 'auth_token=""' in logout.headers["set-cookie"] or "max-age=0" in logout.headers["set-cookie"].lower()


@pytest.mark.asyncio
async def test_login_refused_for_suspended_tenant() -> None:
    owner, _ = await create_test_tenant(is_active=False)
    async with _client() as client:
        response = await client.post("/v1/auth/login", json={"email": owner.email, "password": TEST_PASSWORD})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "TENANT_INACTIVE"


@pytest.mark.asyncio
async def test_me_requires_valid_session() -> None:
    owner, _ = await create_test_tenant()
    expired = issue_token(
        user_id=owner.id,
        role=owner.role,
        email=owner.email,
        tenant_id=owner.tenant_id,
        now=datetime.now(timezone.utc) - timedelta(days=30),
        ttl=timedelta(days=7),
    )
    async with _client() as client:
        missing = await client.get("/v1/auth/me")
        stale = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {expired}"})
        garbage = await client.get("/v1/auth/me", headers={"Cookie": "auth_token=not-a-jwt"})
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_MISSING"
    assert stale.status_code == 401
    assert stale.json()["error"]["code"] == "AUTH_EXPIRED"
    assert garbage.status_code == 401
    assert garbage.json()["error"]["code"] == "AUTH_INVALID"
