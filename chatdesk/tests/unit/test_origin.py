from __future__ import annotations

from pydantic import ValidationError
import pytest
from starlette.requests import Request

from chatdesk.core.config import get_settings
from chatdesk.core.errors import Forbidden, NotFound, ValidationFailed
from chatdesk.persistence.db import SessionLocal
from chatdesk.services.origin import request_origin, validate_origin
from chatdesk.tests.utils.tenants import create_test_tenant


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/v1/widget/config",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "query_string": b"",
    }
    return Request(scope)


def test_browser_mode_prefers_origin_then_referer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORIGIN_SOURCE", "browser")
    get_settings.cache_clear()
    assert request_origin(_request({"Origin": "https://acme.com", "Referer": "https://x.com/"})) == "https://acme.com"
    assert request_origin(_request({"Origin": "null", "Referer": "https://acme.com/p"})) == "https://acme.com/p"
    # The widget-supplied header is ignored unless explicitly trusted.
    assert request_origin(_request({"X-Widget-Origin": "https://acme.com"})) is None


def test_claimed_mode_reads_widget_header(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORIGIN_SOURCE", "claimed")
    get_settings.cache_clear()
    request = _request({"Origin": "https://evil.io", "X-Widget-Origin": "https://acme.com"})
    assert request_origin(request) == "https://acme.com"


def test_misspelled_modes_fail_at_startup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORIGIN_SOURCE", "claim")
    get_settings.cache_clear()
    with pytest.raises(ValidationError):
        get_settings()
    monkeypatch.setenv("ORIGIN_SOURCE", "browser")
    monkeypatch.setenv("USAGE_ACCOUNTING_MODE", "optimistic")
    get_settings.cache_clear()
    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.asyncio
async def test_validate_origin_accepts_whitelisted_domains() -> None:
    _, tenant = await create_test_tenant(domain="acme.com", allowed_domains=["shop.acme.com"])
    async with SessionLocal() as session:
        result = await validate_origin(session, tenant.id, "https://www.acme.com/contact")
        assert result.tenant.id == tenant.id
        assert result.origin == "acme.com"
        assert result.enabled is True
        assert result.config["tone"] == "friendly"
        result = await validate_origin(session, tenant.id, "https://shop.acme.com")
        assert result.origin == "shop.acme.com"


@pytest.mark.asyncio
async def test_validate_origin_failure_order() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    _, inactive = await create_test_tenant(is_active=False)
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailed) as exc:
            await validate_origin(session, None, "https://acme.com")
        assert exc.value.code == "CLIENT_ID_REQUIRED"
        with pytest.raises(ValidationFailed) as exc:
            await validate_origin(session, tenant.id, None)
        assert exc.value.code == "ORIGIN_REQUIRED"
        with pytest.raises(NotFound) as exc:
            await validate_origin(session, "no-such-client", "https://acme.com")
        assert exc.value.code == "TENANT_NOT_FOUND"
        with pytest.raises(Forbidden) as exc:
            await validate_origin(session, inactive.id, "https://acme.com")
        assert exc.value.code == "TENANT_INACTIVE"
        with pytest.raises(Forbidden) as exc:
            await validate_origin(session, tenant.id, "https://evil.io")
        assert exc.value.code == "ORIGIN_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_disabled_widget_is_not_an_error() -> None:
    _, tenant = await create_test_tenant(
        domain="acme.com",
        chatbot_config={
            "welcome_message": "Hi",
            "tone": "casual",
            "enabled": False,
            "primary_color": "#000000",
            "position": "bottom-left",
        },
    )
    async with SessionLocal() as session:
        result = await validate_origin(session, tenant.id, "https://acme.com")
    assert result.enabled is False


@pytest.mark.asyncio
async def test_only_accepted_origins_are_marked_for_cors() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    accepted = _request({"Origin": "https://acme.com"})
    rejected = _request({"Origin": "https://evil.io"})
    async with SessionLocal() as session:
        await validate_origin(session, tenant.id, "https://acme.com", request=accepted)
        with pytest.raises(Forbidden):
            await validate_origin(session, tenant.id, "https://evil.io", request=rejected)
    assert accepted.state.widget_origin_allowed is True
    assert getattr(rejected.state, "widget_origin_allowed", False) is False
