from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from chatdesk.apps.api.main import create_app
from chatdesk.core.config import get_settings
from chatdesk.tests.utils.tenants import create_test_tenant, reload_tenant


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


_DISABLED_CONFIG = {
    "welcome_message": "Closed for the season",
    "tone": "professional",
    "enabled": False,
    "primary_color": "#111111",
    "position": "bottom-left",
}


@pytest.mark.asyncio
async def test_widget_config_requires_client_id() -> None:
    async with _client() as client:
        response = await client.get("/v1/widget/config", headers={"Origin": "https://acme.com"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CLIENT_ID_REQUIRED"


@pytest.mark.asyncio
async def test_widget_config_rejects_foreign_origin() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    async with _client() as client:
        response = await client.get(
            "/v1/widget/config", params={"clientId": tenant.id}, headers={"Origin": "https://evil.io"}
        )
        missing = await client.get("/v1/widget/config", params={"clientId": tenant.id})
        unknown = await client.get(
            "/v1/widget/config", params={"clientId": "nope"}, headers={"Origin": "https://acme.com"}
        )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ORIGIN_NOT_ALLOWED"
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "ORIGIN_REQUIRED"
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_widget_config_falls_back_to_referer() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    async with _client() as client:
        response = await client.get(
            "/v1/widget/config",
            params={"clientId": tenant.id},
            headers={"Referer": "https://www.acme.com/contact?x=1"},
        )
    assert response.status_code == 200
    assert response.json()["data"]["enabled"] is True


@pytest.mark.asyncio
async def test_claimed_origin_mode_trusts_widget_header(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORIGIN_SOURCE", "claimed")
    get_settings.cache_clear()
    _, tenant = await create_test_tenant(domain="acme.com")
    async with _client() as client:
        response = await client.get(
            "/v1/widget/config",
            params={"clientId": tenant.id},
            headers={"X-Widget-Origin": "https://acme.com"},
        )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_disabled_widget_renders_nothing_and_refuses_chat() -> None:
    _, tenant = await create_test_tenant(domain="acme.com", chatbot_config=_DISABLED_CONFIG)
    async with _client() as client:
        config = await client.get(
            "/v1/widget/config", params={"clientId": tenant.id}, headers={"Origin": "https://acme.com"}
        )
        chat = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://acme.com"},
            json={"clientId": tenant.id, "message": "Hello"},
        )
    assert config.status_code == 200
    assert config.json()["data"] == {
        "enabled": False,
        "client_id": tenant.id,
        "client_name": None,
        "config": None,
    }
    assert chat.status_code == 403
    assert chat.json()["error"]["code"] == "WIDGET_DISABLED"
    assert (await reload_tenant(tenant.id)).usage_count == 0


@pytest.mark.asyncio
async def test_chat_message_validation() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    async with _client() as client:
        blank = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://acme.com"},
            json={"clientId": tenant.id, "message": "   "},
        )
        too_long = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://acme.com"},
            json={"clientId": tenant.id, "message": "x" * 5001},
        )
        no_client = await client.post(
            "/v1/chat/message", headers={"Origin": "https://acme.com"}, json={"message": "Hello"}
        )
    assert blank.status_code == 400
    assert blank.json()["error"]["code"] == "MESSAGE_REQUIRED"
    assert too_long.status_code == 400
    assert too_long.json()["error"]["code"] == "VALIDATION_ERROR"
    assert no_client.status_code == 400
    assert (await reload_tenant(tenant.id)).usage_count == 0


@pytest.mark.asyncio
async def test_chat_rejects_foreign_origin_and_inactive_subscription() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    _, past_due = await create_test_tenant(domain="late.com", subscription_status="past_due")
    async with _client() as client:
        foreign = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://evil.io"},
            json={"clientId": tenant.id, "message": "Hello"},
        )
        inactive = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://late.com"},
            json={"clientId": past_due.id, "message": "Hello"},
        )
    assert foreign.status_code == 403
    assert foreign.json()["error"]["code"] == "ORIGIN_NOT_ALLOWED"
    assert inactive.status_code == 403
    assert inactive.json()["error"]["code"] == "SUBSCRIPTION_INACTIVE"


@pytest.mark.asyncio
async def test_chat_cannot_write_into_another_tenants_conversation() -> None:
    _, tenant_a = await create_test_tenant(domain="alpha.com")
    _, tenant_b = await create_test_tenant(domain="beta.com")
    async with _client() as client:
        started = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://alpha.com"},
            json={"clientId": tenant_a.id, "message": "Hello"},
        )
        conversation_id = started.json()["data"]["conversation_id"]
        hijack = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://beta.com"},
            json={"clientId": tenant_b.id, "message": "Hello", "conversationId": conversation_id},
        )
    assert started.status_code == 201
    assert hijack.status_code == 404
    assert hijack.json()["error"]["code"] == "CONVERSATION_NOT_FOUND"
    assert (await reload_tenant(tenant_a.id)).total_messages == 1
    assert (await reload_tenant(tenant_b.id)).usage_count == 0


@pytest.mark.asyncio
async def test_pro_plan_reports_unlimited_usage() -> None:
    _, tenant = await create_test_tenant(domain="acme.com", plan="pro")
    async with _client() as client:
        response = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://acme.com"},
            json={"clientId": tenant.id, "message": "Hello"},
        )
    assert response.status_code == 201
    assert response.headers["X-Usage-Limit"] == "unlimited"
    assert response.json()["data"]["usage"] == {"limit": None, "used": 0, "remaining": None}


@pytest.mark.asyncio
async def test_refused_chat_messages_do_not_spend_quota() -> None:
    _, tenant_a = await create_test_tenant(domain="alpha.com")
    _, tenant_b = await create_test_tenant(domain="beta.com", message_limit=2)
    async with _client() as client:
        started = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://alpha.com"},
            json={"clientId": tenant_a.id, "message": "Hello"},
        )
        foreign_conversation = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://beta.com"},
            json={
                "clientId": tenant_b.id,
                "message": "Hello",
                "conversationId": started.json()["data"]["conversation_id"],
            },
        )
        bad_source = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://beta.com"},
            json={"clientId": tenant_b.id, "message": "Hello", "source": "sms"},
        )
        accepted = [
            await client.post(
                "/v1/chat/message",
                headers={"Origin": "https://beta.com"},
                json={"clientId": tenant_b.id, "message": "Hello", "visitorId": "visitor_b"},
            )
            for _ in range(2)
        ]
    assert foreign_conversation.status_code == 404
    assert bad_source.status_code == 400
    assert bad_source.json()["error"]["code"] == "VALIDATION_ERROR"
    assert [response.status_code for response in accepted] == [201, 201]
    assert accepted[1].headers["X-Usage-Remaining"] == "0"
    stored = await reload_tenant(tenant_b.id)
    assert stored.usage_count == 2
    assert stored.total_messages == 2


@pytest.mark.asyncio
async def test_widget_routes_echo_allowed_origin() -> None:
    _, tenant = await create_test_tenant(domain="acme.com")
    async with _client() as client:
        config = await client.get(
            "/v1/widget/config", params={"clientId": tenant.id}, headers={"Origin": "https://acme.com"}
        )
        chat = await client.post(
            "/v1/chat/message",
            headers={"Origin": "https://www.acme.com"},
            json={"clientId": tenant.id, "message": "Hello"},
        )
        foreign = await client.get(
            "/v1/widget/config", params={"clientId": tenant.id}, headers={"Origin": "https://evil.io"}
        )
    assert config.status_code == 200
    assert config.headers["Access-Control-Allow-Origin"] == "https://acme.com"
    assert "Origin" in config.headers["Vary"]
    assert chat.status_code == 201
    assert chat.headers["Access-Control-Allow-Origin"] == "https://www.acme.com"
    assert "X-Usage-Remaining" in chat.headers["Access-Control-Expose-Headers"]
    assert foreign.status_code == 403
    assert "Access-Control-Allow-Origin" not in foreign.headers


@pytest.mark.asyncio
async def test_widget_preflight_skips_dashboard_allow_list() -> None:
    async with _client() as client:
        preflight = await client.options(
            "/v1/chat/message",
            headers={
                "Origin": "https://acme.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )
        dashboard = await client.options(
            "/v1/auth/me",
            headers={"Origin": "https://acme.com", "Access-Control-Request-Method": "GET"},
        )
    assert preflight.status_code == 204
    assert preflight.headers["Access-Control-Allow-Origin"] == "https://acme.com"
    assert "POST" in preflight.headers["Access-Control-Allow-Methods"]
    assert preflight.headers["Access-Control-Allow-Headers"] == "content-type"
    assert dashboard.status_code == 400
