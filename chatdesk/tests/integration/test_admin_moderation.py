from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from chatdesk.apps.api.main import create_app
from chatdesk.core.config import get_settings
from chatdesk.persistence.db import SessionLocal
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services import ledger
from chatdesk.tests.utils.auth import auth_headers, create_test_admin
from chatdesk.tests.utils.tenants import create_test_tenant, reload_tenant


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _seed_conversation(tenant_id: str, visitor_id: str, *contents: str) -> str:
    async with SessionLocal() as session:
        conversation = await ledger.get_or_create_active_conversation(session, tenant_id, visitor_id)
        for content in contents:
            await ledger.append_message(session, tenant_id, conversation.id, "user", content)
        await session.commit()
        return conversation.id


@pytest.mark.asyncio
async def test_bulk_actions_report_missing_ids() -> None:
    _, headers = await create_test_admin()
    _, first = await create_test_tenant()
    _, second = await create_test_tenant()
    async with _client() as client:
        deactivated = await client.post(
            "/v1/admin/tenants/bulk",
            headers=headers,
            json={"action": "deactivate", "tenant_ids": [first.id, second.id, first.id, "missing"]},
        )
        no_plan = await client.post(
            "/v1/admin/tenants/bulk",
            headers=headers,
            json={"action": "change_plan", "tenant_ids": [first.id]},
        )
        upgraded = await client.post(
            "/v1/admin/tenants/bulk",
            headers=headers,
            json={"action": "change_plan", "tenant_ids": [second.id], "plan": "pro"},
        )
    data = deactivated.json()["data"]
    assert deactivated.status_code == 200
    assert data["modified_count"] == 2
    assert sorted(data["modified_ids"]) == sorted([first.id, second.id])
    assert data["missing_ids"] == ["missing"]
    assert (await reload_tenant(first.id)).is_active is False
    assert no_plan.status_code == 400
    assert no_plan.json()["error"]["code"] == "PLAN_REQUIRED"
    assert upgraded.json()["data"]["modified_ids"] == [second.id]
    assert (await reload_tenant(second.id)).plan == "pro"


@pytest.mark.asyncio
async def test_bulk_delete_removes_tenants() -> None:
    _, headers = await create_test_admin()
    _, tenant = await create_test_tenant()
    await _seed_conversation(tenant.id, "visitor_1", "Hello")
    async with _client() as client:
        response = await client.post(
            "/v1/admin/tenants/bulk",
            headers=headers,
            json={"action": "delete", "tenant_ids": [tenant.id]},
        )
        events = await client.get(
            "/v1/admin/audit-events", params={"event_type": "admin.tenant.bulk_delete"}, headers=headers
        )
    assert response.json()["data"]["modified_ids"] == [tenant.id]
    async with SessionLocal() as session:
        assert await tenants_repo.get_tenant(session, tenant.id) is None
    assert [event["resource_id"] for event in events.json()["data"]] == [tenant.id]


@pytest.mark.asyncio
async def test_activity_feed_pages_conversations_with_latest_message() -> None:
    _, headers = await create_test_admin()
    _, tenant = await create_test_tenant()
    first = await _seed_conversation(tenant.id, "visitor_1", "Hi", "Anyone there?")
    second = await _seed_conversation(tenant.id, "visitor_2", "Room prices?")
    async with _client() as client:
        page_one = await client.get(
            f"/v1/admin/tenants/{tenant.id}/activity", params={"limit": 1}, headers=headers
        )
        page_two = await client.get(
            f"/v1/admin/tenants/{tenant.id}/activity", params={"limit": 1, "offset": 1}, headers=headers
        )
        missing = await client.get("/v1/admin/tenants/nope/activity", headers=headers)
    one, two = page_one.json()["data"], page_two.json()["data"]
    assert one["total"] == 2 and one["limit"] == 1 and two["offset"] == 1
    rows = one["conversations"] + two["conversations"]
    assert {row["id"] for row in rows} == {first, second}
    latest = {row["id"]: row["latest_message"]["content"] for row in rows}
    assert latest == {first: "Anyone there?", second: "Room prices?"}
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_user_detail_block_and_delete() -> None:
    admin, headers = await create_test_admin()
    owner, tenant = await create_test_tenant()
    await _seed_conversation(tenant.id, "visitor_1", "Hello", "Again")
    async with _client() as client:
        detail = await client.get(f"/v1/admin/users/{owner.id}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["data"]["tenant"]["id"] == tenant.id

        blocked = await client.post(
            f"/v1/admin/users/{owner.id}/block", headers=headers, json={"reason": "Spam"}
        )
        assert blocked.status_code == 200
        assert blocked.json()["data"]["reason"] == "Spam"
        assert blocked.json()["data"]["user"]["is_active"] is False
        reloaded = await reload_tenant(tenant.id)
        assert reloaded.is_active is False
        assert reloaded.chatbot_config["enabled"] is False

        self_block = await client.post(f"/v1/admin/users/{admin.id}/block", headers=headers)
        assert self_block.status_code == 400
        assert self_block.json()["error"]["code"] == "SELF_BLOCK"

        deleted = await client.delete(f"/v1/admin/users/{owner.id}", headers=headers)
        gone = await client.get(f"/v1/admin/users/{owner.id}", headers=headers)
        self_delete = await client.delete(f"/v1/admin/users/{admin.id}", headers=headers)
    assert deleted.json()["data"] == {
        "user_id": owner.id,
        "tenant_id": tenant.id,
        "conversations_deleted": 1,
        "messages_deleted": 2,
    }
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "USER_NOT_FOUND"
    assert self_delete.json()["error"]["code"] == "SELF_DELETE"
    async with SessionLocal() as session:
        assert await tenants_repo.get_tenant(session, tenant.id) is None


@pytest.mark.asyncio
async def test_moderation_feed_and_manual_reply() -> None:
    _, headers = await create_test_admin()
    owner, tenant = await create_test_tenant()
    conversation_id = await _seed_conversation(tenant.id, "visitor_1", "Fine", "Rude words")
    async with SessionLocal() as session:
        messages = await ledger.list_messages(session, tenant.id, conversation_id)
        rude = next(m for m in messages if m.content == "Rude words")
        await ledger.update_message_flags(session, tenant.id, rude.id, is_flagged=True)
        await session.commit()
    async with _client() as client:
        flagged = await client.get(
            f"/v1/admin/tenants/{tenant.id}/messages", params={"flagged": "true"}, headers=headers
        )
        reply = await client.post(
            f"/v1/admin/tenants/{tenant.id}/conversations/{conversation_id}/messages",
            headers=headers,
            json={"content": "Please keep it civil."},
        )
        wrong_tenant = await client.post(
            f"/v1/admin/tenants/{tenant.id}/conversations/nope/messages",
            headers=headers,
            json={"content": "Hello"},
        )
        as_client = await client.get(f"/v1/admin/tenants/{tenant.id}/messages", headers=auth_headers(owner))
    assert [m["content"] for m in flagged.json()["data"]] == ["Rude words"]
    assert reply.status_code == 201
    body = reply.json()["data"]
    assert body["role"] == "assistant"
    assert body["ai_metadata"]["model"] == "manual-reply"
    assert wrong_tenant.status_code == 404
    assert as_client.status_code == 403


@pytest.mark.asyncio
async def test_moderation_routes_are_rate_limited(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RL_MODERATION_BURST", "2")
    monkeypatch.setenv("RL_MODERATION_RPS", "0.001")
    get_settings.cache_clear()
    _, headers = await create_test_admin()
    _, tenant = await create_test_tenant()
    async with _client() as client:
        responses = [
            await client.get(f"/v1/admin/tenants/{tenant.id}/messages", headers=headers) for _ in range(3)
        ]
        unthrottled = await client.get(f"/v1/admin/tenants/{tenant.id}/activity", headers=headers)
    assert [r.status_code for r in responses] == [200, 200, 429]
    throttled = responses[-1]
    assert throttled.json()["error"]["code"] == "RATE_LIMITED"
    assert int(throttled.headers["Retry-After"]) > 0
    assert throttled.headers["X-RateLimit-Route-Class"] == "moderation"
    assert unthrottled.status_code == 200
