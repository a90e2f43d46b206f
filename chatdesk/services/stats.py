from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import get_settings
from chatdesk.domain.models import Conversation, Tenant
from chatdesk.persistence.repos import conversations as conversations_repo
from chatdesk.persistence.repos import messages as messages_repo
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.persistence.repos import users as users_repo
from chatdesk.services.plans import is_unlimited


@dataclass(frozen=True)
class TenantStats:
    total_conversations: int
    active_conversations: int
    resolved_conversations: int
    abandoned_conversations: int
    total_messages: int
    average_messages_per_conversation: int
    usage: dict[str, Any]
    recent_conversations: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def conversation_summary(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "visitor_id": conversation.visitor_id,
        "status": conversation.status,
        "source": conversation.source,
        "message_count": conversation.message_count,
        "last_message_at": conversation.last_message_at,
        "created_at": conversation.created_at,
    }


def usage_snapshot(tenant: Tenant) -> dict[str, Any]:
    unlimited = is_unlimited(tenant)
    return {
        "plan": tenant.plan,
        "limit": None if unlimited else tenant.message_limit,
        "used": tenant.usage_count,
        "remaining": None if unlimited else max(tenant.message_limit - tenant.usage_count, 0),
        "unlimited": unlimited,
    }


async def tenant_stats(session: AsyncSession, tenant: Tenant) -> TenantStats:
    total = await conversations_repo.count_conversations(session, tenant.id)
    active = await conversations_repo.count_conversations(session, tenant.id, status="active")
    resolved = await conversations_repo.count_conversations(session, tenant.id, status="resolved")
    abandoned = await conversations_repo.count_conversations(session, tenant.id, status="abandoned")
    messages = await messages_repo.count_messages(session, tenant.id)
    recent = await conversations_repo.list_conversations(
        session, tenant.id, limit=get_settings().recent_conversations_limit
    )
    return TenantStats(
        total_conversations=total,
        active_conversations=active,
        resolved_conversations=resolved,
        abandoned_conversations=abandoned,
        total_messages=messages,
        average_messages_per_conversation=round(messages / total) if total else 0,
        usage=usage_snapshot(tenant),
        recent_conversations=[conversation_summary(conversation) for conversation in recent],
    )


async def tenant_activity(
    session: AsyncSession, tenant: Tenant, *, limit: int, offset: int = 0
) -> dict[str, Any]:
    # Most recently active conversations first, each with its newest message.
    total = await conversations_repo.count_conversations(session, tenant.id)
    conversations = await conversations_repo.list_conversations(
        session, tenant.id, limit=limit, offset=offset
    )
    items = []
    for conversation in conversations:
        latest = await messages_repo.get_latest_message(session, tenant.id, conversation.id)
        items.append(
            {
                **conversation_summary(conversation),
                "latest_message": None
                if latest is None
                else {"role": latest.role, "content": latest.content, "created_at": latest.created_at},
            }
        )
    return {"total": total, "limit": limit, "offset": offset, "conversations": items}


async def global_stats(session: AsyncSession) -> dict[str, Any]:
    return {
        "tenants": {
            "total": await tenants_repo.count_tenants(session),
            "active": await tenants_repo.count_tenants(session, is_active=True),
            "by_plan": await tenants_repo.count_tenants_by_plan(session),
        },
        "users": {
            "total": await users_repo.count_users(session),
            "clients": await users_repo.count_users(session, role="client"),
            "admins": await users_repo.count_users(session, role="admin"),
        },
        "conversations": {
            "total": await conversations_repo.count_all_conversations(session),
            "active": await conversations_repo.count_all_conversations(session, status="active"),
        },
        "messages": {"total": await messages_repo.count_all_messages(session)},
    }
