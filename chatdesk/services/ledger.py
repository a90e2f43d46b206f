"""Tenant-scoped conversation and message ledger.

Every operation takes ``tenant_id`` explicitly and every query is built with the
tenant predicate, so a caller can only ever see rows of the tenant it names.
Callers resolve *which* tenant through the access guard or the origin check
before reaching this module. Functions flush but never commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import MAX_MESSAGE_LENGTH, get_settings
from chatdesk.core.errors import NotFound, ValidationFailed
from chatdesk.domain.models import (
    CONVERSATION_SOURCES,
    CONVERSATION_STATUSES,
    MESSAGE_ROLES,
    Conversation,
    Message,
)
from chatdesk.persistence.repos import conversations as conversations_repo
from chatdesk.persistence.repos import messages as messages_repo
from chatdesk.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)

# Statuses a conversation may be moved to explicitly; reopening happens by new visitor traffic.
_CLOSING_STATUSES = ("resolved", "abandoned")


@dataclass(frozen=True)
class ConversationThread:
    conversation: Conversation
    messages: list[Message]


def new_visitor_id() -> str:
    return f"visitor_{uuid4().hex}"


def validate_content(content: str | None) -> str:
    if content is None or not content.strip():
        raise ValidationFailed("Message is required", code="MESSAGE_REQUIRED")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationFailed(
            f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters",
            code="MESSAGE_TOO_LONG",
            details={"max_length": MAX_MESSAGE_LENGTH},
        )
    return content


def _validate_source(source: str) -> str:
    if source not in CONVERSATION_SOURCES:
        raise ValidationFailed(f"Unsupported source: {source}", code="INVALID_SOURCE")
    return source


async def get_or_create_active_conversation(
    session: AsyncSession,
    tenant_id: str,
    visitor_id: str,
    source: str = "website",
    *,
    visitor_user_agent: str | None = None,
    visitor_ip: str | None = None,
) -> Conversation:
    conversation, created = await conversations_repo.open_active_conversation(
        session,
        tenant_id,
        visitor_id,
        source=_validate_source(source),
        visitor_user_agent=visitor_user_agent,
        visitor_ip=visitor_ip,
    )
    if created:
        await tenants_repo.increment_conversation_total(session, tenant_id)
        logger.info("conversation_opened tenant_id=%s conversation_id=%s", tenant_id, conversation.id)
    return conversation


@dataclass(frozen=True)
class InboundTarget:
    """Where an inbound visitor message will land, decided before quota is spent."""

    visitor_id: str
    source: str
    # Set when the message continues an active conversation.
    conversation_id: str | None = None


async def resolve_inbound_target(
    session: AsyncSession,
    tenant_id: str,
    visitor_id: str,
    conversation_id: str | None = None,
    source: str = "website",
) -> InboundTarget:
    # Every refusal of an inbound message is raised here, so admission only follows accepted input.
    source = _validate_source(source)
    if not conversation_id:
        return InboundTarget(visitor_id=visitor_id, source=source)
    conversation = await conversations_repo.get_conversation(session, tenant_id, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found", code="CONVERSATION_NOT_FOUND")
    if conversation.status == "active":
        return InboundTarget(visitor_id=conversation.visitor_id, source=source, conversation_id=conversation.id)
    # A closed conversation hands over to a fresh active one for the same visitor.
    return InboundTarget(visitor_id=conversation.visitor_id, source=source)


async def conversation_for_inbound(
    session: AsyncSession,
    tenant_id: str,
    target: InboundTarget,
    *,
    visitor_user_agent: str | None = None,
    visitor_ip: str | None = None,
) -> Conversation:
    if target.conversation_id:
        conversation = await conversations_repo.get_conversation(session, tenant_id, target.conversation_id)
        if conversation is not None and conversation.status == "active":
            return conversation
    return await get_or_create_active_conversation(
        session,
        tenant_id,
        target.visitor_id,
        target.source,
        visitor_user_agent=visitor_user_agent,
        visitor_ip=visitor_ip,
    )


async def append_message(
    session: AsyncSession,
    tenant_id: str,
    conversation_id: str,
    role: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> Message:
    content = validate_content(content)
    if role not in MESSAGE_ROLES:
        raise ValidationFailed(f"Unsupported role: {role}", code="INVALID_ROLE")
    conversation = await conversations_repo.get_conversation(session, tenant_id, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found", code="CONVERSATION_NOT_FOUND")
    message = await messages_repo.add_message(
        session,
        conversation.tenant_id,
        conversation.id,
        role,
        content,
        ai_metadata=metadata,
    )
    await conversations_repo.record_message_activity(
        session, conversation.tenant_id, conversation.id, at=datetime.now(timezone.utc)
    )
    await session.refresh(conversation)
    return message


async def list_conversations(
    session: AsyncSession,
    tenant_id: str,
    status: str | None = None,
    *,
    limit: int | None = None,
) -> list[Conversation]:
    settings = get_settings()
    if status is not None and status not in CONVERSATION_STATUSES:
        raise ValidationFailed(f"Unsupported status: {status}", code="INVALID_STATUS")
    page_size = limit or settings.conversation_page_size
    page_size = max(1, min(page_size, settings.conversation_page_size_max))
    return await conversations_repo.list_conversations(session, tenant_id, status=status, limit=page_size)


async def get_conversation_with_messages(
    session: AsyncSession, tenant_id: str, conversation_id: str
) -> ConversationThread | None:
    # None covers both "absent" and "owned by another tenant".
    conversation = await conversations_repo.get_conversation(session, tenant_id, conversation_id)
    if conversation is None:
        return None
    messages = await messages_repo.list_messages(session, tenant_id, conversation.id)
    return ConversationThread(conversation=conversation, messages=messages)


async def list_messages(session: AsyncSession, tenant_id: str, conversation_id: str) -> list[Message]:
    thread = await get_conversation_with_messages(session, tenant_id, conversation_id)
    if thread is None:
        raise NotFound("Conversation not found", code="CONVERSATION_NOT_FOUND")
    return thread.messages


async def update_conversation_status(
    session: AsyncSession, tenant_id: str, conversation_id: str, status: str
) -> Conversation:
    if status not in _CLOSING_STATUSES:
        raise ValidationFailed(
            f"Status must be one of: {', '.join(_CLOSING_STATUSES)}", code="INVALID_STATUS"
        )
    conversation = await conversations_repo.get_conversation(session, tenant_id, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found", code="CONVERSATION_NOT_FOUND")
    conversation.status = status
    if status == "resolved":
        conversation.resolved_at = datetime.now(timezone.utc)
    await session.flush()
    return conversation


async def update_message_flags(
    session: AsyncSession,
    tenant_id: str,
    message_id: str,
    *,
    is_read: bool | None = None,
    is_flagged: bool | None = None,
) -> Message:
    message = await messages_repo.get_message(session, tenant_id, message_id)
    if message is None:
        raise NotFound("Message not found", code="MESSAGE_NOT_FOUND")
    if is_read is not None:
        message.is_read = is_read
    if is_flagged is not None:
        message.is_flagged = is_flagged
    await session.flush()
    return message


async def list_tenant_messages(
    session: AsyncSession,
    tenant_id: str,
    *,
    flagged: bool | None = None,
    limit: int | None = None,
) -> list[Message]:
    # Newest first across every conversation of the tenant; used for moderation review.
    settings = get_settings()
    page = min(limit or settings.conversation_page_size, settings.conversation_page_size_max)
    return await messages_repo.list_tenant_messages(session, tenant_id, flagged=flagged, limit=page)
