from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.domain.models import Message
from chatdesk.persistence.guards import scoped_select, tenant_predicate


async def add_message(
    session: AsyncSession,
    tenant_id: str,
    conversation_id: str,
    role: str,
    content: str,
    *,
    ai_metadata: dict[str, Any] | None = None,
) -> Message:
    message = Message(
        tenant_id=tenant_id,
        conversation_id=conversation_id,
        role=role,
        content=content,
        ai_metadata=ai_metadata,
        is_read=False,
        is_flagged=False,
    )
    session.add(message)
    await session.flush()
    return message


async def get_message(session: AsyncSession, tenant_id: str, message_id: str) -> Message | None:
    result = await session.execute(scoped_select(Message, tenant_id, Message.id == message_id))
    return result.scalar_one_or_none()


async def list_messages(
    session: AsyncSession,
    tenant_id: str,
    conversation_id: str,
) -> list[Message]:
    result = await session.execute(
        scoped_select(Message, tenant_id, Message.conversation_id == conversation_id).order_by(
            Message.created_at.asc(), Message.id
        )
    )
    return list(result.scalars().all())


async def get_latest_message(session: AsyncSession, tenant_id: str, conversation_id: str) -> Message | None:
    result = await session.execute(
        scoped_select(Message, tenant_id, Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_tenant_messages(
    session: AsyncSession,
    tenant_id: str,
    *,
    flagged: bool | None = None,
    limit: int = 50,
) -> list[Message]:
    stmt = scoped_select(Message, tenant_id)
    if flagged is not None:
        stmt = stmt.where(Message.is_flagged.is_(flagged))
    result = await session.execute(stmt.order_by(Message.created_at.desc(), Message.id).limit(limit))
    return list(result.scalars().all())


async def count_messages(
    session: AsyncSession,
    tenant_id: str,
    *,
    since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(Message).where(tenant_predicate(Message, tenant_id))
    if since is not None:
        stmt = stmt.where(Message.created_at >= since)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def count_all_messages(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Message))
    return int(result.scalar() or 0)
