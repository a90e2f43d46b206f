from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.domain.models import Conversation
from chatdesk.persistence.guards import scoped_select, tenant_predicate


async def get_conversation(
    session: AsyncSession, tenant_id: str, conversation_id: str
) -> Conversation | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        scoped_select(Conversation, tenant_id, Conversation.id == conversation_id)
    )
    return result.scalar_one_or_none()


async def get_active_for_visitor(
    session: AsyncSession, tenant_id: str, visitor_id: str
) -> Conversation | None:
    result = await session.execute(
        scoped_select(
            Conversation,
            tenant_id,
            Conversation.visitor_id == visitor_id,
            Conversation.status == "active",
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def open_active_conversation(
    session: AsyncSession,
    tenant_id: str,
    visitor_id: str,
    *,
    source: str = "website",
    visitor_user_agent: str | None = None,
    visitor_ip: str | None = None,
) -> tuple[Conversation, bool]:
    """Insert an active conversation, or return the one a concurrent writer created.

    The partial unique index on (tenant_id, visitor_id) for active rows makes the
    insert fail for the loser of a race; the loser rolls back and reloads the
    winner's row, so callers must not have other pending writes on ``session``.
    Returns ``(conversation, created)``.
    """
    existing = await get_active_for_visitor(session, tenant_id, visitor_id)
    if existing is not None:
        return existing, False
    conversation = Conversation(
        tenant_id=tenant_id,
        visitor_id=visitor_id,
        source=source,
        status="active",
        message_count=0,
        visitor_user_agent=visitor_user_agent,
        visitor_ip=visitor_ip,
    )
    session.add(conversation)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        winner = await get_active_for_visitor(session, tenant_id, visitor_id)
        if winner is None:
            raise
        return winner, False
    return conversation, True


async def list_conversations(
    session: AsyncSession,
    tenant_id: str,
    *,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Conversation]:
    stmt = scoped_select(Conversation, tenant_id)
    if status:
        stmt = stmt.where(Conversation.status == status)
    result = await session.execute(
        stmt.order_by(Conversation.last_message_at.desc(), Conversation.id).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def record_message_activity(
    session: AsyncSession, tenant_id: str, conversation_id: str, *, at: datetime | None = None
) -> None:
    # Counter bump runs in SQL so concurrent appends never lose an increment.
    await session.execute(
        update(Conversation)
        .where(tenant_predicate(Conversation, tenant_id), Conversation.id == conversation_id)
        .values(
            message_count=Conversation.message_count + 1,
            last_message_at=at or datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


async def count_conversations(
    session: AsyncSession,
    tenant_id: str,
    *,
    status: str | None = None,
    since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(Conversation).where(
        tenant_predicate(Conversation, tenant_id)
    )
    if status:
        stmt = stmt.where(Conversation.status == status)
    if since is not None:
        stmt = stmt.where(Conversation.created_at >= since)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def count_all_conversations(session: AsyncSession, *, status: str | None = None) -> int:
    # Aggregate count only; admin statistics never read conversation rows globally.
    stmt = select(func.count()).select_from(Conversation)
    if status:
        stmt = stmt.where(Conversation.status == status)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
