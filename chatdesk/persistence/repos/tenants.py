from __future__ import annotations

from typing import Any

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.domain.models import UNLIMITED_PLAN, Conversation, Message, Tenant, User
from chatdesk.persistence.guards import tenant_predicate


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    if not tenant_id:
        return None
    return await session.get(Tenant, tenant_id)


async def get_tenant_by_domain(session: AsyncSession, domain: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.domain == domain))
    return result.scalar_one_or_none()


async def get_tenant_by_owner(session: AsyncSession, owner_user_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.owner_user_id == owner_user_id))
    return result.scalar_one_or_none()


async def list_tenants(
    session: AsyncSession,
    *,
    is_active: bool | None = None,
    plan: str | None = None,
    search: str | None = None,
) -> list[Tenant]:
    stmt = select(Tenant)
    if is_active is not None:
        stmt = stmt.where(Tenant.is_active.is_(is_active))
    if plan:
        stmt = stmt.where(Tenant.plan == plan)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(or_(func.lower(Tenant.name).like(pattern), Tenant.domain.like(pattern)))
    result = await session.execute(stmt.order_by(Tenant.created_at.desc(), Tenant.id))
    return list(result.scalars().all())


async def create_tenant(
    session: AsyncSession,
    *,
    owner_user_id: str,
    name: str,
    domain: str,
    allowed_domains: list[str],
    plan: str,
    message_limit: int,
    business_type: str = "other",
    description: str | None = None,
    chatbot_config: dict[str, Any] | None = None,
) -> Tenant:
    tenant = Tenant(
        owner_user_id=owner_user_id,
        name=name,
        domain=domain,
        allowed_domains=allowed_domains,
        business_type=business_type,
        description=description,
        plan=plan,
        message_limit=message_limit,
        usage_count=0,
        subscription_status="active",
        is_active=True,
        total_conversations=0,
        total_messages=0,
    )
    if chatbot_config is not None:
        tenant.chatbot_config = chatbot_config
    session.add(tenant)
    await session.flush()
    return tenant


async def try_consume_message(session: AsyncSession, tenant_id: str) -> bool:
    # Single conditional increment: admits iff active and (pro or under limit).
    stmt = (
        update(Tenant)
        .where(
            Tenant.id == tenant_id,
            Tenant.is_active.is_(True),
            Tenant.subscription_status == "active",
            or_(Tenant.plan == UNLIMITED_PLAN, Tenant.usage_count < Tenant.message_limit),
        )
        .values(
            # Pro traffic only moves the lifetime total.
            usage_count=Tenant.usage_count + case((Tenant.plan == UNLIMITED_PLAN, 0), else_=1),
            total_messages=Tenant.total_messages + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def increment_usage(session: AsyncSession, tenant_id: str, *, count_against_limit: bool) -> None:
    values: dict[str, Any] = {"total_messages": Tenant.total_messages + 1}
    if count_against_limit:
        values["usage_count"] = Tenant.usage_count + 1
    await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def increment_conversation_total(session: AsyncSession, tenant_id: str) -> None:
    await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(total_conversations=Tenant.total_conversations + 1)
        .execution_options(synchronize_session=False)
    )


async def delete_tenant_cascade(session: AsyncSession, tenant: Tenant) -> tuple[int, int]:
    # Remove every tenant-owned row before the tenant itself; returns (conversations, messages).
    messages_deleted = await session.execute(
        delete(Message).where(tenant_predicate(Message, tenant.id))
    )
    conversations_deleted = await session.execute(
        delete(Conversation).where(tenant_predicate(Conversation, tenant.id))
    )
    # Unbind the owner so no user keeps pointing at a deleted tenant.
    await session.execute(
        update(User)
        .where(User.tenant_id == tenant.id)
        .values(tenant_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.delete(tenant)
    await session.flush()
    return int(conversations_deleted.rowcount or 0), int(messages_deleted.rowcount or 0)


async def count_tenants(session: AsyncSession, *, is_active: bool | None = None) -> int:
    stmt = select(func.count()).select_from(Tenant)
    if is_active is not None:
        stmt = stmt.where(Tenant.is_active.is_(is_active))
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def count_tenants_by_plan(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(select(Tenant.plan, func.count()).group_by(Tenant.plan))
    return {plan: int(count) for plan, count in result.all()}
