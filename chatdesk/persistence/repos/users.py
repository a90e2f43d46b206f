from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.domain.models import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    if not user_id:
        return None
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password_hash: str,
    role: str = "client",
    tenant_id: str | None = None,
) -> User:
    user = User(
        email=normalize_email(email),
        password_hash=password_hash,
        role=role,
        tenant_id=tenant_id,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


async def touch_last_login(session: AsyncSession, user: User) -> None:
    user.last_login_at = datetime.now(timezone.utc)
    await session.flush()


async def delete_user(session: AsyncSession, user: User) -> None:
    await session.delete(user)
    await session.flush()


async def list_users(session: AsyncSession, *, role: str | None = None) -> list[User]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    result = await session.execute(stmt.order_by(User.created_at.desc(), User.id))
    return list(result.scalars().all())


async def count_users(session: AsyncSession, *, role: str | None = None) -> int:
    stmt = select(func.count()).select_from(User)
    if role:
        stmt = stmt.where(User.role == role)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
