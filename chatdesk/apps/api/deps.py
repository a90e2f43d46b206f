from __future__ import annotations

from typing import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Path, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import get_settings
from chatdesk.core.errors import DatabaseError, Unauthenticated, ValidationFailed
from chatdesk.persistence.db import get_session
from chatdesk.services.access import authorize_tenant_access
from chatdesk.services.access import require_role as check_role
from chatdesk.services.audit import record_event
from chatdesk.services.auth.tokens import Identity, resolve


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; the context manager closes it on success or error.
    async with get_session() as session:
        yield session


def _credential_from_request(request: Request) -> str | None:
    # The dashboard sends the cookie; scripts and tests may use a bearer header instead.
    cookie = request.cookies.get(get_settings().auth_cookie_name)
    if cookie:
        return cookie
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_identity(request: Request) -> Identity:
    try:
        return resolve(_credential_from_request(request))
    except Unauthenticated as exc:
        await record_event(
            tenant_id=None,
            actor_type="anonymous",
            actor_id=None,
            actor_role=None,
            event_type="auth.access.failure",
            outcome="failure",
            resource_type="auth",
            request=request,
            metadata={"path": request.url.path, "method": request.method},
            error_code=exc.code,
        )
        raise


def require_role(*roles: str) -> Callable[..., Awaitable[Identity]]:
    async def _dependency(identity: Identity = Depends(get_identity)) -> Identity:
        check_role(identity, roles)
        return identity

    return _dependency


async def tenant_identity(
    request: Request,
    tenant_id: str = Path(..., min_length=1),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    # Role, tenant match and subscription run before any handler reads tenant data.
    await authorize_tenant_access(db, identity, tenant_id, request=request)
    return identity


async def reject_tenant_id_in_body(request: Request) -> None:
    # Tenant ids come from the verified session or the path, never from the body.
    if not get_settings().auth_reject_body_tenant_id:
        return
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and ({"tenant_id", "tenantId", "client_id", "clientId"} & payload.keys()):
        raise ValidationFailed(
            "tenant_id must be derived from the session", code="TENANT_ID_NOT_ALLOWED"
        )


async def commit_or_fail(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise DatabaseError(f"Database error while {action}") from exc
