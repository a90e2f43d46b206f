from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from chatdesk.domain.models import AuditEvent
from chatdesk.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Visitor chat bodies and credentials never land in the audit trail.
_SENSITIVE_KEY_FRAGMENTS = ("password", "token", "cookie", "secret", "authorization", "content", "message")
_REDACTED = "[REDACTED]"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def sanitize_metadata(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(key): _REDACTED if _is_sensitive(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    return {
        "request_id": request_id,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def record_event(
    *,
    session: AsyncSession | None = None,
    tenant_id: str | None,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str,
    actor_type: str = "user",
    resource_type: str | None = None,
    resource_id: str | None = None,
    request: Request | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> None:
    """Append an audit row without ever failing the caller.

    With ``session=None`` the row is committed on its own connection, which is
    what denial paths use since the request transaction is about to be discarded.
    With a session the row joins the caller's transaction and commits with it.
    """
    context = get_request_context(request)
    event = AuditEvent(
        occurred_at=datetime.now(timezone.utc),
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context["request_id"],
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    if session is not None:
        session.add(event)
        return
    async with SessionLocal() as audit_session:
        try:
            audit_session.add(event)
            await audit_session.commit()
        except SQLAlchemyError as exc:
            await audit_session.rollback()
            logger.warning(
                "audit_event_write_failed event_type=%s request_id=%s",
                event_type,
                context["request_id"],
                exc_info=exc,
            )


async def list_events(
    session: AsyncSession,
    *,
    tenant_id: str | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if tenant_id is not None:
        stmt = stmt.where(AuditEvent.tenant_id == tenant_id)
    if event_type is not None:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    result = await session.execute(stmt.order_by(AuditEvent.id.desc()).limit(limit))
    return list(result.scalars().all())
