"""Access control for authenticated tenant-scoped operations.

The checks compose in a fixed order (role, tenant match, subscription) and
each one raises before any tenant data is read. :func:`authorize_tenant_access`
applies all three and records denials in the audit trail.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from chatdesk.core.errors import Forbidden, SubscriptionInactive
from chatdesk.domain.models import Tenant
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services.audit import record_event
from chatdesk.services.auth.tokens import Identity


logger = logging.getLogger(__name__)


def require_role(identity: Identity, roles: str | Iterable[str]) -> None:
    allowed = {roles} if isinstance(roles, str) else set(roles)
    if identity.role not in allowed:
        raise Forbidden("Insufficient role", code="AUTH_ROLE_FORBIDDEN", details={"role": identity.role})


def require_tenant_match(identity: Identity, requested_tenant_id: str) -> None:
    if identity.is_admin:
        return
    if not identity.tenant_id or identity.tenant_id != requested_tenant_id:
        raise Forbidden("Tenant isolation violation", code="TENANT_ISOLATION_VIOLATION")


async def require_active_subscription(session: AsyncSession, identity: Identity) -> Tenant | None:
    # Reads the stored tenant so suspensions apply to already-issued sessions.
    if identity.is_admin:
        return None
    tenant = await tenants_repo.get_tenant(session, identity.tenant_id or "")
    if tenant is None or not tenant.is_active or tenant.subscription_status != "active":
        raise SubscriptionInactive(
            "Subscription inactive",
            details={"status": tenant.subscription_status if tenant else None},
        )
    return tenant


async def authorize_tenant_access(
    session: AsyncSession,
    identity: Identity,
    tenant_id: str,
    *,
    roles: Iterable[str] = ("client", "admin"),
    request: Request | None = None,
) -> None:
    try:
        require_role(identity, roles)
        require_tenant_match(identity, tenant_id)
        await require_active_subscription(session, identity)
    except Forbidden as exc:
        logger.info(
            "tenant_access_denied user_id=%s tenant_id=%s code=%s",
            identity.user_id,
            tenant_id,
            exc.code,
        )
        await record_event(
            tenant_id=tenant_id,
            actor_id=identity.user_id,
            actor_role=identity.role,
            event_type="tenant.access.denied",
            outcome="failure",
            resource_type="tenant",
            resource_id=tenant_id,
            request=request,
            metadata={"caller_tenant_id": identity.tenant_id},
            error_code=exc.code,
        )
        raise
