"""Origin checks for the anonymous widget path.

Widget routes carry no session; the public client id plus the page origin is all
they present. ``validate_origin`` is the gate in front of tenant configuration
and chat, answering in a fixed order: client id and origin present, tenant
known, tenant active, origin on the tenant's allowed domains. A disabled widget
is a successful answer with ``enabled=False``, not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from chatdesk.core.config import get_settings
from chatdesk.core.errors import Forbidden, NotFound, ValidationFailed
from chatdesk.domain.models import DEFAULT_CHATBOT_CONFIG, Tenant
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services.audit import record_event
from chatdesk.services.domains import is_origin_allowed, normalize_domain


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OriginResult:
    tenant: Tenant
    origin: str
    # False means the widget must render nothing; it is not an error.
    enabled: bool

    @property
    def config(self) -> dict[str, Any]:
        return {**DEFAULT_CHATBOT_CONFIG, **(self.tenant.chatbot_config or {})}


def request_origin(request: Request) -> str | None:
    """Pick the origin value that widget requests are checked against.

    ``browser`` trusts only what the browser attaches (``Origin``, else
    ``Referer``); page scripts cannot set either header. ``claimed`` reads the
    header the widget script sets itself, which any page can forge.
    """
    settings = get_settings()
    if settings.origin_source == "claimed":
        return request.headers.get(settings.widget_origin_header)
    origin = request.headers.get("origin")
    # Sandboxed and file:// documents send the literal "null".
    if origin and origin != "null":
        return origin
    return request.headers.get("referer")


async def validate_origin(
    session: AsyncSession,
    tenant_id: str | None,
    origin: str | None,
    *,
    request: Request | None = None,
) -> OriginResult:
    # Missing input is a 400, an unknown tenant a 404; inactive tenants and foreign origins are 403.
    if not tenant_id:
        raise ValidationFailed("Client ID is required", code="CLIENT_ID_REQUIRED")
    normalized = normalize_domain(origin)
    if not normalized:
        raise ValidationFailed("Origin is required", code="ORIGIN_REQUIRED")

    tenant = await tenants_repo.get_tenant(session, tenant_id)
    if tenant is None:
        raise NotFound("Client not found", code="TENANT_NOT_FOUND")
    if not tenant.is_active:
        raise Forbidden("Client account is inactive", code="TENANT_INACTIVE")
    if not is_origin_allowed(normalized, tenant.allowed_domains or []):
        logger.info("widget_origin_rejected tenant_id=%s origin=%s", tenant.id, normalized)
        await record_event(
            tenant_id=tenant.id,
            actor_type="visitor",
            actor_id=None,
            actor_role=None,
            event_type="widget.origin.rejected",
            outcome="failure",
            resource_type="tenant",
            resource_id=tenant.id,
            request=request,
            metadata={"origin": normalized},
            error_code="ORIGIN_NOT_ALLOWED",
        )
        raise Forbidden("Domain not authorized", code="ORIGIN_NOT_ALLOWED")

    enabled = bool((tenant.chatbot_config or {}).get("enabled", True))
    if request is not None:
        # Lets the widget CORS layer echo the caller's Origin on this response.
        request.state.widget_origin_allowed = True
    return OriginResult(tenant=tenant, origin=normalized, enabled=enabled)
