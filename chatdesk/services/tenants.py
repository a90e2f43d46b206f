"""Tenant directory: creation, self-service settings and admin overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import MAX_WELCOME_MESSAGE_LENGTH
from chatdesk.core.errors import Conflict, NotFound, ValidationFailed
from chatdesk.domain.models import (
    BUSINESS_TYPES,
    DEFAULT_CHATBOT_CONFIG,
    SUBSCRIPTION_STATUSES,
    TONES,
    WIDGET_POSITIONS,
    Tenant,
    User,
)
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services.domains import normalize_allowed_domains, validate_and_normalize_domain
from chatdesk.services.plans import default_message_limit, normalize_plan


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
_HEX_COLOR_RE = re.compile(r"^#[0-9a-f]{6}$", re.IGNORECASE)
_CHATBOT_KEYS = frozenset(DEFAULT_CHATBOT_CONFIG)


def validate_name(name: str | None) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationFailed("Business name is required", code="NAME_REQUIRED")
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"Business name cannot exceed {MAX_NAME_LENGTH} characters", code="NAME_TOO_LONG")
    return value


def validate_description(description: str | None) -> str | None:
    if description is None:
        return None
    value = description.strip()
    if len(value) > MAX_DESCRIPTION_LENGTH:
        raise ValidationFailed(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters", code="DESCRIPTION_TOO_LONG"
        )
    return value or None


def validate_business_type(business_type: str | None) -> str:
    value = (business_type or "other").strip().lower()
    if value not in BUSINESS_TYPES:
        raise ValidationFailed(f"Unsupported business type: {business_type}", code="INVALID_BUSINESS_TYPE")
    return value


def merge_chatbot_config(current: dict[str, Any] | None, patch: dict[str, Any]) -> dict[str, Any]:
    unknown = set(patch) - _CHATBOT_KEYS
    if unknown:
        raise ValidationFailed(
            "Unknown chatbot settings", code="INVALID_CHATBOT_CONFIG", details={"fields": sorted(unknown)}
        )
    merged = {**DEFAULT_CHATBOT_CONFIG, **(current or {})}
    for key, value in patch.items():
        if value is None:
            continue
        merged[key] = value

    welcome = merged["welcome_message"]
    if not isinstance(welcome, str) or not welcome.strip():
        raise ValidationFailed("Welcome message is required", code="INVALID_CHATBOT_CONFIG")
    if len(welcome) > MAX_WELCOME_MESSAGE_LENGTH:
        raise ValidationFailed(
            f"Welcome message cannot exceed {MAX_WELCOME_MESSAGE_LENGTH} characters",
            code="INVALID_CHATBOT_CONFIG",
        )
    if merged["tone"] not in TONES:
        raise ValidationFailed(f"Unsupported tone: {merged['tone']}", code="INVALID_CHATBOT_CONFIG")
    if merged["position"] not in WIDGET_POSITIONS:
        raise ValidationFailed(f"Unsupported position: {merged['position']}", code="INVALID_CHATBOT_CONFIG")
    if not isinstance(merged["primary_color"], str) or not _HEX_COLOR_RE.match(merged["primary_color"]):
        raise ValidationFailed("Primary color must be a hex color like #3B82F6", code="INVALID_CHATBOT_CONFIG")
    if not isinstance(merged["enabled"], bool):
        raise ValidationFailed("enabled must be a boolean", code="INVALID_CHATBOT_CONFIG")
    return merged


async def _ensure_domain_free(session: AsyncSession, domain: str, *, exclude_tenant_id: str | None = None) -> None:
    existing = await tenants_repo.get_tenant_by_domain(session, domain)
    if existing is not None and existing.id != exclude_tenant_id:
        raise Conflict("A client with this domain already exists", code="DOMAIN_TAKEN")


async def create_tenant_for_owner(
    session: AsyncSession,
    owner: User,
    *,
    name: str,
    domain: str,
    plan: str,
    message_limit: int | None = None,
    business_type: str | None = None,
    description: str | None = None,
    allowed_domains: Iterable[str] | None = None,
) -> Tenant:
    if await tenants_repo.get_tenant_by_owner(session, owner.id) is not None:
        raise Conflict("User already owns a client", code="OWNER_TAKEN")
    canonical = validate_and_normalize_domain(domain)
    await _ensure_domain_free(session, canonical)
    normalized_plan = normalize_plan(plan)
    limit = default_message_limit(normalized_plan) if message_limit is None else message_limit
    if limit < 0:
        raise ValidationFailed("Message limit cannot be negative", code="INVALID_MESSAGE_LIMIT")
    try:
        tenant = await tenants_repo.create_tenant(
            session,
            owner_user_id=owner.id,
            name=validate_name(name),
            domain=canonical,
            allowed_domains=normalize_allowed_domains(canonical, allowed_domains),
            plan=normalized_plan,
            message_limit=limit,
            business_type=validate_business_type(business_type),
            description=validate_description(description),
        )
    except IntegrityError as exc:
        # A concurrent signup won the domain or owner slot.
        await session.rollback()
        raise Conflict("A client with this domain already exists", code="DOMAIN_TAKEN") from exc
    owner.tenant_id = tenant.id
    await session.flush()
    logger.info("tenant_created tenant_id=%s plan=%s", tenant.id, tenant.plan)
    return tenant


async def get_tenant_or_404(session: AsyncSession, tenant_id: str) -> Tenant:
    tenant = await tenants_repo.get_tenant(session, tenant_id)
    if tenant is None:
        raise NotFound("Client not found", code="TENANT_NOT_FOUND")
    return tenant


async def update_settings(
    session: AsyncSession,
    tenant: Tenant,
    *,
    chatbot_config: dict[str, Any] | None = None,
    allowed_domains: list[str] | None = None,
    name: str | None = None,
    description: str | None = None,
    business_type: str | None = None,
) -> Tenant:
    # Owner-editable fields only; plan, limits and status stay with admins.
    if chatbot_config is not None:
        tenant.chatbot_config = merge_chatbot_config(tenant.chatbot_config, chatbot_config)
    if allowed_domains is not None:
        tenant.allowed_domains = normalize_allowed_domains(tenant.domain, allowed_domains)
    if name is not None:
        tenant.name = validate_name(name)
    if description is not None:
        tenant.description = validate_description(description)
    if business_type is not None:
        tenant.business_type = validate_business_type(business_type)
    await session.flush()
    return tenant


async def admin_update_tenant(session: AsyncSession, tenant: Tenant, changes: dict[str, Any]) -> Tenant:
    if "domain" in changes and changes["domain"] is not None:
        canonical = validate_and_normalize_domain(changes["domain"])
        if canonical != tenant.domain:
            await _ensure_domain_free(session, canonical, exclude_tenant_id=tenant.id)
            extra = [domain for domain in tenant.allowed_domains or [] if domain != tenant.domain]
            tenant.domain = canonical
            tenant.allowed_domains = normalize_allowed_domains(canonical, extra)
    if changes.get("plan") is not None:
        tenant.plan = normalize_plan(changes["plan"])
        if changes.get("message_limit") is None:
            tenant.message_limit = default_message_limit(tenant.plan)
    if changes.get("message_limit") is not None:
        if changes["message_limit"] < 0:
            raise ValidationFailed("Message limit cannot be negative", code="INVALID_MESSAGE_LIMIT")
        tenant.message_limit = changes["message_limit"]
    if changes.get("subscription_status") is not None:
        if changes["subscription_status"] not in SUBSCRIPTION_STATUSES:
            raise ValidationFailed(
                f"Unsupported subscription status: {changes['subscription_status']}",
                code="INVALID_SUBSCRIPTION_STATUS",
            )
        tenant.subscription_status = changes["subscription_status"]
    if changes.get("is_active") is not None:
        tenant.is_active = bool(changes["is_active"])
    await update_settings(
        session,
        tenant,
        chatbot_config=changes.get("chatbot_config"),
        allowed_domains=changes.get("allowed_domains"),
        name=changes.get("name"),
        description=changes.get("description"),
        business_type=changes.get("business_type"),
    )
    logger.info("tenant_updated tenant_id=%s fields=%s", tenant.id, ",".join(sorted(changes)))
    return tenant


async def delete_tenant(session: AsyncSession, tenant: Tenant) -> dict[str, int]:
    conversations, messages = await tenants_repo.delete_tenant_cascade(session, tenant)
    logger.info(
        "tenant_deleted tenant_id=%s conversations=%d messages=%d", tenant.id, conversations, messages
    )
    return {"conversations_deleted": conversations, "messages_deleted": messages}


BULK_ACTIONS = ("activate", "deactivate", "change_plan", "delete")


@dataclass(frozen=True)
class BulkResult:
    action: str
    modified_ids: list[str] = field(default_factory=list)
    # Ids that matched no tenant; they are reported, not treated as errors.
    missing_ids: list[str] = field(default_factory=list)


async def bulk_tenant_action(
    session: AsyncSession,
    tenant_ids: Iterable[str],
    action: str,
    *,
    plan: str | None = None,
) -> BulkResult:
    if action not in BULK_ACTIONS:
        raise ValidationFailed(f"Unsupported bulk action: {action}", code="INVALID_BULK_ACTION")
    if action == "change_plan" and not plan:
        raise ValidationFailed("Plan is required for change_plan", code="PLAN_REQUIRED")
    result = BulkResult(action=action)
    for tenant_id in dict.fromkeys(tenant_ids):
        tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is None:
            result.missing_ids.append(tenant_id)
            continue
        if action == "delete":
            await delete_tenant(session, tenant)
        elif action == "change_plan":
            await admin_update_tenant(session, tenant, {"plan": plan})
        else:
            tenant.is_active = action == "activate"
        result.modified_ids.append(tenant_id)
    await session.flush()
    logger.info(
        "tenant_bulk_action action=%s modified=%d missing=%d",
        action,
        len(result.modified_ids),
        len(result.missing_ids),
    )
    return result
