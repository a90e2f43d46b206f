from __future__ import annotations

from chatdesk.core.errors import ValidationFailed
from chatdesk.domain.models import PLANS, UNLIMITED_PLAN, Tenant


_DEFAULT_MESSAGE_LIMITS: dict[str, int] = {
    "starter": 1000,
    "business": 5000,
    # 0 is the stored marker for "unlimited".
    UNLIMITED_PLAN: 0,
}

_FEATURE_PLANS: dict[str, frozenset[str]] = {
    "analytics": frozenset({"business", UNLIMITED_PLAN}),
    "advanced_support": frozenset({UNLIMITED_PLAN}),
    "ai_insights": frozenset({UNLIMITED_PLAN}),
}


def normalize_plan(plan: str) -> str:
    normalized = plan.strip().lower()
    if normalized not in PLANS:
        raise ValidationFailed(f"Unsupported plan: {plan}", code="INVALID_PLAN")
    return normalized


def default_message_limit(plan: str) -> int:
    return _DEFAULT_MESSAGE_LIMITS[normalize_plan(plan)]


def is_unlimited(tenant: Tenant) -> bool:
    return tenant.plan == UNLIMITED_PLAN


def has_feature(tenant: Tenant, feature: str) -> bool:
    # Unknown features are off for every plan.
    return tenant.plan in _FEATURE_PLANS.get(feature, frozenset())
