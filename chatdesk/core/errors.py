from __future__ import annotations

from typing import Any


class ChatdeskError(Exception):
    """Base error for chatdesk; carries a stable code and HTTP status."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class Unauthenticated(ChatdeskError):
    """Missing, malformed or expired session credential."""

    status_code = 401
    default_code = "AUTH_UNAUTHORIZED"


class Forbidden(ChatdeskError):
    """Role mismatch, tenant isolation violation or disallowed origin."""

    status_code = 403
    default_code = "AUTH_FORBIDDEN"


class SubscriptionInactive(Forbidden):
    """Tenant is suspended or its subscription is not active."""

    default_code = "SUBSCRIPTION_INACTIVE"


class NotFound(ChatdeskError):
    """Unknown resource, or a resource owned by another tenant."""

    status_code = 404
    default_code = "NOT_FOUND"


class ValidationFailed(ChatdeskError):
    """Malformed input rejected at the boundary."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class QuotaExceeded(ChatdeskError):
    """Usage counter reached the plan limit."""

    status_code = 429
    default_code = "QUOTA_EXCEEDED"


class Conflict(ChatdeskError):
    """Duplicate email, domain or owner."""

    status_code = 409
    default_code = "CONFLICT"


class DatabaseError(ChatdeskError):
    """Database layer failure."""
