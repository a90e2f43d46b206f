from __future__ import annotations

from typing import Any

from chatdesk.apps.api.response import API_VERSION, ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {
        "success": False,
        "message": message,
        "error": error,
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
    }


def _error_response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _error_response("Validation error", "VALIDATION_ERROR", "Message cannot exceed 5000 characters"),
    401: _error_response("Not authenticated", "AUTH_MISSING", "Not authenticated"),
    403: _error_response("Forbidden", "TENANT_ISOLATION_VIOLATION", "Tenant isolation violation"),
    404: _error_response("Not found", "NOT_FOUND", "Resource not found"),
    500: _error_response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
}

WIDGET_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    403: _error_response("Origin not allowed or client inactive", "ORIGIN_NOT_ALLOWED", "Domain not authorized"),
    429: _error_response(
        "Plan message limit reached",
        "QUOTA_EXCEEDED",
        "Message limit reached. Please upgrade your plan.",
        details={"limit": 1000, "used": 1000},
    ),
}

CREATE_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    409: _error_response("Conflict", "DOMAIN_TAKEN", "A client with this domain already exists"),
}
