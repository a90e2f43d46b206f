"""Signed session credentials.

The session cookie carries an HS256 JWT whose claims are the only source of
identity for dashboard and admin requests. Nothing outside the signed payload
(request bodies, query strings, headers) contributes to the resulting
:class:`Identity`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

import jwt
from pydantic import BaseModel, ValidationError

from chatdesk.core.config import get_settings
from chatdesk.core.errors import Unauthenticated
from chatdesk.domain.models import ROLES


logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "sub", "role", "email"]


class Identity(BaseModel):
    user_id: str
    role: str
    email: str
    # None for admins, and for client users whose tenant was deleted.
    tenant_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def issue_token(
    *,
    user_id: str,
    role: str,
    email: str,
    tenant_id: str | None,
    now: datetime | None = None,
    ttl: timedelta | None = None,
) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    expires_at = issued_at + (ttl if ttl is not None else timedelta(hours=settings.session_ttl_hours))
    payload = {
        "sub": user_id,
        "role": role,
        "email": email,
        "tenant_id": tenant_id,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def resolve(credential: str | None) -> Identity:
    if not credential:
        raise Unauthenticated("Not authenticated", code="AUTH_MISSING")
    settings = get_settings()
    try:
        claims = jwt.decode(
            credential,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise Unauthenticated("Session expired", code="AUTH_EXPIRED") from exc
    except jwt.InvalidTokenError as exc:
        logger.info("session_token_rejected reason=%s", type(exc).__name__)
        raise Unauthenticated("Invalid session token", code="AUTH_INVALID") from exc

    try:
        identity = Identity(
            user_id=claims["sub"],
            role=claims["role"],
            email=claims["email"],
            tenant_id=claims.get("tenant_id"),
        )
    except ValidationError as exc:
        raise Unauthenticated("Invalid session token", code="AUTH_INVALID") from exc
    if identity.role not in ROLES:
        raise Unauthenticated("Invalid session token", code="AUTH_INVALID")
    return identity
