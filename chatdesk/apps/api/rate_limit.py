from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import time
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from chatdesk.apps.api.deps import require_role
from chatdesk.core.config import get_settings
from chatdesk.services.audit import record_event
from chatdesk.services.auth.tokens import Identity


logger = logging.getLogger(__name__)

ROUTE_CLASS_MODERATION = "moderation"


@dataclass(frozen=True)
class BucketConfig:
    # Sustained refill rate plus burst capacity.
    rps: float
    burst: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    route_class: str
    retry_after_ms: int
    remaining: float


@dataclass
class _Bucket:
    tokens: float
    last_ms: int


def _calculate_tokens(
    *,
    tokens: float | None,
    last_ms: int | None,
    now_ms: int,
    rate: float,
    burst: int,
) -> float:
    # Refill by elapsed time, capped at burst; a fresh bucket starts full.
    if tokens is None:
        tokens = float(burst)
    if last_ms is None:
        last_ms = now_ms
    if now_ms < last_ms:
        last_ms = now_ms
    delta_s = (now_ms - last_ms) / 1000.0
    return min(float(burst), tokens + (delta_s * rate))


def _retry_after_ms(tokens: float, *, rate: float, cost: int) -> int:
    if tokens >= cost:
        return 0
    if rate <= 0:
        return 1000
    needed = cost - tokens
    return int(math.ceil((needed / rate) * 1000))


def _ttl_ms(rate: float, burst: int) -> int:
    # A bucket idle this long has refilled completely and can be forgotten.
    if rate <= 0:
        return max(1, burst) * 1000
    return max(1, int(math.ceil((burst / rate) * 2))) * 1000


class RateLimiter:
    """Token buckets held in process memory, one per (route class, key).

    Limits are per API process; a multi-process deployment multiplies the
    effective budget by the number of workers.
    """

    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        # Injectable clock for deterministic tests.
        self._time_provider = time_provider or time.time
        self._buckets: dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()

    async def check(self, *, key: str, route_class: str, limits: BucketConfig, cost: int = 1) -> RateLimitDecision:
        now_ms = int(self._time_provider() * 1000)
        bucket_key = f"{route_class}:{key}"
        async with self._lock:
            self._evict_idle(now_ms, limits)
            bucket = self._buckets.get(bucket_key)
            tokens = _calculate_tokens(
                tokens=bucket.tokens if bucket else None,
                last_ms=bucket.last_ms if bucket else None,
                now_ms=now_ms,
                rate=limits.rps,
                burst=limits.burst,
            )
            allowed = tokens >= cost
            retry_after_ms = _retry_after_ms(tokens, rate=limits.rps, cost=cost)
            if allowed:
                tokens -= cost
            self._buckets[bucket_key] = _Bucket(tokens=tokens, last_ms=now_ms)
        return RateLimitDecision(
            allowed=allowed,
            route_class=route_class,
            retry_after_ms=retry_after_ms,
            remaining=tokens,
        )

    def _evict_idle(self, now_ms: int, limits: BucketConfig) -> None:
        ttl_ms = _ttl_ms(limits.rps, limits.burst)
        stale = [key for key, bucket in self._buckets.items() if now_ms - bucket.last_ms > ttl_ms]
        for key in stale:
            del self._buckets[key]


_rate_limiter: RateLimiter | None = None


def _get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter_state() -> None:
    global _rate_limiter
    _rate_limiter = None


def _limits_for_route(route_class: str) -> BucketConfig:
    settings = get_settings()
    if route_class == ROUTE_CLASS_MODERATION:
        return BucketConfig(settings.rl_moderation_rps, settings.rl_moderation_burst)
    raise ValueError(f"Unknown route class: {route_class}")


def _throttle_exception(*, decision: RateLimitDecision) -> HTTPException:
    retry_after_s = int(math.ceil(decision.retry_after_ms / 1000.0))
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Too many requests",
            "route_class": decision.route_class,
            "retry_after_ms": decision.retry_after_ms,
        },
        headers={
            "Retry-After": str(retry_after_s),
            "X-RateLimit-Route-Class": decision.route_class,
            "X-RateLimit-Retry-After-Ms": str(decision.retry_after_ms),
        },
    )


async def enforce_rate_limit(*, request: Request, identity: Identity, route_class: str) -> None:
    # Runs after authentication so buckets are keyed by user rather than a forgeable IP header.
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    decision = await _get_rate_limiter().check(
        key=identity.user_id,
        route_class=route_class,
        limits=_limits_for_route(route_class),
    )
    if decision.allowed:
        return
    logger.info("rate_limited user_id=%s route_class=%s", identity.user_id, route_class)
    await record_event(
        tenant_id=identity.tenant_id,
        actor_id=identity.user_id,
        actor_role=identity.role,
        event_type="security.rate_limited",
        outcome="failure",
        resource_type="rate_limit",
        request=request,
        metadata={
            "route_class": decision.route_class,
            "retry_after_ms": decision.retry_after_ms,
            "path": request.url.path,
        },
        error_code="RATE_LIMITED",
    )
    raise _throttle_exception(decision=decision)


async def moderation_admin(
    request: Request,
    identity: Identity = Depends(require_role("admin")),
) -> Identity:
    """Admin identity for moderation routes, charged one token per request."""
    await enforce_rate_limit(request=request, identity=identity, route_class=ROUTE_CLASS_MODERATION)
    return identity
