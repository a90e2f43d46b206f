"""Plan quota admission for inbound visitor messages.

``admit_message`` runs once per visitor message that will receive a reply.
Two interchangeable strategies sit behind :class:`UsageAccounting`:

* ``AtomicUsageAccounting`` folds the limit check and the increment into one
  conditional UPDATE, so concurrent requests can never push ``usage_count``
  past ``message_limit``.
* ``DeferredUsageAccounting`` checks the loaded row and increments off the
  response path. Cheaper, but concurrent requests may overshoot the limit by
  the number of in-flight increments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import get_settings
from chatdesk.core.errors import NotFound, QuotaExceeded, SubscriptionInactive
from chatdesk.domain.models import UNLIMITED_PLAN, Tenant
from chatdesk.persistence.db import SessionLocal
from chatdesk.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    tenant_id: str
    plan: str
    # None when the plan is unlimited.
    limit: int | None
    used: int

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)


def usage_headers(admission: Admission) -> dict[str, str]:
    return {
        "X-Usage-Limit": "unlimited" if admission.limit is None else str(admission.limit),
        "X-Usage-Used": str(admission.used),
        "X-Usage-Remaining": "unlimited" if admission.remaining is None else str(admission.remaining),
    }


def _admission_for(tenant: Tenant) -> Admission:
    unlimited = tenant.plan == UNLIMITED_PLAN
    return Admission(
        tenant_id=tenant.id,
        plan=tenant.plan,
        limit=None if unlimited else tenant.message_limit,
        used=tenant.usage_count,
    )


def ensure_admissible(tenant: Tenant | None) -> None:
    # Raise the reason a message would be refused, in order: missing, inactive, over quota.
    if tenant is None:
        raise NotFound("Client not found", code="TENANT_NOT_FOUND")
    if not tenant.is_active or tenant.subscription_status != "active":
        raise SubscriptionInactive("Subscription inactive", details={"status": tenant.subscription_status})
    if tenant.plan == UNLIMITED_PLAN:
        return
    if tenant.usage_count >= tenant.message_limit:
        raise QuotaExceeded(
            "Message limit reached. Please upgrade your plan.",
            details={"limit": tenant.message_limit, "used": tenant.usage_count},
        )


async def _load_fresh(session: AsyncSession, tenant_id: str) -> Tenant | None:
    # Bypass the identity map so counters written by bulk UPDATEs are visible.
    result = await session.execute(
        select(Tenant).where(Tenant.id == tenant_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class UsageAccounting(ABC):
    @abstractmethod
    async def admit_message(self, session: AsyncSession, tenant_id: str) -> Admission:
        """Admit one inbound message or raise SubscriptionInactive/QuotaExceeded/NotFound."""


class AtomicUsageAccounting(UsageAccounting):
    async def admit_message(self, session: AsyncSession, tenant_id: str) -> Admission:
        admitted = await tenants_repo.try_consume_message(session, tenant_id)
        if not admitted:
            await session.rollback()
            tenant = await _load_fresh(session, tenant_id)
            ensure_admissible(tenant)
            # Row matched no predicate yet looks admissible: a concurrent writer took the last slot.
            raise QuotaExceeded(
                "Message limit reached. Please upgrade your plan.",
                details={"limit": tenant.message_limit, "used": tenant.usage_count},
            )
        # The admission is its own unit of work; later ledger failures do not refund it.
        await session.commit()
        tenant = await _load_fresh(session, tenant_id)
        return _admission_for(tenant)


class DeferredUsageAccounting(UsageAccounting):
    def __init__(self) -> None:
        self._pending: set[asyncio.Task[None]] = set()

    async def admit_message(self, session: AsyncSession, tenant_id: str) -> Admission:
        tenant = await _load_fresh(session, tenant_id)
        ensure_admissible(tenant)
        unlimited = tenant.plan == UNLIMITED_PLAN
        task = asyncio.create_task(self._increment(tenant_id, count_against_limit=not unlimited))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        projected = tenant.usage_count if unlimited else tenant.usage_count + 1
        return Admission(
            tenant_id=tenant.id,
            plan=tenant.plan,
            limit=None if unlimited else tenant.message_limit,
            used=projected,
        )

    async def _increment(self, tenant_id: str, *, count_against_limit: bool) -> None:
        async with SessionLocal() as session:
            try:
                await tenants_repo.increment_usage(
                    session, tenant_id, count_against_limit=count_against_limit
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("usage_increment_failed tenant_id=%s", tenant_id, exc_info=exc)

    async def drain(self) -> None:
        # Wait for in-flight increments; used at shutdown and in tests.
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_usage_accounting: UsageAccounting | None = None


def build_usage_accounting(mode: str) -> UsageAccounting:
    if mode == "atomic":
        return AtomicUsageAccounting()
    if mode == "deferred":
        return DeferredUsageAccounting()
    raise ValueError(f"Unknown usage accounting mode: {mode}")


def get_usage_accounting() -> UsageAccounting:
    global _usage_accounting
    if _usage_accounting is None:
        _usage_accounting = build_usage_accounting(get_settings().usage_accounting_mode)
    return _usage_accounting


def reset_usage_accounting() -> None:
    global _usage_accounting
    _usage_accounting = None
