from __future__ import annotations

import asyncio

import pytest

from chatdesk.core.errors import NotFound, QuotaExceeded, SubscriptionInactive
from chatdesk.persistence.db import SessionLocal
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services.usage import (
    Admission,
    AtomicUsageAccounting,
    DeferredUsageAccounting,
    build_usage_accounting,
    usage_headers,
)
from chatdesk.tests.utils.tenants import create_test_tenant, reload_tenant


def test_usage_headers_for_limited_and_unlimited_plans() -> None:
    limited = Admission(tenant_id="t1", plan="starter", limit=2, used=1)
    assert usage_headers(limited) == {
        "X-Usage-Limit": "2",
        "X-Usage-Used": "1",
        "X-Usage-Remaining": "1",
    }
    unlimited = Admission(tenant_id="t1", plan="pro", limit=None, used=0)
    assert usage_headers(unlimited)["X-Usage-Limit"] == "unlimited"
    assert unlimited.remaining is None


def test_unknown_mode_is_rejected() -> None:
    assert isinstance(build_usage_accounting("atomic"), AtomicUsageAccounting)
    assert isinstance(build_usage_accounting("deferred"), DeferredUsageAccounting)
    with pytest.raises(ValueError):
        build_usage_accounting("optimistic")


@pytest.mark.asyncio
async def test_atomic_admission_stops_at_the_limit() -> None:
    _, tenant = await create_test_tenant(message_limit=2)
    accounting = AtomicUsageAccounting()
    async with SessionLocal() as session:
        first = await accounting.admit_message(session, tenant.id)
        second = await accounting.admit_message(session, tenant.id)
        with pytest.raises(QuotaExceeded) as exc:
            await accounting.admit_message(session, tenant.id)
    assert (first.used, second.used) == (1, 2)
    assert second.remaining == 0
    assert exc.value.status_code == 429
    assert exc.value.details == {"limit": 2, "used": 2}
    stored = await reload_tenant(tenant.id)
    assert stored.usage_count == 2
    assert stored.total_messages == 2


@pytest.mark.asyncio
async def test_atomic_admission_ignores_stale_reads() -> None:
    _, tenant = await create_test_tenant(message_limit=2, usage_count=1)
    accounting = AtomicUsageAccounting()
    async with SessionLocal() as slow, SessionLocal() as fast:
        # The slow request has already loaded the tenant with one slot left.
        stale = await tenants_repo.get_tenant(slow, tenant.id)
        assert stale.usage_count < stale.message_limit
        await accounting.admit_message(fast, tenant.id)
        with pytest.raises(QuotaExceeded):
            await accounting.admit_message(slow, tenant.id)
    assert (await reload_tenant(tenant.id)).usage_count == 2


@pytest.mark.asyncio
async def test_pro_plan_is_unlimited_but_counts_lifetime_messages() -> None:
    _, tenant = await create_test_tenant(plan="pro")
    accounting = AtomicUsageAccounting()
    async with SessionLocal() as session:
        for _ in range(3):
            admission = await accounting.admit_message(session, tenant.id)
    assert admission.limit is None
    stored = await reload_tenant(tenant.id)
    assert stored.message_limit == 0
    assert stored.usage_count == 0
    assert stored.total_messages == 3


@pytest.mark.asyncio
async def test_inactive_subscription_is_refused_without_counting() -> None:
    _, past_due = await create_test_tenant(subscription_status="past_due")
    _, suspended = await create_test_tenant(is_active=False)
    accounting = AtomicUsageAccounting()
    async with SessionLocal() as session:
        for tenant in (past_due, suspended):
            with pytest.raises(SubscriptionInactive):
                await accounting.admit_message(session, tenant.id)
        with pytest.raises(NotFound):
            await accounting.admit_message(session, "no-such-client")
    assert (await reload_tenant(past_due.id)).usage_count == 0


@pytest.mark.asyncio
async def test_deferred_admission_increments_after_response() -> None:
    _, tenant = await create_test_tenant(message_limit=2)
    accounting = DeferredUsageAccounting()
    async with SessionLocal() as session:
        admission = await accounting.admit_message(session, tenant.id)
    assert admission.used == 1
    await accounting.drain()
    assert (await reload_tenant(tenant.id)).usage_count == 1


@pytest.mark.asyncio
async def test_deferred_admission_refuses_once_counter_reaches_limit() -> None:
    _, tenant = await create_test_tenant(message_limit=1, usage_count=1)
    accounting = DeferredUsageAccounting()
    async with SessionLocal() as session:
        with pytest.raises(QuotaExceeded):
            await accounting.admit_message(session, tenant.id)
    await accounting.drain()
    assert (await reload_tenant(tenant.id)).usage_count == 1


@pytest.mark.asyncio
async def test_concurrent_atomic_admissions_never_overshoot() -> None:
    _, tenant = await create_test_tenant(message_limit=3)
    accounting = AtomicUsageAccounting()

    async def _admit() -> bool:
        async with SessionLocal() as session:
            try:
                await accounting.admit_message(session, tenant.id)
            except QuotaExceeded:
                return False
            return True

    outcomes = await asyncio.gather(*(_admit() for _ in range(6)))
    assert outcomes.count(True) == 3
    stored = await reload_tenant(tenant.id)
    assert stored.usage_count == 3
    assert stored.total_messages == 3
