from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before chatdesk.persistence.db is imported.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'chatdesk_test.db')}",
)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-bytes-for-hs256")

import pytest

from chatdesk.apps.api.rate_limit import reset_rate_limiter_state
from chatdesk.core.config import get_settings
from chatdesk.domain.models import Base
from chatdesk.persistence.db import engine
from chatdesk.services.usage import DeferredUsageAccounting, get_usage_accounting, reset_usage_accounting


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine so pooled connections never cross event loops.
    await engine.dispose()


@pytest.fixture(autouse=True)
async def reset_cached_services() -> None:
    get_settings.cache_clear()
    reset_usage_accounting()
    reset_rate_limiter_state()
    yield
    accounting = get_usage_accounting()
    if isinstance(accounting, DeferredUsageAccounting):
        await accounting.drain()
    reset_usage_accounting()
    reset_rate_limiter_state()
    get_settings.cache_clear()
