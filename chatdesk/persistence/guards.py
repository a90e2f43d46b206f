from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, select

from chatdesk.core.config import get_settings


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised when a tenant-scoped query is about to run without a tenant id.
    message: str


def require_tenant_id(tenant_id: str | None) -> None:
    if not get_settings().require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model: Any, tenant_id: str) -> Any:
    # Every Conversation/Message query goes through here so no read path skips the tenant filter.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


def scoped_select(model: Any, tenant_id: str, *criteria: Any) -> Select:
    # select(model) pre-filtered by tenant, with any extra criteria ANDed in.
    return select(model).where(tenant_predicate(model, tenant_id), *criteria)
