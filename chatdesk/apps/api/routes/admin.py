from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import commit_or_fail, get_db, reject_tenant_id_in_body, require_role
from chatdesk.apps.api.openapi import CREATE_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from chatdesk.apps.api.rate_limit import moderation_admin
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.apps.api.schemas import MessageResponse, TenantResponse, UserResponse
from chatdesk.core.config import MAX_MESSAGE_LENGTH
from chatdesk.core.errors import NotFound, ValidationFailed
from chatdesk.domain.models import AuditEvent, User
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.persistence.repos import users as users_repo
from chatdesk.services import ledger
from chatdesk.services.audit import list_events, record_event
from chatdesk.services.auth import accounts
from chatdesk.services.auth.tokens import Identity
from chatdesk.services.replies import manual_reply_metadata
from chatdesk.services.stats import global_stats, tenant_activity, tenant_stats
from chatdesk.services.tenants import (
    admin_update_tenant,
    bulk_tenant_action,
    create_tenant_for_owner,
    delete_tenant,
    get_tenant_or_404,
)

router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)

Plan = Literal["starter", "business", "pro"]


class TenantCreateRequest(BaseModel):
    owner_email: str = Field(max_length=254)
    owner_password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=100)
    domain: str = Field(min_length=1, max_length=253)
    plan: Plan = "starter"
    message_limit: int | None = Field(default=None, ge=0)
    business_type: str | None = None
    description: str | None = Field(default=None, max_length=500)
    allowed_domains: list[str] | None = Field(default=None, max_length=20)


class TenantPatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    domain: str | None = Field(default=None, min_length=1, max_length=253)
    allowed_domains: list[str] | None = Field(default=None, max_length=20)
    business_type: str | None = None
    description: str | None = Field(default=None, max_length=500)
    chatbot_config: dict[str, Any] | None = None
    plan: Plan | None = None
    message_limit: int | None = Field(default=None, ge=0)
    subscription_status: Literal["active", "past_due", "cancelled"] | None = None
    is_active: bool | None = None


class TenantDetailResponse(BaseModel):
    tenant: TenantResponse
    owner: UserResponse | None
    stats: dict[str, Any]


class TenantDeleteResponse(BaseModel):
    tenant_id: str
    conversations_deleted: int
    messages_deleted: int


class TenantBulkRequest(BaseModel):
    action: Literal["activate", "deactivate", "change_plan", "delete"]
    tenant_ids: list[str] = Field(min_length=1, max_length=100)
    plan: Plan | None = None


class TenantBulkResponse(BaseModel):
    action: str
    modified_count: int
    modified_ids: list[str]
    missing_ids: list[str]


class ActivityResponse(BaseModel):
    total: int
    limit: int
    offset: int
    conversations: list[dict[str, Any]]


class ManualReplyRequest(BaseModel):
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    role: Literal["assistant", "system"] = "assistant"


class UserDetailResponse(BaseModel):
    user: UserResponse
    tenant: TenantResponse | None


class UserBlockRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=200)


class UserBlockResponse(BaseModel):
    user: UserResponse
    reason: str


class UserDeleteResponse(BaseModel):
    user_id: str
    tenant_id: str | None
    conversations_deleted: int
    messages_deleted: int


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: Any
    tenant_id: str | None
    actor_type: str
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    metadata: dict[str, Any] | None
    error_code: str | None


def _audit_response(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at,
        tenant_id=event.tenant_id,
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        metadata=event.metadata_json,
        error_code=event.error_code,
    )


async def _audit_admin_action(
    db: AsyncSession,
    request: Request,
    identity: Identity,
    event_type: str,
    *,
    tenant_id: str | None,
    resource_type: str,
    resource_id: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    await record_event(
        session=db,
        tenant_id=tenant_id,
        actor_id=identity.user_id,
        actor_role=identity.role,
        event_type=event_type,
        outcome="success",
        resource_type=resource_type,
        resource_id=resource_id,
        request=request,
        metadata=metadata,
    )


@router.get("/tenants", response_model=SuccessEnvelope[list[TenantResponse]])
async def list_tenants(
    request: Request,
    status: Literal["active", "inactive"] | None = Query(default=None),
    plan: Plan | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    is_active = None if status is None else status == "active"
    tenants = await tenants_repo.list_tenants(db, is_active=is_active, plan=plan, search=search)
    return success_response(request=request, data=[TenantResponse.model_validate(t) for t in tenants])


@router.post(
    "/tenants",
    status_code=201,
    response_model=SuccessEnvelope[TenantDetailResponse],
    responses=CREATE_ERROR_RESPONSES,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_tenant(
    request: Request,
    payload: TenantCreateRequest,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    owner = await accounts.create_user_account(
        db, email=payload.owner_email, password=payload.owner_password, role="client"
    )
    tenant = await create_tenant_for_owner(
        db,
        owner,
        name=payload.name,
        domain=payload.domain,
        plan=payload.plan,
        message_limit=payload.message_limit,
        business_type=payload.business_type,
        description=payload.description,
        allowed_domains=payload.allowed_domains,
    )
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.tenant.created",
        tenant_id=tenant.id,
        resource_type="tenant",
        resource_id=tenant.id,
        metadata={"plan": tenant.plan, "domain": tenant.domain},
    )
    await commit_or_fail(db, "creating the client")
    stats = await tenant_stats(db, tenant)
    payload_out = TenantDetailResponse(
        tenant=TenantResponse.model_validate(tenant),
        owner=UserResponse.model_validate(owner),
        stats=stats.as_dict(),
    )
    return success_response(request=request, data=payload_out)


@router.get("/tenants/{tenant_id}", response_model=SuccessEnvelope[TenantDetailResponse])
async def get_tenant_detail(
    tenant_id: str,
    request: Request,
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    owner = await users_repo.get_user(db, tenant.owner_user_id)
    stats = await tenant_stats(db, tenant)
    payload = TenantDetailResponse(
        tenant=TenantResponse.model_validate(tenant),
        owner=UserResponse.model_validate(owner) if owner is not None else None,
        stats=stats.as_dict(),
    )
    return success_response(request=request, data=payload)


@router.patch(
    "/tenants/{tenant_id}",
    response_model=SuccessEnvelope[TenantResponse],
    responses=CREATE_ERROR_RESPONSES,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def patch_tenant(
    tenant_id: str,
    request: Request,
    payload: TenantPatchRequest,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No changes supplied", code="EMPTY_UPDATE")
    tenant = await get_tenant_or_404(db, tenant_id)
    await admin_update_tenant(db, tenant, changes)
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.tenant.updated",
        tenant_id=tenant.id,
        resource_type="tenant",
        resource_id=tenant.id,
        metadata={"fields": sorted(changes)},
    )
    await commit_or_fail(db, "updating the client")
    return success_response(request=request, data=TenantResponse.model_validate(tenant))


@router.delete("/tenants/{tenant_id}", response_model=SuccessEnvelope[TenantDeleteResponse])
async def remove_tenant(
    tenant_id: str,
    request: Request,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    counts = await delete_tenant(db, tenant)
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.tenant.deleted",
        tenant_id=tenant_id,
        resource_type="tenant",
        resource_id=tenant_id,
        metadata=counts,
    )
    await commit_or_fail(db, "deleting the client")
    return success_response(request=request, data=TenantDeleteResponse(tenant_id=tenant_id, **counts))


@router.post("/tenants/bulk", response_model=SuccessEnvelope[TenantBulkResponse])
async def bulk_tenants(
    request: Request,
    payload: TenantBulkRequest,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await bulk_tenant_action(db, payload.tenant_ids, payload.action, plan=payload.plan)
    for tenant_id in result.modified_ids:
        await _audit_admin_action(
            db,
            request,
            identity,
            f"admin.tenant.bulk_{payload.action}",
            tenant_id=tenant_id,
            resource_type="tenant",
            resource_id=tenant_id,
            metadata={"plan": payload.plan} if payload.plan else None,
        )
    await commit_or_fail(db, "applying the bulk action")
    data = TenantBulkResponse(
        action=result.action,
        modified_count=len(result.modified_ids),
        modified_ids=result.modified_ids,
        missing_ids=result.missing_ids,
    )
    return success_response(request=request, data=data)


@router.get("/tenants/{tenant_id}/activity", response_model=SuccessEnvelope[ActivityResponse])
async def get_tenant_activity(
    tenant_id: str,
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    activity = await tenant_activity(db, tenant, limit=limit, offset=offset)
    return success_response(request=request, data=ActivityResponse(**activity))


@router.get("/tenants/{tenant_id}/messages", response_model=SuccessEnvelope[list[MessageResponse]])
async def list_tenant_messages(
    tenant_id: str,
    request: Request,
    flagged: bool | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    _identity: Identity = Depends(moderation_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    messages = await ledger.list_tenant_messages(db, tenant.id, flagged=flagged, limit=limit)
    return success_response(request=request, data=[MessageResponse.model_validate(m) for m in messages])


@router.post(
    "/tenants/{tenant_id}/conversations/{conversation_id}/messages",
    status_code=201,
    response_model=SuccessEnvelope[MessageResponse],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def post_manual_reply(
    tenant_id: str,
    conversation_id: str,
    request: Request,
    payload: ManualReplyRequest,
    identity: Identity = Depends(moderation_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    message = await ledger.append_message(
        db, tenant.id, conversation_id, payload.role, payload.content, manual_reply_metadata()
    )
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.message.sent",
        tenant_id=tenant.id,
        resource_type="message",
        resource_id=message.id,
        metadata={"conversation_id": conversation_id, "role": payload.role},
    )
    await commit_or_fail(db, "sending the reply")
    return success_response(request=request, data=MessageResponse.model_validate(message))


@router.get("/users", response_model=SuccessEnvelope[list[UserResponse]])
async def list_users(
    request: Request,
    role: Literal["client", "admin"] | None = Query(default=None),
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    users = await users_repo.list_users(db, role=role)
    return success_response(request=request, data=[UserResponse.model_validate(u) for u in users])


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    return user


@router.get("/users/{user_id}", response_model=SuccessEnvelope[UserDetailResponse])
async def get_user_detail(
    user_id: str,
    request: Request,
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await _get_user_or_404(db, user_id)
    tenant = await tenants_repo.get_tenant(db, user.tenant_id) if user.tenant_id else None
    payload = UserDetailResponse(
        user=UserResponse.model_validate(user),
        tenant=TenantResponse.model_validate(tenant) if tenant is not None else None,
    )
    return success_response(request=request, data=payload)


@router.delete("/users/{user_id}", response_model=SuccessEnvelope[UserDeleteResponse])
async def delete_user(
    user_id: str,
    request: Request,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if user_id == identity.user_id:
        raise ValidationFailed("Admins cannot delete themselves", code="SELF_DELETE")
    user = await _get_user_or_404(db, user_id)
    summary = await accounts.delete_user_account(db, user)
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.user.deleted",
        tenant_id=None,
        resource_type="user",
        resource_id=user_id,
        metadata=summary,
    )
    await commit_or_fail(db, "deleting the user")
    return success_response(request=request, data=UserDeleteResponse(**summary))


@router.post("/users/{user_id}/block", response_model=SuccessEnvelope[UserBlockResponse])
async def block_user(
    user_id: str,
    request: Request,
    payload: UserBlockRequest | None = None,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if user_id == identity.user_id:
        raise ValidationFailed("Admins cannot block themselves", code="SELF_BLOCK")
    user = await _get_user_or_404(db, user_id)
    reason = (payload.reason if payload else None) or "Policy violation"
    await accounts.block_user(db, user, reason)
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.user.blocked",
        tenant_id=user.tenant_id,
        resource_type="user",
        resource_id=user.id,
        metadata={"reason": reason},
    )
    await commit_or_fail(db, "blocking the user")
    data = UserBlockResponse(user=UserResponse.model_validate(user), reason=reason)
    return success_response(request=request, data=data)


async def _set_user_status(
    user_id: str, request: Request, identity: Identity, db: AsyncSession, *, active: bool
) -> dict:
    user = await _get_user_or_404(db, user_id)
    if user.id == identity.user_id and not active:
        raise ValidationFailed("Admins cannot suspend themselves", code="SELF_SUSPEND")
    await accounts.set_user_active(db, user, active)
    await _audit_admin_action(
        db,
        request,
        identity,
        "admin.user.activated" if active else "admin.user.suspended",
        tenant_id=user.tenant_id,
        resource_type="user",
        resource_id=user.id,
    )
    await commit_or_fail(db, "updating the user")
    return success_response(request=request, data=UserResponse.model_validate(user))


@router.post("/users/{user_id}/suspend", response_model=SuccessEnvelope[UserResponse])
async def suspend_user(
    user_id: str,
    request: Request,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _set_user_status(user_id, request, identity, db, active=False)


@router.post("/users/{user_id}/activate", response_model=SuccessEnvelope[UserResponse])
async def activate_user(
    user_id: str,
    request: Request,
    identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _set_user_status(user_id, request, identity, db, active=True)


@router.get("/stats")
async def get_global_stats(
    request: Request,
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(request=request, data=await global_stats(db))


@router.get("/audit-events", response_model=SuccessEnvelope[list[AuditEventResponse]])
async def get_audit_events(
    request: Request,
    tenant_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _identity: Identity = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    events = await list_events(db, tenant_id=tenant_id, event_type=event_type, limit=limit)
    return success_response(request=request, data=[_audit_response(event) for event in events])
