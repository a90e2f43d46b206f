from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import commit_or_fail, get_db, reject_tenant_id_in_body, tenant_identity
from chatdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.apps.api.schemas import (
    ConversationDetailResponse,
    ConversationResponse,
    MessageResponse,
    TenantResponse,
)
from chatdesk.core.config import MAX_WELCOME_MESSAGE_LENGTH, get_settings
from chatdesk.core.errors import NotFound
from chatdesk.services import ledger
from chatdesk.services.auth.tokens import Identity
from chatdesk.services.embed import embed_snippet
from chatdesk.services.plans import has_feature
from chatdesk.services.stats import tenant_stats
from chatdesk.services.tenants import get_tenant_or_404, update_settings

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class ChatbotConfigPatch(BaseModel):
    welcome_message: str | None = Field(default=None, min_length=1, max_length=MAX_WELCOME_MESSAGE_LENGTH)
    tone: Literal["professional", "friendly", "casual"] | None = None
    enabled: bool | None = None
    primary_color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    position: Literal["bottom-right", "bottom-left"] | None = None


class SettingsPatchRequest(BaseModel):
    chatbot_config: ChatbotConfigPatch | None = None
    allowed_domains: list[str] | None = Field(default=None, max_length=20)
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    business_type: Literal["hotel", "restaurant", "cafe", "resort", "other"] | None = None


class EmbedResponse(BaseModel):
    client_id: str
    script_url: str
    snippet: str


class StatsResponse(BaseModel):
    total_conversations: int
    active_conversations: int
    resolved_conversations: int
    abandoned_conversations: int
    total_messages: int
    average_messages_per_conversation: int
    usage: dict[str, Any]
    recent_conversations: list[dict[str, Any]]
    features: dict[str, bool]


class ConversationStatusRequest(BaseModel):
    status: Literal["resolved", "abandoned"]


class MessageFlagsRequest(BaseModel):
    is_read: bool | None = None
    is_flagged: bool | None = None


@router.get("", response_model=SuccessEnvelope[TenantResponse])
async def get_tenant(
    tenant_id: str,
    request: Request,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    return success_response(request=request, data=TenantResponse.model_validate(tenant))


@router.patch(
    "/settings",
    response_model=SuccessEnvelope[TenantResponse],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def patch_settings(
    tenant_id: str,
    request: Request,
    payload: SettingsPatchRequest,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    await update_settings(
        db,
        tenant,
        chatbot_config=payload.chatbot_config.model_dump(exclude_none=True) if payload.chatbot_config else None,
        allowed_domains=payload.allowed_domains,
        name=payload.name,
        description=payload.description,
        business_type=payload.business_type,
    )
    await commit_or_fail(db, "updating settings")
    return success_response(request=request, data=TenantResponse.model_validate(tenant))


@router.get("/embed", response_model=SuccessEnvelope[EmbedResponse])
async def get_embed(
    tenant_id: str,
    request: Request,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    payload = EmbedResponse(
        client_id=tenant.id,
        script_url=get_settings().widget_script_url,
        snippet=embed_snippet(tenant),
    )
    return success_response(request=request, data=payload)


@router.get("/stats", response_model=SuccessEnvelope[StatsResponse])
async def get_stats(
    tenant_id: str,
    request: Request,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await get_tenant_or_404(db, tenant_id)
    stats = await tenant_stats(db, tenant)
    features = {name: has_feature(tenant, name) for name in ("analytics", "advanced_support", "ai_insights")}
    return success_response(request=request, data=StatsResponse(**stats.as_dict(), features=features))


@router.get("/conversations", response_model=SuccessEnvelope[list[ConversationResponse]])
async def list_conversations(
    tenant_id: str,
    request: Request,
    status: Literal["active", "resolved", "abandoned"] | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=200),
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversations = await ledger.list_conversations(db, tenant_id, status, limit=limit)
    data = [ConversationResponse.model_validate(conversation) for conversation in conversations]
    return success_response(request=request, data=data)


@router.get(
    "/conversations/{conversation_id}",
    response_model=SuccessEnvelope[ConversationDetailResponse],
)
async def get_conversation(
    tenant_id: str,
    conversation_id: str,
    request: Request,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await ledger.get_conversation_with_messages(db, tenant_id, conversation_id)
    if thread is None:
        raise NotFound("Conversation not found", code="CONVERSATION_NOT_FOUND")
    payload = ConversationDetailResponse(
        conversation=ConversationResponse.model_validate(thread.conversation),
        messages=[MessageResponse.model_validate(message) for message in thread.messages],
    )
    return success_response(request=request, data=payload)


@router.patch(
    "/conversations/{conversation_id}",
    response_model=SuccessEnvelope[ConversationResponse],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def patch_conversation(
    tenant_id: str,
    conversation_id: str,
    request: Request,
    payload: ConversationStatusRequest,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversation = await ledger.update_conversation_status(db, tenant_id, conversation_id, payload.status)
    await commit_or_fail(db, "updating the conversation")
    return success_response(request=request, data=ConversationResponse.model_validate(conversation))


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=SuccessEnvelope[list[MessageResponse]],
)
async def list_messages(
    tenant_id: str,
    conversation_id: str,
    request: Request,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    messages = await ledger.list_messages(db, tenant_id, conversation_id)
    return success_response(request=request, data=[MessageResponse.model_validate(m) for m in messages])


@router.patch(
    "/messages/{message_id}",
    response_model=SuccessEnvelope[MessageResponse],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def patch_message(
    tenant_id: str,
    message_id: str,
    request: Request,
    payload: MessageFlagsRequest,
    _identity: Identity = Depends(tenant_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    message = await ledger.update_message_flags(
        db, tenant_id, message_id, is_read=payload.is_read, is_flagged=payload.is_flagged
    )
    await commit_or_fail(db, "updating the message")
    return success_response(request=request, data=MessageResponse.model_validate(message))
