from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import commit_or_fail, get_db
from chatdesk.apps.api.openapi import WIDGET_ERROR_RESPONSES
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.apps.api.schemas import MessageResponse
from chatdesk.core.config import MAX_MESSAGE_LENGTH
from chatdesk.core.errors import Forbidden, QuotaExceeded
from chatdesk.services import ledger
from chatdesk.services.audit import record_event
from chatdesk.services.origin import request_origin, validate_origin
from chatdesk.services.replies import generate_reply
from chatdesk.services.usage import get_usage_accounting, usage_headers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"], responses=WIDGET_ERROR_RESPONSES)


class ChatMessageRequest(BaseModel):
    # The widget posts camelCase keys; snake_case is accepted too.
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId", min_length=1, max_length=64)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    conversation_id: str | None = Field(default=None, alias="conversationId", max_length=64)
    visitor_id: str | None = Field(default=None, alias="visitorId", max_length=128)
    source: Literal["website", "whatsapp", "facebook", "instagram", "mobile"] = "website"


class ChatMessageResponse(BaseModel):
    conversation_id: str
    visitor_id: str
    user_message: MessageResponse
    assistant_message: MessageResponse
    usage: dict[str, Any]


@router.post("/message", status_code=201, response_model=SuccessEnvelope[ChatMessageResponse])
async def post_message(
    request: Request,
    response: Response,
    payload: ChatMessageRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    content = ledger.validate_content(payload.message)
    origin = await validate_origin(db, payload.client_id, request_origin(request), request=request)
    tenant = origin.tenant
    if not origin.enabled:
        raise Forbidden("Chatbot is disabled", code="WIDGET_DISABLED")
    tenant_id = tenant.id
    # Refusable input is settled before admission; quota is only spent on messages that get a reply.
    target = await ledger.resolve_inbound_target(
        db,
        tenant_id,
        payload.visitor_id or ledger.new_visitor_id(),
        payload.conversation_id,
        payload.source,
    )

    try:
        admission = await get_usage_accounting().admit_message(db, tenant_id)
    except QuotaExceeded as exc:
        logger.info("chat_message_blocked tenant_id=%s reason=%s", tenant_id, exc.code)
        await record_event(
            tenant_id=tenant_id,
            actor_type="visitor",
            actor_id=payload.visitor_id,
            actor_role=None,
            event_type="usage.quota.blocked",
            outcome="failure",
            resource_type="tenant",
            resource_id=tenant_id,
            request=request,
            metadata=exc.details,
            error_code=exc.code,
        )
        raise

    # Read tenant fields before ledger writes; a conversation-race rollback expires loaded rows.
    reply = generate_reply(tenant, content)
    conversation = await ledger.conversation_for_inbound(
        db,
        tenant_id,
        target,
        visitor_user_agent=request.headers.get("user-agent"),
        visitor_ip=request.client.host if request.client else None,
    )
    user_message = await ledger.append_message(db, tenant_id, conversation.id, "user", content)
    assistant_message = await ledger.append_message(
        db, tenant_id, conversation.id, "assistant", reply.content, reply.metadata()
    )
    data = ChatMessageResponse(
        conversation_id=conversation.id,
        visitor_id=conversation.visitor_id,
        user_message=MessageResponse.model_validate(user_message),
        assistant_message=MessageResponse.model_validate(assistant_message),
        usage={"limit": admission.limit, "used": admission.used, "remaining": admission.remaining},
    )
    await commit_or_fail(db, "storing the conversation")
    response.headers.update(usage_headers(admission))
    return success_response(request=request, data=data)
