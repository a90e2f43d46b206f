from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class _OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ChatbotConfigResponse(BaseModel):
    welcome_message: str
    tone: str
    enabled: bool
    primary_color: str
    position: str


class TenantResponse(_OrmModel):
    id: str
    owner_user_id: str
    name: str
    domain: str
    allowed_domains: list[str]
    business_type: str
    description: str | None
    chatbot_config: dict[str, Any]
    plan: str
    message_limit: int
    usage_count: int
    subscription_status: str
    is_active: bool
    total_conversations: int
    total_messages: int
    created_at: datetime | None
    updated_at: datetime | None


class UserResponse(_OrmModel):
    id: str
    email: str
    role: str
    tenant_id: str | None
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime | None


class ConversationResponse(_OrmModel):
    id: str
    tenant_id: str
    visitor_id: str
    source: str
    status: str
    message_count: int
    last_message_at: datetime | None
    resolved_at: datetime | None
    created_at: datetime | None


class MessageResponse(_OrmModel):
    id: str
    tenant_id: str
    conversation_id: str
    role: str
    content: str
    ai_metadata: dict[str, Any] | None
    is_read: bool
    is_flagged: bool
    created_at: datetime | None


class ConversationDetailResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]
