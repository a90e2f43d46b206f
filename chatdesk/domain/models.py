from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


PLANS = ("starter", "business", "pro")
UNLIMITED_PLAN = "pro"
SUBSCRIPTION_STATUSES = ("active", "past_due", "cancelled")
BUSINESS_TYPES = ("hotel", "restaurant", "cafe", "resort", "other")
TONES = ("professional", "friendly", "casual")
WIDGET_POSITIONS = ("bottom-right", "bottom-left")
ROLES = ("client", "admin")
CONVERSATION_SOURCES = ("website", "whatsapp", "facebook", "instagram", "mobile")
CONVERSATION_STATUSES = ("active", "resolved", "abandoned")
MESSAGE_ROLES = ("user", "assistant", "system")

DEFAULT_CHATBOT_CONFIG: dict[str, Any] = {
    "welcome_message": "Hello! How can I help you today?",
    "tone": "friendly",
    "enabled": True,
    "primary_color": "#3B82F6",
    "position": "bottom-right",
}

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


def _new_id() -> str:
    return uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_chatbot_config() -> dict[str, Any]:
    return dict(DEFAULT_CHATBOT_CONFIG)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_role_active", "role", "is_active"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Stored lowercased; uniqueness is case-insensitive by construction.
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(String, default="client")
    # Present for client users only; admins are not bound to a tenant.
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class Tenant(Base):
    __tablename__ = "tenants"
    __table_args__ = (
        Index("ix_tenants_is_active", "is_active"),
        Index("ix_tenants_plan", "plan"),
    )

    # Public identifier; appears in the embed snippet as data-client-id.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # One tenant per owner.
    owner_user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), unique=True)
    name: Mapped[str] = mapped_column(String(100))
    # Canonical normalized domain (no scheme, no www, no path).
    domain: Mapped[str] = mapped_column(String, unique=True, index=True)
    allowed_domains: Mapped[list[str]] = mapped_column(JsonType, default=list)
    business_type: Mapped[str] = mapped_column(String, default="other")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    chatbot_config: Mapped[dict[str, Any]] = mapped_column(JsonType, default=default_chatbot_config)
    plan: Mapped[str] = mapped_column(String, default="starter")
    # 0 means unlimited; only honoured as such for the pro plan.
    message_limit: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    subscription_status: Mapped[str] = mapped_column(String, default="active")
    # Independent kill switch used by admin suspension.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_conversations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now(), onupdate=_utc_now
    )


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_tenant_last_message", "tenant_id", "last_message_at"),
        Index("ix_conversations_tenant_status", "tenant_id", "status"),
        Index("ix_conversations_tenant_visitor", "tenant_id", "visitor_id"),
        # At most one active conversation per visitor per tenant.
        Index(
            "uq_conversations_active_visitor",
            "tenant_id",
            "visitor_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Immutable after creation.
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    visitor_id: Mapped[str] = mapped_column(String)
    source: Mapped[str] = mapped_column(String, default="website")
    status: Mapped[str] = mapped_column(String, default="active")
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    visitor_user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    visitor_ip: Mapped[str | None] = mapped_column(String, nullable=True)
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_tenant_created", "tenant_id", "created_at"),
        Index("ix_messages_tenant_flagged", "tenant_id", "is_flagged"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Copied from the conversation at write time, never from the caller.
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    conversation_id: Mapped[str] = mapped_column(String, ForeignKey("conversations.id"))
    role: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)
    ai_metadata: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    # Use a monotonic numeric id for efficient pagination and ordering.
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Allow null tenant_id for pre-auth or system events.
    tenant_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    actor_type: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, default=dict)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
