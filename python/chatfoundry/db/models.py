"""SQLAlchemy ORM models for ChatFoundry.

Defines the tables the chat gateway reads and writes using SQLAlchemy 2.x
declarative patterns. Column types are portable (Uuid, JSON, DateTime) so the
same models run against PostgreSQL and SQLite.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class ProviderStatus(str, PyEnum):
    """Lifecycle status shared by providers and models."""

    active = "active"
    inactive = "inactive"
    deprecated = "deprecated"


class AuthType(str, PyEnum):
    api_key = "api_key"
    oauth = "oauth"
    none = "none"


class ConversationStatus(str, PyEnum):
    active = "active"
    archived = "archived"
    deleted = "deleted"


class MessageRole(str, PyEnum):
    user = "user"
    assistant = "assistant"
    system = "system"
    data = "data"
    tool = "tool"


class MessageStatus(str, PyEnum):
    """Delivery status of a message.

    States:
        received: Inbound user message persisted before generation
        draft: Reserved for client-side drafts
        sent: Assistant output persisted after generation
        delivered: Acknowledged by the client
        failed: Generation or delivery failed
    """

    received = "received"
    draft = "draft"
    sent = "sent"
    delivered = "delivered"
    failed = "failed"


# =============================================================================
# Providers & Models
# =============================================================================


class Provider(Base):
    """Provider model - an upstream LLM vendor/account configuration."""

    __tablename__ = "providers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    api_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    auth_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AuthType.api_key.value
    )
    # Resource-specific fields, e.g. {"azure_openai_resource_name": "..."}
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ProviderStatus.active.value
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    models: Mapped[list["Model"]] = relationship("Model", back_populates="provider")


class Model(Base):
    """Model - a specific upstream model identifier belonging to one provider.

    ``slug`` is sent upstream verbatim as the model (or deployment) name.
    """

    __tablename__ = "models"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("providers.id", ondelete="RESTRICT"), nullable=False
    )
    has_reasoning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    supports_streaming: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    supports_tool_calling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ProviderStatus.active.value
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="models")


# =============================================================================
# Conversations & Messages
# =============================================================================


class Conversation(Base):
    """Conversation model - a thread of messages owned by one user."""

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    model_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("models.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ConversationStatus.active.value
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", order_by="Message.created_at"
    )


class Message(Base):
    """Message model - one turn in a conversation.

    ``parts`` is an ordered list of typed segments, e.g.
    [{"type": "reasoning", "reasoning": "..."}, {"type": "text", "text": "..."}].
    Messages are append-only; ``version`` stays at its default.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    parts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MessageStatus.received.value
    )
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")
