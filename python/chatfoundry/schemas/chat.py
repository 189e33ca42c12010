"""Chat gateway Pydantic schemas.

Request bodies follow the shape the chat client library sends
({message, id, modelId}); responses use the flat success envelope.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Request Schemas
# =============================================================================


class UIMessage(BaseModel):
    """A client-side chat message.

    ``parts`` is the canonical content. Older clients may send only
    ``content``; it is treated as a single text part.
    """

    id: str | None = None
    role: str = "user"
    content: str | None = None
    parts: list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="allow")

    def normalized_parts(self) -> list[dict[str, Any]]:
        if self.parts:
            return self.parts
        if self.content:
            return [{"type": "text", "text": self.content}]
        return []


class ChatRequest(BaseModel):
    """Request body for POST /api/chat/{conversation_id}."""

    message: UIMessage
    id: str | None = None
    model_id: str | None = Field(default=None, alias="modelId")

    model_config = ConfigDict(populate_by_name=True)


class CreateConversationRequest(BaseModel):
    """Request body for POST /api/chat."""

    model_id: str | None = Field(default=None, alias="modelId")

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(BaseModel):
    id: UUID
    title: str
    model_id: UUID | None = None
    status: str
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """A persisted message. Tool rows are presented as assistant output."""

    id: UUID
    role: str
    parts: list[dict[str, Any]]
    status: str
    reference_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationDetailOut(ConversationOut):
    messages: list[MessageOut]


class ModelCapabilities(BaseModel):
    has_reasoning: bool
    supports_streaming: bool
    supports_tool_calling: bool


class ModelProviderOut(BaseModel):
    slug: str
    name: str


class ModelOut(BaseModel):
    """Catalogue entry for a selectable model."""

    id: UUID
    slug: str
    name: str
    description: str | None = None
    capabilities: ModelCapabilities
    provider: ModelProviderOut
