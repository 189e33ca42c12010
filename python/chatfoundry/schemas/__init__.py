"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from chatfoundry.schemas.chat import (
    ChatRequest,
    ConversationDetailOut,
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    ModelCapabilities,
    ModelOut,
    ModelProviderOut,
    UIMessage,
)

__all__ = [
    # Requests
    "ChatRequest",
    "CreateConversationRequest",
    "UIMessage",
    # Responses
    "ConversationOut",
    "ConversationDetailOut",
    "MessageOut",
    "ModelOut",
    "ModelCapabilities",
    "ModelProviderOut",
]
