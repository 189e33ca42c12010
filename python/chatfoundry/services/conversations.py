"""Conversation and Message service layer.

All operations:
- Enforce owner-only access
- Treat foreign and missing conversations identically (prevent probing)
- Exclude soft-deleted rows from every read path

Messages are append-only. The user message of a turn is written before
generation starts; assistant output is written once generation completes.
Every write runs in its own short transaction; nothing spans phases.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from chatfoundry.db.models import (
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    MessageStatus,
    utcnow,
)
from chatfoundry.db.session import transaction
from chatfoundry.errors import ApiErrorCode, NotFoundError
from chatfoundry.logging import get_logger
from chatfoundry.schemas.chat import ConversationDetailOut, ConversationOut, MessageOut
from chatfoundry.services.llm.types import LLMResponse
from chatfoundry.services.model_registry import resolve_model

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_TITLE_PREFIX = "[Chat]"
CONVERSATION_NOT_FOUND = "Conversation not found"
INVALID_CONVERSATION_ID = "Invalid conversation ID"


def placeholder_title(now: datetime | None = None) -> str:
    """Default title for a new conversation, e.g. "[Chat] 2025-01-31 09:15:00"."""
    now = now or utcnow()
    return f"{DEFAULT_TITLE_PREFIX} {now:%Y-%m-%d %H:%M:%S}"


# =============================================================================
# Helper Functions
# =============================================================================


def _parse_conversation_id(conversation_id: str | UUID, message: str) -> UUID:
    if isinstance(conversation_id, UUID):
        return conversation_id
    try:
        return UUID(conversation_id)
    except ValueError:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, message) from None


def get_conversation_for_viewer_or_404(
    db: Session,
    viewer_id: str,
    conversation_id: str | UUID,
    *,
    message: str = CONVERSATION_NOT_FOUND,
) -> Conversation:
    """Load a non-deleted conversation and verify ownership.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't
            exist, is deleted, or the viewer is not the owner.
    """
    conversation_uuid = _parse_conversation_id(conversation_id, message)
    conversation = db.scalar(
        select(Conversation).where(
            Conversation.id == conversation_uuid,
            Conversation.user_id == viewer_id,
            Conversation.is_deleted == False,  # noqa: E712
        )
    )
    if conversation is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, message)
    return conversation


def message_to_out(message: Message) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    role = MessageRole.assistant.value if message.role == MessageRole.tool.value else message.role
    return MessageOut(
        id=message.id,
        role=role,
        parts=message.parts or [],
        status=message.status,
        reference_id=message.reference_id,
        details=message.details or {},
        created_at=message.created_at,
    )


def assistant_parts(text: str, reasoning: str | None = None) -> list[dict[str, Any]]:
    """Parts for an assistant message: reasoning (if any) then text."""
    parts: list[dict[str, Any]] = []
    if reasoning:
        parts.append({"type": "reasoning", "reasoning": reasoning})
    parts.append({"type": "text", "text": text})
    return parts


def _touch(db: Session, conversation_id: UUID, now: datetime) -> None:
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_at=now, updated_at=now)
    )


# =============================================================================
# Service Functions
# =============================================================================


def create_conversation(
    db: Session, viewer_id: str, model_id: str | None = None
) -> ConversationOut:
    """Create a new conversation with the placeholder title.

    Raises:
        InvalidModelConfigurationError: If model_id is given but not selectable.
    """
    model_uuid = resolve_model(db, model_id).model.id if model_id is not None else None

    conversation = Conversation(
        title=placeholder_title(),
        user_id=viewer_id,
        model_id=model_uuid,
        status=ConversationStatus.active.value,
    )
    with transaction(db):
        db.add(conversation)

    logger.info("conversation.created", conversation_id=str(conversation.id))
    return ConversationOut.model_validate(conversation)


def list_conversations(db: Session, viewer_id: str) -> list[ConversationOut]:
    """List the viewer's conversations, most recently updated first."""
    conversations = db.scalars(
        select(Conversation)
        .where(
            Conversation.user_id == viewer_id,
            Conversation.is_deleted == False,  # noqa: E712
        )
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
    ).all()
    return [ConversationOut.model_validate(c) for c in conversations]


def get_conversation_detail(
    db: Session, viewer_id: str, conversation_id: str | UUID
) -> ConversationDetailOut:
    """Get a conversation with its non-deleted messages in creation order."""
    conversation = get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)
    messages = db.scalars(
        select(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.is_deleted == False,  # noqa: E712
        )
        .order_by(Message.created_at, Message.id)
    ).all()

    return ConversationDetailOut(
        **ConversationOut.model_validate(conversation).model_dump(),
        messages=[message_to_out(m) for m in messages],
    )


def list_history_messages(db: Session, conversation_id: UUID) -> list[Message]:
    """Prior non-deleted, non-tool messages of a conversation, oldest first."""
    return list(
        db.scalars(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.is_deleted == False,  # noqa: E712
                Message.role != MessageRole.tool.value,
            )
            .order_by(Message.created_at, Message.id)
        ).all()
    )


def insert_user_message(
    db: Session,
    conversation_id: UUID,
    parts: list[dict[str, Any]],
    reference_id: str | None = None,
) -> Message:
    """Persist the inbound user message with status 'received'.

    Retried turns are not deduplicated; each call appends a new row.
    """
    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        role=MessageRole.user.value,
        parts=parts,
        status=MessageStatus.received.value,
        reference_id=reference_id,
        created_at=now,
        updated_at=now,
    )
    with transaction(db):
        db.add(message)
        _touch(db, conversation_id, now)
    return message


def insert_assistant_messages(
    db: Session,
    conversation_id: UUID,
    outputs: Sequence[LLMResponse],
    reference_id: str | None = None,
) -> list[Message]:
    """Persist one message per generated output segment with status 'sent'.

    The upstream role 'assistant' is kept; any other role is stored as 'tool'.
    Token usage is attached under details.usage.
    """
    now = utcnow()
    messages = [
        Message(
            conversation_id=conversation_id,
            role=(
                MessageRole.assistant.value
                if output.role == MessageRole.assistant.value
                else MessageRole.tool.value
            ),
            parts=assistant_parts(output.text, output.reasoning),
            status=MessageStatus.sent.value,
            reference_id=reference_id,
            details={"usage": output.usage.as_details() if output.usage else None},
            created_at=now,
            updated_at=now,
        )
        for output in outputs
    ]
    with transaction(db):
        db.add_all(messages)
        _touch(db, conversation_id, now)
    return messages


def update_title(db: Session, conversation_id: UUID, title: str) -> None:
    """Overwrite the conversation title. Last writer wins."""
    with transaction(db):
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(title=title, updated_at=utcnow())
        )


def soft_delete_conversation(db: Session, viewer_id: str, conversation_id: str | UUID) -> None:
    """Soft-delete a conversation and cascade to its messages.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If missing or not owned.
    """
    conversation = get_conversation_for_viewer_or_404(db, viewer_id, conversation_id)
    now = utcnow()

    with transaction(db):
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(
                is_deleted=True,
                status=ConversationStatus.deleted.value,
                deleted_at=now,
                updated_at=now,
            )
        )
        db.execute(
            update(Message)
            .where(Message.conversation_id == conversation.id)
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )

    logger.info("conversation.deleted", conversation_id=str(conversation.id))
