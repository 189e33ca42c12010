"""Chat API routes.

Route handlers for conversations and chat turns.
Routes are transport-only: each calls exactly one service function.

- POST   /api/chat                      create a conversation
- GET    /api/chat                      list the caller's conversations
- GET    /api/chat/{conversation_id}    conversation with its messages
- POST   /api/chat/{conversation_id}    run one chat turn (batch or stream)
- DELETE /api/chat/{conversation_id}    soft-delete a conversation

All routes require authentication.
Response envelope: {"success": true, ...} or {"success": false, "error": "...", ...}
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Header, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from chatfoundry.api.deps import get_chat_service, get_db
from chatfoundry.auth.middleware import Viewer, get_viewer
from chatfoundry.responses import success_response
from chatfoundry.schemas.chat import ChatRequest, CreateConversationRequest
from chatfoundry.services import conversations as conversations_service
from chatfoundry.services.chat import ChatService
from chatfoundry.services.llm.prompt import ClientHints
from chatfoundry.services.stream_protocol import DATA_STREAM_HEADERS, DATA_STREAM_MEDIA_TYPE

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _flag(value: str | None) -> bool:
    return value == "true"


# =============================================================================
# Conversation Endpoints
# =============================================================================


@router.post("", status_code=201)
def create_conversation(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    body: Annotated[CreateConversationRequest | None, Body()] = None,
) -> dict:
    """Create a conversation with the placeholder title.

    Errors:
        E_INVALID_MODEL_CONFIGURATION (400): modelId given but not selectable.
    """
    result = conversations_service.create_conversation(
        db=db,
        viewer_id=viewer.user_id,
        model_id=body.model_id if body else None,
    )
    return success_response(conversation=result.model_dump(mode="json"))


@router.get("")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the caller's conversations, most recently updated first."""
    conversations = conversations_service.list_conversations(db=db, viewer_id=viewer.user_id)
    return success_response(conversations=[c.model_dump(mode="json") for c in conversations])


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a conversation and its messages.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist or viewer is not owner.
    """
    result = conversations_service.get_conversation_detail(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
    )
    return success_response(conversation=result.model_dump(mode="json"))


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> dict:
    """Soft-delete a conversation and its messages.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist or viewer is not owner.
        E_DELETE_FAILED (500): Unexpected failure.
    """
    await chat.delete_conversation(viewer.user_id, conversation_id)
    return success_response(message="Conversation deleted successfully")


# =============================================================================
# Chat Turn Endpoint
# =============================================================================


@router.post("/{conversation_id}", response_model=None)
async def send_chat_message(
    conversation_id: str,
    body: ChatRequest,
    request: Request,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    chat: Annotated[ChatService, Depends(get_chat_service)],
    x_stream: Annotated[str | None, Header(alias="X-Stream")] = None,
    x_reasoning: Annotated[str | None, Header(alias="X-Reasoning")] = None,
) -> dict | StreamingResponse:
    """Run one chat turn.

    Headers:
        X-Stream: "true" streams data-stream frames; otherwise the full text
            is returned as {"success": true, "text": "..."}.
        X-Reasoning: "true" extracts reasoning for models that support it.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): "Invalid conversation ID".
        E_INVALID_MODEL_CONFIGURATION (400): Unknown, deleted, or inactive model.
        E_GENERATION_FAILED (500): Upstream failure (batch only).
    """
    turn = await chat.prepare(
        viewer.user_id,
        conversation_id,
        body,
        hints=ClientHints.from_headers(request.headers),
        reasoning=_flag(x_reasoning),
    )

    if _flag(x_stream):
        return StreamingResponse(
            chat.stream(turn),
            media_type=DATA_STREAM_MEDIA_TYPE,
            headers=DATA_STREAM_HEADERS,
        )

    text = await chat.generate(turn)
    return success_response(text=text)
