"""FastAPI dependencies for route handlers.

Process-wide services are built once in the app lifespan, stored on
``app.state``, and handed to routes through these dependencies.
"""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from chatfoundry.services.chat import ChatService
from chatfoundry.services.credentials import CredentialResolver
from chatfoundry.services.llm import LLMRouter

__all__ = ["get_chat_service", "get_credential_resolver", "get_db", "get_llm_router"]


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a request-scoped database session.

    The session is closed after the request completes.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_llm_router(request: Request) -> LLMRouter:
    """Get the shared LLM router from app state."""
    return request.app.state.llm_router


def get_credential_resolver(request: Request) -> CredentialResolver:
    return request.app.state.credential_resolver


def get_chat_service(request: Request) -> ChatService:
    """Get the chat orchestrator from app state."""
    return request.app.state.chat_service
