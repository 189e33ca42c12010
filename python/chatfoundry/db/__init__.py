"""Database module for ChatFoundry.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from chatfoundry.db.engine import create_db_engine, get_engine
from chatfoundry.db.models import (
    AuthType,
    Base,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    MessageStatus,
    Model,
    Provider,
    ProviderStatus,
)
from chatfoundry.db.session import create_session_factory, get_session_factory, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "transaction",
    # Base
    "Base",
    # Enums
    "AuthType",
    "ProviderStatus",
    "ConversationStatus",
    "MessageRole",
    "MessageStatus",
    # Models
    "Provider",
    "Model",
    "Conversation",
    "Message",
]
