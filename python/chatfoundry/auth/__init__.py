"""Authentication module.

This module provides:
- Session token verification
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from chatfoundry.auth.middleware import AuthMiddleware, Viewer, get_viewer
from chatfoundry.auth.verifier import SessionTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "SessionTokenVerifier",
    "TokenVerifier",
]
