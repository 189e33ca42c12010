"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token verification
- get_viewer: Dependency for accessing the authenticated caller
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from chatfoundry.auth.verifier import TokenVerifier
from chatfoundry.errors import ApiError, ApiErrorCode
from chatfoundry.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass(frozen=True)
class Viewer:
    """Authenticated caller identity.

    Attributes:
        user_id: Opaque user id from the session token's sub claim.
    """

    user_id: str


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer token authentication for every non-public path.

    Order of checks:
    1. Skip if public path
    2. Extract bearer token
    3. Verify token via TokenVerifier
    4. Attach Viewer to request state
    """

    def __init__(self, app: ASGIApp, verifier: TokenVerifier):
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = self._extract_bearer_token(request)
        if token is None:
            return self._unauthenticated("Unauthorized")

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return JSONResponse(status_code=e.status_code, content=error_response(e.code, e.message))

        request.state.viewer = Viewer(user_id=str(payload["sub"]))
        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> str | None:
        """Return the bearer token, or None when the header is missing or malformed."""
        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header:
            logger.warning("auth_failure", extra={"reason": "missing_header"})
            return None

        if not auth_header.lower().startswith("bearer "):
            logger.warning("auth_failure", extra={"reason": "invalid_header_format"})
            return None

        token = auth_header[7:].strip()
        return token or None

    def _unauthenticated(self, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=error_response(ApiErrorCode.E_UNAUTHENTICATED, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated caller.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Unauthorized")
    return viewer


ViewerDep = Depends(get_viewer)
