"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies bearer token, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)

Service Lifecycle:
- httpx.AsyncClient is created at startup and shared by every adapter
- LLMRouter, CredentialResolver, TitleSynthesizer and ChatService are built
  once and stored on app.state; routes reach them through api.deps
- At shutdown, background chat work is drained, then the client is closed
"""

import json
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatfoundry.api.routes import create_api_router
from chatfoundry.auth.middleware import AuthMiddleware
from chatfoundry.auth.verifier import SessionTokenVerifier, TokenVerifier
from chatfoundry.config import get_settings
from chatfoundry.db.session import get_session_factory
from chatfoundry.errors import ApiError, ApiErrorCode
from chatfoundry.logging import configure_logging, get_logger
from chatfoundry.middleware.request_id import RequestIDMiddleware
from chatfoundry.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from chatfoundry.services.chat import ChatService
from chatfoundry.services.credentials import (
    CredentialResolver,
    EnvSecretStore,
    RedisSecretStore,
    SecretStore,
)
from chatfoundry.services.llm import LLMRouter
from chatfoundry.services.titles import TitleSynthesizer

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_S = 30.0


def create_token_verifier() -> SessionTokenVerifier:
    """Create the session token verifier from settings."""
    settings = get_settings()
    return SessionTokenVerifier(
        secret=settings.effective_session_secret,
        issuer=settings.session_issuer,
    )


def create_secret_store(redis_url: str | None) -> tuple[SecretStore, object | None]:
    """Create the secret store: Redis when configured and reachable, else the environment.

    Returns:
        (store, redis_client) where redis_client is None for the environment store.
    """
    if redis_url:
        try:
            import redis

            redis_client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
            redis_client.ping()
            logger.info("redis_client_initialized", redis_url=redis_url[:30] + "...")
            return RedisSecretStore(redis_client), redis_client
        except Exception as e:
            logger.warning("redis_client_init_failed", error=str(e))

    logger.info("secret_store_env")
    return EnvSecretStore(), None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    - Creates shared httpx.AsyncClient for connection pooling
    - Builds the router, credential resolver, title synthesizer and chat service
    - Drains background work and cleans up on shutdown
    """
    settings = get_settings()

    # Create shared HTTP client for LLM calls
    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    app.state.llm_router = LLMRouter(
        app.state.httpx_client,
        timeout_s=settings.llm_timeout_s,
        workers_account_id=settings.cloudflare_account_id,
        workers_api_token=settings.cloudflare_api_token,
    )
    logger.info(
        "llm_router_initialized",
        providers=app.state.llm_router.registered_providers,
        workers_ai_configured=settings.cloudflare_account_id is not None,
    )

    store, redis_client = create_secret_store(settings.redis_url)
    app.state.redis_client = redis_client
    app.state.credential_resolver = CredentialResolver(store, prefix=settings.secrets_prefix)

    app.state.title_synthesizer = TitleSynthesizer(
        app.state.llm_router, app.state.credential_resolver, app.state.session_factory
    )
    app.state.chat_service = ChatService(
        app.state.llm_router,
        app.state.credential_resolver,
        app.state.session_factory,
        app.state.title_synthesizer,
    )

    yield

    # Shutdown: finish background turns, then close HTTP client and Redis
    await app.state.chat_service.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT_S)
    await app.state.httpx_client.aclose()
    if redis_client is not None:
        try:
            redis_client.close()
        except Exception as e:
            logger.warning("redis_client_close_failed", error=str(e))
    logger.info("httpx_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        session_factory: Optional session factory (for testing); defaults to
            one bound to DATABASE_URL.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="ChatFoundry API",
        description="Chat completion gateway over multiple LLM providers",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory or get_session_factory()

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    # Handle JSON decode errors from malformed JSON bodies
    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"
                            ),
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    # Add auth middleware (runs on all requests except public paths)
    if not skip_auth_middleware:
        app.add_middleware(AuthMiddleware, verifier=token_verifier or create_token_verifier())
        logger.info("auth_middleware_enabled", env=settings.chatfoundry_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
