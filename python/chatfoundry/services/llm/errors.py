"""LLM error classification and normalization.

Classifies provider-specific failures into normalized error classes. Called
by the GenerationClient after catching adapter exceptions. The classes are
logged and drive retry decisions; they are never echoed to the caller.

Error classes:
- E_LLM_INVALID_KEY: Authentication failure (401/403) or no key configured
- E_LLM_RATE_LIMIT: Rate limit exceeded (429)
- E_LLM_CONTEXT_TOO_LARGE: Context length exceeded
- E_LLM_TIMEOUT: Request timed out
- E_LLM_PROVIDER_DOWN: Provider unavailable (5xx, network error, malformed stream)
- E_MODEL_NOT_AVAILABLE: Model or deployment not found
"""

from enum import Enum

from chatfoundry.logging import get_logger

logger = get_logger(__name__)

# Providers speaking the OpenAI chat-completions error shape
OPENAI_STYLE_PROVIDERS = frozenset({"openai", "openai_api_compatible", "azure_openai"})


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


# Transient failures worth another attempt
RETRYABLE_ERROR_CLASSES = frozenset(
    {LLMErrorClass.RATE_LIMIT, LLMErrorClass.TIMEOUT, LLMErrorClass.PROVIDER_DOWN}
)


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider that returned the error (if known)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.error_class in RETRYABLE_ERROR_CLASSES


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Classify provider error into normalized error class.

    Args:
        provider: Provider slug the failing adapter belongs to
        status_code: HTTP status code (if available)
        json_body: Parsed JSON error response (if available)
        exception: The exception that was raised (if any)
    """
    if exception is not None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return LLMErrorClass.TIMEOUT
        if "Network" in exception_type or "Connection" in exception_type:
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if provider in OPENAI_STYLE_PROVIDERS:
        return _classify_openai_error(status_code, json_body)
    elif provider == "anthropic":
        return _classify_anthropic_error(status_code, json_body)
    elif provider == "cloudflare":
        return _classify_workers_ai_error(status_code, json_body)
    else:
        logger.warning("llm.error.unknown_provider", provider=provider)
        return _classify_by_status(status_code) or LLMErrorClass.PROVIDER_DOWN


def _classify_by_status(status_code: int) -> LLMErrorClass | None:
    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY
    if status_code == 429:
        return LLMErrorClass.RATE_LIMIT
    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN
    return None


def _classify_openai_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """OpenAI and Azure OpenAI share one error body: {"error": {"code", "message"}}.

    Azure reports a missing deployment as 404 DeploymentNotFound, which the
    status mapping already covers.
    """
    by_status = _classify_by_status(status_code)
    if by_status is not None:
        return by_status

    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        error_code = error.get("code") or ""
        error_message = (error.get("message") or "").lower()

        if error_code == "context_length_exceeded":
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "maximum context length" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "model" in error_message and "not found" in error_message:
            return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN


def _classify_anthropic_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    by_status = _classify_by_status(status_code)
    if by_status is not None:
        return by_status

    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        error_type = error.get("type") or ""
        error_message = (error.get("message") or "").lower()

        if error_type == "invalid_request_error" and "too long" in error_message:
            return LLMErrorClass.CONTEXT_TOO_LARGE

    return LLMErrorClass.PROVIDER_DOWN


def _classify_workers_ai_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Workers AI wraps failures as {"success": false, "errors": [{"code", "message"}]}."""
    by_status = _classify_by_status(status_code)
    if by_status is not None:
        return by_status

    messages = " ".join(
        str(err.get("message", "")) for err in (json_body or {}).get("errors") or []
    ).lower()
    if "context window" in messages or "too many tokens" in messages:
        return LLMErrorClass.CONTEXT_TOO_LARGE
    if "no such model" in messages:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    return LLMErrorClass.PROVIDER_DOWN
