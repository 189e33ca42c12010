"""Provider adapter selection and the bound generation client.

LLMRouter keeps a registration map from provider slug to adapter factory.
Adding a provider is a ``register(slug, factory)`` call, not a new branch.
Unmapped slugs fall back to a fixed platform-hosted model; the fallback is
logged but never raised.

GenerationClient wraps one adapter and:
- Normalizes provider failures into LLMError (one place, not per adapter)
- Applies the fixed retry ceiling to transient failures
- Emits llm.request.started / llm.request.finished / llm.request.failed events,
  guarded by safe_kv()

Error handling:
- Provider 401/403 → E_LLM_INVALID_KEY
- Provider 429 → E_LLM_RATE_LIMIT
- Timeout → E_LLM_TIMEOUT
- Context too large → E_LLM_CONTEXT_TOO_LARGE
- Other → E_LLM_PROVIDER_DOWN
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from chatfoundry.logging import get_logger
from chatfoundry.services.credentials import ProviderCredentials
from chatfoundry.services.llm.adapter import DEFAULT_TIMEOUT_S, LanguageModel, LLMAdapter
from chatfoundry.services.llm.anthropic_adapter import AnthropicAdapter
from chatfoundry.services.llm.azure_openai_adapter import AzureOpenAIAdapter
from chatfoundry.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from chatfoundry.services.llm.openai_adapter import OpenAIAdapter
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse
from chatfoundry.services.llm.workers_ai_adapter import DEFAULT_HOSTED_MODEL, WorkersAIAdapter
from chatfoundry.services.redact import safe_kv

logger = get_logger(__name__)

# Applied to every generation call, batch or streaming
MAX_TOKENS = 2048
MAX_RETRIES = 3
RETRY_INITIAL_DELAY_S = 2.0


@dataclass(frozen=True)
class ModelBinding:
    """Everything needed to bind an adapter to one upstream model.

    Attributes:
        model_slug: Upstream model (or deployment) identifier
        provider_slug: Key into the router's registration map
        credentials: Resolved secrets for the provider
        base_url: Provider row base URL override
        api_version: Provider row API version (Azure)
        details: Provider row resource-specific fields
    """

    model_slug: str
    provider_slug: str
    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)
    base_url: str | None = None
    api_version: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdapterContext:
    """Process-wide resources handed to every adapter factory."""

    client: httpx.AsyncClient
    timeout_s: int = DEFAULT_TIMEOUT_S
    workers_account_id: str | None = None
    workers_api_token: str | None = None


ProviderFactory = Callable[[AdapterContext, ModelBinding], LLMAdapter]


def openai_factory(ctx: AdapterContext, binding: ModelBinding) -> LLMAdapter:
    return OpenAIAdapter(
        ctx.client,
        binding.model_slug,
        api_key=binding.credentials.api_key,
        base_url=binding.base_url or binding.credentials.base_url,
        timeout_s=ctx.timeout_s,
    )


def openai_compatible_factory(ctx: AdapterContext, binding: ModelBinding) -> LLMAdapter:
    return OpenAIAdapter(
        ctx.client,
        binding.model_slug,
        api_key=binding.credentials.api_key,
        base_url=binding.base_url or binding.credentials.base_url,
        provider="openai_api_compatible",
        include_stream_usage=False,
        timeout_s=ctx.timeout_s,
    )


def azure_openai_factory(ctx: AdapterContext, binding: ModelBinding) -> LLMAdapter:
    return AzureOpenAIAdapter(
        ctx.client,
        binding.model_slug,
        api_key=binding.credentials.api_key,
        resource_name=(
            binding.details.get("azure_openai_resource_name") or binding.credentials.resource_name
        ),
        base_url=binding.credentials.base_url,
        api_version=binding.api_version,
        timeout_s=ctx.timeout_s,
    )


def anthropic_factory(ctx: AdapterContext, binding: ModelBinding) -> LLMAdapter:
    return AnthropicAdapter(
        ctx.client,
        binding.model_slug,
        api_key=binding.credentials.api_key,
        timeout_s=ctx.timeout_s,
    )


def workers_ai_factory(ctx: AdapterContext, binding: ModelBinding) -> LLMAdapter:
    return WorkersAIAdapter(
        ctx.client,
        binding.model_slug,
        account_id=ctx.workers_account_id,
        api_token=ctx.workers_api_token,
        timeout_s=ctx.timeout_s,
    )


DEFAULT_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "openai": openai_factory,
    "openai_api_compatible": openai_compatible_factory,
    "azure_openai": azure_openai_factory,
    "anthropic": anthropic_factory,
    "cloudflare": workers_ai_factory,
}


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Parse an error body; streamed bodies are usually unread."""
    try:
        return response.json()
    except Exception:
        return None


class GenerationClient(LanguageModel):
    """An adapter bound to one model, with error normalization and retries."""

    def __init__(
        self,
        adapter: LLMAdapter,
        *,
        operation: str = "chat",
        max_retries: int = MAX_RETRIES,
        retry_delay_s: float = RETRY_INITIAL_DELAY_S,
        fallback: bool = False,
    ):
        self._adapter = adapter
        self.provider = adapter.provider
        self.model_id = adapter.model_id
        self.operation = operation
        self.fallback = fallback
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s

    @property
    def adapter(self) -> LLMAdapter:
        return self._adapter

    def _log_fields(self, req: LLMRequest, streaming: bool) -> dict:
        return {
            "provider": self.provider,
            "model_name": self.model_id,
            "streaming": streaming,
            "llm_operation": self.operation,
            "message_chars": sum(len(m.content) for m in req.messages),
        }

    def _normalize(self, exc: Exception) -> LLMError:
        """Map an adapter exception to an LLMError."""
        if isinstance(exc, LLMError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=self.provider)
        if isinstance(exc, httpx.HTTPStatusError):
            error_class = classify_provider_error(
                self.provider, exc.response.status_code, _safe_parse_json(exc.response), None
            )
            return LLMError(
                error_class,
                f"Provider returned HTTP {exc.response.status_code}",
                provider=self.provider,
            )
        if isinstance(exc, httpx.NetworkError):
            return LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=self.provider)
        return LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            f"Unexpected error: {type(exc).__name__}",
            provider=self.provider,
        )

    async def _should_retry(self, error: LLMError, attempt: int, base: dict) -> bool:
        """Sleep and return True if another attempt is allowed."""
        if not error.retryable or attempt >= self._max_retries:
            return False
        delay = self._retry_delay_s * (2**attempt)
        logger.warning(
            "llm.request.retrying",
            **safe_kv(
                **base,
                error_class=error.error_class.value,
                attempt=attempt + 1,
                delay_s=delay,
            ),
        )
        await asyncio.sleep(delay)
        return True

    def _log_failed(self, error: LLMError, base: dict, start: float, attempts: int) -> None:
        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                latency_ms=int((time.monotonic() - start) * 1000),
                attempts=attempts,
            ),
        )

    async def generate(self, req: LLMRequest) -> LLMResponse:
        """Non-streaming generation with error normalization.

        Raises:
            LLMError: With normalized error class on failure.
        """
        base = self._log_fields(req, streaming=False)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()
        attempt = 0

        while True:
            try:
                response = await self._adapter.generate(req)
            except Exception as exc:
                error = self._normalize(exc)
                if await self._should_retry(error, attempt, base):
                    attempt += 1
                    continue
                self._log_failed(error, base, start, attempt + 1)
                raise error from exc

            usage = response.usage
            logger.info(
                "llm.request.finished",
                **safe_kv(
                    **base,
                    outcome="success",
                    latency_ms=int((time.monotonic() - start) * 1000),
                    tokens_input=usage.prompt_tokens if usage else None,
                    tokens_output=usage.completion_tokens if usage else None,
                    tokens_total=usage.total_tokens if usage else None,
                    provider_request_id=response.provider_request_id,
                ),
            )
            return response

    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Streaming generation with error normalization.

        A failed stream is retried only if nothing has been yielded yet.

        Raises:
            LLMError: With normalized error class on failure.
        """
        base = self._log_fields(req, streaming=True)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()
        attempt = 0
        yielded = False

        while True:
            try:
                async for chunk in self._adapter.generate_stream(req):
                    if chunk.done:
                        usage = chunk.usage
                        logger.info(
                            "llm.request.finished",
                            **safe_kv(
                                **base,
                                outcome="success",
                                latency_ms=int((time.monotonic() - start) * 1000),
                                tokens_input=usage.prompt_tokens if usage else None,
                                tokens_output=usage.completion_tokens if usage else None,
                                tokens_total=usage.total_tokens if usage else None,
                                provider_request_id=chunk.provider_request_id,
                            ),
                        )
                    yielded = True
                    yield chunk
                return
            except Exception as exc:
                error = self._normalize(exc)
                if not yielded and await self._should_retry(error, attempt, base):
                    attempt += 1
                    continue
                self._log_failed(error, base, start, attempt + 1)
                raise error from exc


class LLMRouter:
    """Selects and binds provider adapters.

    Args:
        client: Shared httpx.AsyncClient for connection pooling.
        timeout_s: Per-call timeout handed to every adapter.
        workers_account_id: Platform inference account (fallback model).
        workers_api_token: Platform inference token.
        max_retries: Retry ceiling for transient failures.
        retry_delay_s: Initial backoff delay, doubled per attempt.
        factories: Registration map; defaults to DEFAULT_PROVIDER_FACTORIES.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        workers_account_id: str | None = None,
        workers_api_token: str | None = None,
        max_retries: int = MAX_RETRIES,
        retry_delay_s: float = RETRY_INITIAL_DELAY_S,
        factories: Mapping[str, ProviderFactory] | None = None,
    ):
        self._context = AdapterContext(
            client=client,
            timeout_s=timeout_s,
            workers_account_id=workers_account_id,
            workers_api_token=workers_api_token,
        )
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s
        self._factories: dict[str, ProviderFactory] = dict(
            DEFAULT_PROVIDER_FACTORIES if factories is None else factories
        )

    def register(self, provider_slug: str, factory: ProviderFactory) -> None:
        """Register (or replace) the adapter factory for a provider slug."""
        self._factories[provider_slug] = factory

    def is_registered(self, provider_slug: str) -> bool:
        return provider_slug in self._factories

    @property
    def registered_providers(self) -> list[str]:
        return sorted(self._factories)

    def default_adapter(self) -> LLMAdapter:
        """The fixed platform-hosted fallback model."""
        return workers_ai_factory(
            self._context,
            ModelBinding(model_slug=DEFAULT_HOSTED_MODEL, provider_slug="cloudflare"),
        )

    def select(self, binding: ModelBinding, *, operation: str = "chat") -> GenerationClient:
        """Bind a generation client for the model, falling back when unmapped.

        Never raises for unknown provider slugs; credentials are not validated here.
        """
        factory = self._factories.get(binding.provider_slug)
        fallback = factory is None

        if factory is None:
            logger.warning(
                "llm.provider.fallback",
                provider=binding.provider_slug,
                requested_model=binding.model_slug,
                fallback_model=DEFAULT_HOSTED_MODEL,
            )
            adapter = self.default_adapter()
        else:
            adapter = factory(self._context, binding)

        return GenerationClient(
            adapter,
            operation=operation,
            max_retries=self._max_retries,
            retry_delay_s=self._retry_delay_s,
            fallback=fallback,
        )
