"""Abstract base classes for the generation interface.

LanguageModel is the interface the chat service talks to. Raw provider
adapters, the router's GenerationClient, and the reasoning wrapper all
implement it, so the caller never knows which layer it holds.

LLMAdapter is a LanguageModel bound to one upstream model and one set of
credentials. Adapter rules:
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Raw provider errors (httpx exceptions) bubble up to the GenerationClient
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from chatfoundry.services.llm.errors import LLMError, LLMErrorClass
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse

DEFAULT_TIMEOUT_S = 45


class LanguageModel(ABC):
    """A callable generation client bound to a specific upstream model."""

    provider: str
    model_id: str

    @abstractmethod
    async def generate(self, req: LLMRequest) -> LLMResponse:
        """Non-streaming generation. Returns the complete response."""

    @abstractmethod
    def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Streaming generation. Yields chunks until one with done=True."""


class LLMAdapter(LanguageModel):
    """Provider adapter bound to a model and its credentials.

    Credentials are not validated at construction; a missing key surfaces
    as LLMError(INVALID_KEY) when generation is attempted.
    """

    provider = "unknown"

    def __init__(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        *,
        api_key: str | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        """Initialize adapter with shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            model_id: Upstream model identifier (the model's slug).
            api_key: Resolved API key, or None when no secret is stored.
            timeout_s: Per-request read timeout in seconds.
        """
        self._client = client
        self.model_id = model_id
        self._api_key = api_key
        self._timeout_s = timeout_s

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._timeout_s, connect=10.0)

    def _require_api_key(self) -> str:
        if not self._api_key:
            raise LLMError(
                LLMErrorClass.INVALID_KEY,
                f"No API key configured for provider {self.provider}",
                provider=self.provider,
            )
        return self._api_key

    @abstractmethod
    async def generate(self, req: LLMRequest) -> LLMResponse:
        """Non-streaming generation.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
        """

    @abstractmethod
    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Streaming generation.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
            LLMError: If stream ends without proper terminal marker.
        """
        yield  # type: ignore
