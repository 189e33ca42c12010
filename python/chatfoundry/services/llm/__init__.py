"""LLM layer for provider-agnostic chat generation.

This package provides a unified interface for calling OpenAI (and compatible
endpoints), Azure OpenAI, Anthropic, and Workers AI models. It includes:

- Provider adapters with async support (non-streaming + streaming)
- A router with a provider registration map and a deterministic fallback
- Error classification and normalization
- Reasoning extraction middleware
- Prompt rendering (provider-agnostic)

Usage:
    from chatfoundry.services.llm import LLMRequest, LLMRouter, ModelBinding, Turn

    router = LLMRouter(httpx_client)
    client = router.select(ModelBinding(model_slug="gpt-4.1", provider_slug="openai", ...))
    response = await client.generate(
        LLMRequest(messages=[Turn(role="user", content="Hello!")], max_tokens=MAX_TOKENS)
    )

Adapter rules:
- Adapters are async using httpx.AsyncClient
- No retries inside adapters (GenerationClient applies the retry ceiling)
- No DB access inside adapters
- No logging of request/response bodies
"""

from chatfoundry.services.llm.adapter import LanguageModel, LLMAdapter
from chatfoundry.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from chatfoundry.services.llm.prompt import ClientHints, build_system_prompt, render_prompt
from chatfoundry.services.llm.reasoning import ReasoningModel, wrap_for_reasoning
from chatfoundry.services.llm.router import (
    MAX_RETRIES,
    MAX_TOKENS,
    GenerationClient,
    LLMRouter,
    ModelBinding,
)
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage, Turn

__all__ = [
    # Core types
    "Turn",
    "LLMRequest",
    "LLMResponse",
    "LLMChunk",
    "LLMUsage",
    # Generation interface
    "LanguageModel",
    "LLMAdapter",
    "GenerationClient",
    # Router
    "LLMRouter",
    "ModelBinding",
    "MAX_TOKENS",
    "MAX_RETRIES",
    # Reasoning
    "ReasoningModel",
    "wrap_for_reasoning",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_provider_error",
    # Prompt rendering
    "ClientHints",
    "build_system_prompt",
    "render_prompt",
]
