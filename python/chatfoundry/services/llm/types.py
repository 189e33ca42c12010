"""Shared type definitions for the LLM layer.

- Turn: Provider-agnostic conversation turn
- LLMRequest: Request to a bound generation client (the model is already bound)
- LLMUsage: Token usage from provider response
- LLMResponse: Complete response from non-streaming call
- LLMChunk: Single chunk from streaming response

Streaming invariants:
- Chunks with done=False MUST have usage=None
- Exactly ONE terminal chunk with done=True
- Terminal chunk MAY have usage and provider_request_id (if provider returns them)
- If provider stream ends without terminal marker: raise E_LLM_PROVIDER_DOWN
"""

from dataclasses import dataclass, field
from typing import Any, Literal

ChunkKind = Literal["text", "reasoning"]


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: The text content of the turn
    """

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response.

    All fields are optional as not all providers return all metrics,
    and streaming responses may not include usage data.
    """

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None

    def as_details(self) -> dict[str, int | None]:
        """Usage in the shape stored on message details and sent to the client."""
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class LLMRequest:
    """Request to a bound generation client.

    Attributes:
        messages: List of Turn objects (system turn first if present)
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature, None uses provider default
        response_format: Provider-native structured output hint (OpenAI-style),
                         ignored by providers that do not support it
    """

    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None
    response_format: dict[str, Any] | None = field(default=None)


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call.

    Attributes:
        text: The visible generated text
        usage: Token usage information (may be None if provider doesn't return it)
        provider_request_id: Provider's request ID for debugging (may be None)
        reasoning: Extracted reasoning text, when reasoning extraction ran
        role: Role reported by the provider for this output segment
    """

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None
    reasoning: str | None = None
    role: str = "assistant"


@dataclass(frozen=True)
class LLMChunk:
    """Single chunk from streaming response.

    Streaming invariants:
    - done=False: delta_text contains new text, usage MUST be None
    - done=True: This is the terminal chunk. delta_text may be empty.
                 usage and provider_request_id may be populated if provider returns them.

    Attributes:
        delta_text: New text content in this chunk (may be empty)
        done: Whether this is the final chunk
        usage: Token usage (only on terminal chunk, if provider returns it)
        provider_request_id: Provider's request ID (only on terminal chunk)
        kind: "text" for visible output, "reasoning" once reasoning has been split out
    """

    delta_text: str
    done: bool
    usage: LLMUsage | None = None
    provider_request_id: str | None = None
    kind: ChunkKind = "text"

    def __post_init__(self):
        if not self.done and self.usage is not None:
            raise ValueError("Non-terminal chunks (done=False) must have usage=None")
