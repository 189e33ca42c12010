"""OpenAI chat-completions adapter.

Serves the `openai` provider and any `openai_api_compatible` endpoint that
speaks the same wire format at a different base URL.

- Endpoint: POST {base_url}/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Streaming: Server-Sent Events with data: {...} format
- Terminal event: data: [DONE]
- Usage arrives in the last data chunk when stream_options.include_usage is set

Response (non-stream) - extract:
- text = choices[0].message.content
- usage = direct mapping
- provider_request_id = response header x-request-id or body id
"""

import json
from collections.abc import AsyncIterator

import httpx

from chatfoundry.services.llm.adapter import DEFAULT_TIMEOUT_S, LLMAdapter
from chatfoundry.services.llm.errors import LLMError, LLMErrorClass
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage, Turn

OPENAI_BASE_URL = "https://api.openai.com/v1"


def _parse_usage(usage_data: dict | None) -> LLMUsage | None:
    if not usage_data:
        return None
    return LLMUsage(
        prompt_tokens=usage_data.get("prompt_tokens"),
        completion_tokens=usage_data.get("completion_tokens"),
        total_tokens=usage_data.get("total_tokens"),
    )


class OpenAIAdapter(LLMAdapter):
    """OpenAI API adapter for chat completions."""

    provider = "openai"

    def __init__(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        provider: str | None = None,
        include_stream_usage: bool = True,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        super().__init__(client, model_id, api_key=api_key, timeout_s=timeout_s)
        if provider is not None:
            self.provider = provider
        if base_url:
            self._base_url: str | None = base_url.rstrip("/")
        elif self.provider == "openai":
            self._base_url = OPENAI_BASE_URL
        else:
            # Compatible endpoints have no public default
            self._base_url = None
        self._include_stream_usage = include_stream_usage

    @property
    def chat_url(self) -> str:
        if self._base_url is None:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"No base URL configured for provider {self.provider}",
                provider=self.provider,
            )
        return f"{self._base_url}/chat/completions"

    async def generate(self, req: LLMRequest) -> LLMResponse:
        """Non-streaming chat completion."""
        response = await self._client.post(
            self.chat_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout(),
        )
        response.raise_for_status()

        return self._parse_response(response.json(), response.headers)

    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Streaming chat completion using Server-Sent Events."""
        headers = self._build_headers()
        body = self._build_request_body(req, stream=True)

        async with self._client.stream(
            "POST",
            self.chat_url,
            headers=headers,
            json=body,
            timeout=self._timeout(),
        ) as response:
            response.raise_for_status()

            provider_request_id = response.headers.get("x-request-id")
            usage: LLMUsage | None = None
            received_done = False

            async for line in response.aiter_lines():
                if not line or not line.startswith("data:"):
                    continue

                data_str = line[5:].strip()

                if data_str == "[DONE]":
                    received_done = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=usage,
                        provider_request_id=provider_request_id,
                    )
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                provider_request_id = provider_request_id or data.get("id")
                usage = _parse_usage(data.get("usage")) or usage

                choices = data.get("choices") or []
                if not choices:
                    continue

                delta_text = (choices[0].get("delta") or {}).get("content") or ""
                if delta_text:
                    yield LLMChunk(delta_text=delta_text, done=False)

            if not received_done:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "OpenAI stream ended without [DONE] marker",
                    provider=self.provider,
                )

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_api_key()}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        body: dict = {
            "model": self.model_id,
            "messages": [self._turn_to_message(turn) for turn in req.messages],
            "max_tokens": req.max_tokens,
            "stream": stream,
        }

        if stream and self._include_stream_usage:
            body["stream_options"] = {"include_usage": True}

        if req.temperature is not None:
            body["temperature"] = req.temperature

        if req.response_format is not None:
            body["response_format"] = req.response_format

        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, str]:
        """OpenAI uses the same role names as our Turn type."""
        return {"role": turn.role, "content": turn.content}

    def _parse_response(self, data: dict, headers: httpx.Headers) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "OpenAI response missing choices",
                provider=self.provider,
            )

        message = choices[0].get("message") or {}

        return LLMResponse(
            text=message.get("content") or "",
            usage=_parse_usage(data.get("usage")),
            provider_request_id=headers.get("x-request-id") or data.get("id"),
            role=message.get("role") or "assistant",
        )
