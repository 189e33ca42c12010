"""Anthropic messages adapter.

- Endpoint: POST https://api.anthropic.com/v1/messages
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Turn conversion:
- System turn extracted to separate "system" field
- Remaining turns mapped to messages with role preserved

Response (non-stream):
- text = concatenate all content[].text where type="text"
- usage.prompt_tokens = input_tokens, usage.completion_tokens = output_tokens
- provider_request_id = id

Streaming:
- message_start carries the id and input token count
- content_block_delta / text_delta carries text
- message_delta carries output token count
- message_stop terminates
"""

import json
from collections.abc import AsyncIterator

from chatfoundry.services.llm.adapter import LLMAdapter
from chatfoundry.services.llm.errors import LLMError, LLMErrorClass
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage, Turn

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _usage(input_tokens: int | None, output_tokens: int | None) -> LLMUsage:
    total = None
    if input_tokens is not None and output_tokens is not None:
        total = input_tokens + output_tokens
    return LLMUsage(prompt_tokens=input_tokens, completion_tokens=output_tokens, total_tokens=total)


class AnthropicAdapter(LLMAdapter):
    """Anthropic API adapter for the messages endpoint."""

    provider = "anthropic"

    async def generate(self, req: LLMRequest) -> LLMResponse:
        """Non-streaming message generation."""
        response = await self._client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout(),
        )
        response.raise_for_status()

        return self._parse_response(response.json())

    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        """Streaming message generation using Server-Sent Events."""
        headers = self._build_headers()
        body = self._build_request_body(req, stream=True)

        async with self._client.stream(
            "POST",
            ANTHROPIC_MESSAGES_URL,
            headers=headers,
            json=body,
            timeout=self._timeout(),
        ) as response:
            response.raise_for_status()

            provider_request_id: str | None = None
            input_tokens: int | None = None
            output_tokens: int | None = None
            received_stop = False

            async for line in response.aiter_lines():
                # Event names are repeated in the data payload's "type"
                if not line or not line.startswith("data:"):
                    continue

                try:
                    data = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    continue

                event_type = data.get("type", "")

                if event_type == "message_start":
                    message = data.get("message") or {}
                    provider_request_id = message.get("id")
                    input_tokens = (message.get("usage") or {}).get("input_tokens")
                elif event_type == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield LLMChunk(delta_text=delta["text"], done=False)
                elif event_type == "message_delta":
                    output_tokens = (data.get("usage") or {}).get("output_tokens", output_tokens)
                elif event_type == "message_stop":
                    received_stop = True
                    yield LLMChunk(
                        delta_text="",
                        done=True,
                        usage=_usage(input_tokens, output_tokens),
                        provider_request_id=provider_request_id,
                    )
                    break
                elif event_type == "error":
                    raise LLMError(
                        LLMErrorClass.PROVIDER_DOWN,
                        "Anthropic stream reported an error event",
                        provider=self.provider,
                    )

            if not received_stop:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Anthropic stream ended without message_stop event",
                    provider=self.provider,
                )

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._require_api_key(),
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        """Build request body, extracting the system turn to its own field."""
        system_parts = []
        messages = []

        for turn in req.messages:
            if turn.role == "system":
                system_parts.append(turn.content)
            else:
                messages.append(self._turn_to_message(turn))

        body: dict = {
            "model": self.model_id,
            "max_tokens": req.max_tokens,
            "messages": messages,
            "stream": stream,
        }

        if system_parts:
            body["system"] = "\n\n".join(system_parts)

        if req.temperature is not None:
            body["temperature"] = req.temperature

        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, str]:
        return {"role": turn.role, "content": turn.content}

    def _parse_response(self, data: dict) -> LLMResponse:
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )

        usage = None
        usage_data = data.get("usage")
        if usage_data:
            usage = _usage(usage_data.get("input_tokens"), usage_data.get("output_tokens"))

        return LLMResponse(
            text=text,
            usage=usage,
            provider_request_id=data.get("id"),
            role=data.get("role") or "assistant",
        )
