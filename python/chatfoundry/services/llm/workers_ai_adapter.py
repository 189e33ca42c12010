"""Platform-hosted inference adapter (Cloudflare Workers AI REST API).

Serves the `cloudflare` provider and the default fallback model. Credentials
belong to the platform (settings), not to the per-provider secret namespace.

- Endpoint: POST https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{model}
- Headers: Authorization: Bearer <api token>

Response (non-stream):
{
  "success": true,
  "result": {"response": "<output_text>", "usage": {"prompt_tokens": 10, ...}},
  "errors": []
}

Streaming: SSE lines `data: {"response": "<delta>"}`; the last data chunk may
carry "usage"; terminal line `data: [DONE]`.
"""

import json
from collections.abc import AsyncIterator

import httpx

from chatfoundry.services.llm.adapter import DEFAULT_TIMEOUT_S, LLMAdapter
from chatfoundry.services.llm.errors import LLMError, LLMErrorClass
from chatfoundry.services.llm.types import LLMChunk, LLMRequest, LLMResponse, LLMUsage

WORKERS_AI_BASE_URL = "https://api.cloudflare.com/client/v4/accounts"
DEFAULT_HOSTED_MODEL = "@cf/deepseek-ai/deepseek-r1-distill-qwen-32b"


def _parse_usage(usage_data: dict | None) -> LLMUsage | None:
    if not usage_data:
        return None
    return LLMUsage(
        prompt_tokens=usage_data.get("prompt_tokens"),
        completion_tokens=usage_data.get("completion_tokens"),
        total_tokens=usage_data.get("total_tokens"),
    )


class WorkersAIAdapter(LLMAdapter):
    """Workers AI text-generation adapter."""

    provider = "cloudflare"

    def __init__(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        *,
        account_id: str | None,
        api_token: str | None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        super().__init__(client, model_id, api_key=api_token, timeout_s=timeout_s)
        self.account_id = account_id

    @property
    def run_url(self) -> str:
        if not self.account_id:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                "Workers AI account is not configured",
                provider=self.provider,
            )
        return f"{WORKERS_AI_BASE_URL}/{self.account_id}/ai/run/{self.model_id}"

    async def generate(self, req: LLMRequest) -> LLMResponse:
        response = await self._client.post(
            self.run_url,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout(),
        )
        response.raise_for_status()

        data = response.json()
        if data.get("success") is False:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Workers AI reported an unsuccessful run",
                provider=self.provider,
            )

        result = data.get("result") or {}
        return LLMResponse(
            text=result.get("response") or "",
            usage=_parse_usage(result.get("usage")),
            provider_request_id=response.headers.get("cf-ray"),
        )

    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        url = self.run_url
        headers = self._build_headers()
        body = self._build_request_body(req, stream=True)

        async with self._client.stream(
            "POST",
            url,
            headers=headers,
            json=body,
            timeout=self._timeout(),
        ) as response:
            response.raise_for_status()

            provider_request_id = response.headers.get("cf-ray")
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

                usage = _parse_usage(data.get("usage")) or usage
                delta_text = data.get("response") or ""
                if delta_text:
                    yield LLMChunk(delta_text=delta_text, done=False)

            if not received_done:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Workers AI stream ended without [DONE] marker",
                    provider=self.provider,
                )

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_api_key()}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest, stream: bool) -> dict:
        body: dict = {
            "messages": [{"role": t.role, "content": t.content} for t in req.messages],
            "max_tokens": req.max_tokens,
            "stream": stream,
        }
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body
