"""Azure-hosted OpenAI adapter.

Same request/response shapes as OpenAI chat completions; only addressing and
auth differ:
- Endpoint: POST {base_url}openai/deployments/{deployment}/chat/completions?api-version=...
- Base URL: https://{resource_name}.openai.azure.com/ unless overridden
- Headers: api-key: <key>
- The deployment name is the model slug.
"""

import httpx

from chatfoundry.services.llm.adapter import DEFAULT_TIMEOUT_S
from chatfoundry.services.llm.openai_adapter import OpenAIAdapter

DEFAULT_AZURE_API_VERSION = "2024-10-21"
DEFAULT_AZURE_RESOURCE_NAME = "chatfoundry"


def azure_base_url(resource_name: str) -> str:
    return f"https://{resource_name}.openai.azure.com/"


class AzureOpenAIAdapter(OpenAIAdapter):
    """Azure OpenAI deployment adapter."""

    provider = "azure_openai"

    def __init__(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        *,
        api_key: str | None = None,
        resource_name: str | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        self.resource_name = resource_name or DEFAULT_AZURE_RESOURCE_NAME
        super().__init__(
            client,
            model_id,
            api_key=api_key,
            base_url=base_url or azure_base_url(self.resource_name),
            timeout_s=timeout_s,
        )
        self.api_version = api_version or DEFAULT_AZURE_API_VERSION

    @property
    def chat_url(self) -> str:
        return (
            f"{self._base_url}/openai/deployments/{self.model_id}/chat/completions"
            f"?api-version={self.api_version}"
        )

    def _build_headers(self) -> dict[str, str]:
        return {
            "api-key": self._require_api_key(),
            "Content-Type": "application/json",
        }
