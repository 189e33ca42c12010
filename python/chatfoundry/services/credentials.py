"""Provider credential resolution over a flat secret store.

Secrets are opaque strings addressed by well-known keys:

    <PREFIX>__PROVIDERS__<NAMESPACE>_API_KEY
    <PREFIX>__PROVIDERS__<NAMESPACE>_BASE_URL
    <PREFIX>__PROVIDERS__<NAMESPACE>_RESOURCE_NAME

Absence is a normal outcome: lookups return None and never raise. Values are
resolved per request and never cached here.

Stores:
- RedisSecretStore: shared store for deployments (REDIS_URL set)
- EnvSecretStore: process environment (local runs, tests)
"""

import os
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from chatfoundry.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRET_TTL_DAYS = 365
SECONDS_PER_DAY = 24 * 60 * 60

# Provider slug -> secret namespace
PROVIDER_SECRET_NAMESPACES: dict[str, str] = {
    "openai": "OPENAI",
    "azure_openai": "AZURE",
    "anthropic": "ANTHROPIC",
    "google": "GOOGLE",
    "openai_api_compatible": "OPENAI_API_COMPATIBLE",
}


class SecretStore(Protocol):
    """Flat string-keyed secret store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_days: int = DEFAULT_SECRET_TTL_DAYS) -> None: ...

    def has(self, key: str) -> bool: ...


class RedisSecretStore:
    """Secret store backed by a sync redis client (decode_responses=True)."""

    def __init__(self, redis_client):
        self._redis = redis_client

    def get(self, key: str) -> str | None:
        return self._redis.get(key)

    def set(self, key: str, value: str, ttl_days: int = DEFAULT_SECRET_TTL_DAYS) -> None:
        self._redis.setex(key, ttl_days * SECONDS_PER_DAY, value)

    def has(self, key: str) -> bool:
        return bool(self._redis.exists(key))


class EnvSecretStore:
    """Secret store over an environment-like mapping. TTLs are not enforced."""

    def __init__(self, environ: MutableMapping[str, str] | None = None):
        self._environ = os.environ if environ is None else environ

    def get(self, key: str) -> str | None:
        return self._environ.get(key) or None

    def set(self, key: str, value: str, ttl_days: int = DEFAULT_SECRET_TTL_DAYS) -> None:
        self._environ[key] = value

    def has(self, key: str) -> bool:
        return bool(self._environ.get(key))


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials resolved for one provider; any field may be missing."""

    api_key: str | None = None
    base_url: str | None = None
    resource_name: str | None = None


def secret_key(prefix: str, namespace: str, field: str) -> str:
    """Build a well-known secret key, e.g. CHATFOUNDRY__PROVIDERS__OPENAI_API_KEY."""
    return f"{prefix}__PROVIDERS__{namespace}_{field}"


def provider_namespace(provider_slug: str) -> str:
    return PROVIDER_SECRET_NAMESPACES.get(provider_slug, provider_slug.upper())


class CredentialResolver:
    """Read-only credential lookups for the chat gateway.

    Args:
        store: Backing secret store.
        prefix: Application namespace prefix (SECRETS_PREFIX).
    """

    def __init__(self, store: SecretStore, prefix: str = "CHATFOUNDRY"):
        self._store = store
        self._prefix = prefix

    async def get(self, key: str) -> str | None:
        """Return the stored value for key, or None.

        Store failures are logged and treated as absence.
        """
        try:
            return await run_in_threadpool(self._store.get, key)
        except Exception as exc:
            logger.warning("credentials.lookup.failed", error_type=type(exc).__name__)
            return None

    async def resolve(self, provider_slug: str) -> ProviderCredentials:
        """Resolve API key, base URL, and resource name for a provider."""
        namespace = provider_namespace(provider_slug)
        api_key = await self.get(secret_key(self._prefix, namespace, "API_KEY"))
        base_url = await self.get(secret_key(self._prefix, namespace, "BASE_URL"))
        resource_name = await self.get(secret_key(self._prefix, namespace, "RESOURCE_NAME"))

        logger.debug(
            "credentials.resolved",
            provider=provider_slug,
            has_api_key=api_key is not None,
            has_base_url=base_url is not None,
        )
        return ProviderCredentials(api_key=api_key, base_url=base_url, resource_name=resource_name)
