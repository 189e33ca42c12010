"""Application settings loaded from environment variables.

Environment Configuration:
    CHATFOUNDRY_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    SESSION_SECRET: HS256 secret used to verify session tokens (required in staging/prod)
    SESSION_ISSUER: Expected issuer claim on session tokens

Secret Store Configuration:
    REDIS_URL: Redis connection string. When set, provider secrets are read from Redis;
               otherwise they are read from the process environment.
    SECRETS_PREFIX: Namespace prefix for well-known secret keys (default CHATFOUNDRY)

Platform Inference Configuration:
    CLOUDFLARE_ACCOUNT_ID: Account hosting the Workers AI binding
    CLOUDFLARE_API_TOKEN: API token for the Workers AI REST endpoint

Provider API keys are NOT settings. They live in the secret store under
<SECRETS_PREFIX>__PROVIDERS__<PROVIDER>_API_KEY and are resolved per request.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Local/test fallback so the app boots without a configured secret.
LOCAL_SESSION_SECRET = "chatfoundry-local-session-secret"


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - SESSION_SECRET is required in staging and prod only
    """

    chatfoundry_env: Environment = Field(default=Environment.LOCAL, alias="CHATFOUNDRY_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Session token verification
    session_secret: str | None = Field(default=None, alias="SESSION_SECRET")
    session_issuer: str = Field(default="chatfoundry", alias="SESSION_ISSUER")

    # Secret store
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    secrets_prefix: str = Field(default="CHATFOUNDRY", alias="SECRETS_PREFIX")

    # Platform-hosted inference (default fallback model)
    cloudflare_account_id: str | None = Field(default=None, alias="CLOUDFLARE_ACCOUNT_ID")
    cloudflare_api_token: str | None = Field(default=None, alias="CLOUDFLARE_API_TOKEN")

    # Upstream call timeout in seconds
    llm_timeout_s: int = Field(default=45, alias="LLM_TIMEOUT_S")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure deployment-only secrets are present outside local/test."""
        if self.chatfoundry_env in (Environment.STAGING, Environment.PROD):
            if not self.session_secret:
                raise ValueError(
                    f"SESSION_SECRET is required for CHATFOUNDRY_ENV={self.chatfoundry_env.value}"
                )
        return self

    @property
    def effective_session_secret(self) -> str:
        """Return the configured session secret, or the local fallback."""
        return self.session_secret or LOCAL_SESSION_SECRET


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
