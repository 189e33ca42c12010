"""Model registry lookups.

A model is selectable iff:
- model.is_deleted = false AND model.status = 'active'
- AND its provider exists with provider.is_deleted = false

Lookups never fall back silently: an unknown, deleted, or inactive model (or a
malformed identifier) is rejected with E_INVALID_MODEL_CONFIGURATION before any
upstream call is attempted.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatfoundry.db.models import Model, Provider, ProviderStatus
from chatfoundry.errors import InvalidModelConfigurationError
from chatfoundry.logging import get_logger
from chatfoundry.schemas.chat import ModelCapabilities, ModelOut, ModelProviderOut
from chatfoundry.services.credentials import ProviderCredentials
from chatfoundry.services.llm.router import ModelBinding

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedModel:
    """A selectable model together with its provider row."""

    model: Model
    provider: Provider

    @property
    def has_reasoning(self) -> bool:
        return bool(self.model.has_reasoning)

    def binding(self, credentials: ProviderCredentials) -> ModelBinding:
        """Bind this model to resolved credentials for adapter selection."""
        return ModelBinding(
            model_slug=self.model.slug,
            provider_slug=self.provider.slug,
            credentials=credentials,
            base_url=self.provider.base_url,
            api_version=self.provider.api_version,
            details=dict(self.provider.details or {}),
        )


def _selectable_models():
    return (
        select(Model, Provider)
        .join(Provider, Model.provider_id == Provider.id)
        .where(
            Model.is_deleted == False,  # noqa: E712
            Model.status == ProviderStatus.active.value,
            Provider.is_deleted == False,  # noqa: E712
        )
    )


def resolve_model(db: Session, model_id: str | UUID | None) -> ResolvedModel:
    """Resolve a model identifier to its model and provider.

    Raises:
        InvalidModelConfigurationError: If the model is missing, deleted,
            inactive, or the identifier is malformed.
    """
    if model_id is None:
        raise InvalidModelConfigurationError()

    try:
        model_uuid = model_id if isinstance(model_id, UUID) else UUID(str(model_id))
    except ValueError:
        raise InvalidModelConfigurationError() from None

    row = db.execute(_selectable_models().where(Model.id == model_uuid)).first()
    if row is None:
        logger.info("model.resolve.rejected", model_id=str(model_uuid))
        raise InvalidModelConfigurationError()

    model, provider = row
    logger.info(
        "model.resolved",
        model_slug=model.slug,
        provider=provider.slug,
        has_reasoning=model.has_reasoning,
    )
    return ResolvedModel(model=model, provider=provider)


def list_models(db: Session) -> list[ModelOut]:
    """List selectable models with their capabilities, ordered by name."""
    rows = db.execute(_selectable_models().order_by(Model.name, Model.slug)).all()
    return [
        ModelOut(
            id=model.id,
            slug=model.slug,
            name=model.name,
            description=model.description,
            capabilities=ModelCapabilities(
                has_reasoning=model.has_reasoning,
                supports_streaming=model.supports_streaming,
                supports_tool_calling=model.supports_tool_calling,
            ),
            provider=ModelProviderOut(slug=provider.slug, name=provider.name),
        )
        for model, provider in rows
    ]
