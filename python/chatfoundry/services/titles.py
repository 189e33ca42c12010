"""Conversation title synthesis.

A short title is derived from the opening messages of a conversation with a
lightweight model call. It runs when:
- the conversation holds exactly one message (the inbound one), or
- the title still carries the placeholder prefix "[Chat]"

Synthesis is best-effort: failures are logged as title.synthesis.failed and
dropped, never surfaced to the caller and never retried beyond the generation
client's own retry ceiling. Concurrent writers race on the title; the last
write wins.
"""

from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from chatfoundry.logging import get_logger
from chatfoundry.services.conversations import DEFAULT_TITLE_PREFIX, update_title
from chatfoundry.services.credentials import CredentialResolver
from chatfoundry.services.llm.router import MAX_TOKENS, LLMRouter, ModelBinding
from chatfoundry.services.llm.types import LLMRequest, Turn
from chatfoundry.services.redact import safe_kv

logger = get_logger(__name__)

TITLE_PROVIDER = "openai"
TITLE_MODEL = "gpt-4.1-mini"
TITLE_MAX_MESSAGES = 4
TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that can generate a title for the conversation "
    "based on the user's message(s)."
)
TITLE_FORMAT_INSTRUCTION = 'Respond with a JSON object of the form {"title": "<title>"}.'


class TitleResult(BaseModel):
    """Structured output expected from the title model."""

    title: str = Field(min_length=5, max_length=50)


def should_synthesize_title(message_count: int, title: str) -> bool:
    """True for a single-message conversation or a title still at its placeholder."""
    return message_count == 1 or title.startswith(DEFAULT_TITLE_PREFIX)


class TitleSynthesizer:
    """Derives and stores conversation titles.

    Args:
        router: Adapter selector used to bind the title model.
        credentials: Resolver for the title provider's API key.
        session_factory: Opens a short-lived session for the title write.
    """

    def __init__(
        self,
        router: LLMRouter,
        credentials: CredentialResolver,
        session_factory: sessionmaker[Session],
    ):
        self._router = router
        self._credentials = credentials
        self._session_factory = session_factory

    async def synthesize(self, turns: list[Turn]) -> str:
        """Ask the title model for a title.

        Raises:
            LLMError: If generation fails.
            pydantic.ValidationError: If the output is not a valid title object.
        """
        credentials = await self._credentials.resolve(TITLE_PROVIDER)
        client = self._router.select(
            ModelBinding(
                model_slug=TITLE_MODEL,
                provider_slug=TITLE_PROVIDER,
                credentials=credentials,
            ),
            operation="title",
        )

        messages = [
            Turn(role="system", content=f"{TITLE_SYSTEM_PROMPT}\n{TITLE_FORMAT_INSTRUCTION}"),
            *turns[:TITLE_MAX_MESSAGES],
        ]
        response = await client.generate(
            LLMRequest(
                messages=messages,
                max_tokens=MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        )
        return TitleResult.model_validate_json(response.text).title

    def _store(self, conversation_id: UUID, title: str) -> None:
        with self._session_factory() as db:
            update_title(db, conversation_id, title)

    async def run(self, conversation_id: UUID, turns: list[Turn]) -> str | None:
        """Synthesize and persist a title; returns None on any failure."""
        try:
            title = await self.synthesize(turns)
            await run_in_threadpool(self._store, conversation_id, title)
        except Exception as exc:
            logger.warning(
                "title.synthesis.failed",
                conversation_id=str(conversation_id),
                error_type=type(exc).__name__,
            )
            return None

        logger.info(
            "title.synthesis.finished",
            **safe_kv(conversation_id=str(conversation_id), title_chars=len(title)),
        )
        return title
