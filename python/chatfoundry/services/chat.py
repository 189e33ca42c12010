"""Chat completion orchestration.

One chat turn moves through these phases:

    Received -> ModelResolved -> UserPersisted -> Generating -> Persisted -> Responded
                      |                               |
                      v                               v
                   Rejected                    UpstreamFailed

- Received: conversation loaded by id for the caller (missing and foreign
  conversations are indistinguishable).
- ModelResolved: the requested model resolved with its provider; otherwise
  rejected before any upstream call and before anything is persisted.
- UserPersisted: the inbound user message is written before generation.
- Generating: the prompt is [system, *history, user]; title synthesis is
  scheduled in the background when triggered.
- Persisted: assistant output is written once generation completes. On
  failure nothing of the assistant output is written.

Streaming turns run generation in a producer task that feeds an unbounded
queue; the response body drains the queue. The producer is not tied to the
client connection, so a disconnect does not stop generation or persistence.
Finish frames are queued before assistant persistence; the end-of-stream
marker is queued after it.

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from chatfoundry.db.models import utcnow
from chatfoundry.errors import ApiError, ApiErrorCode, GenerationFailedError
from chatfoundry.logging import get_logger, set_conversation_id
from chatfoundry.schemas.chat import ChatRequest
from chatfoundry.services import stream_protocol
from chatfoundry.services.conversations import (
    INVALID_CONVERSATION_ID,
    get_conversation_for_viewer_or_404,
    insert_assistant_messages,
    insert_user_message,
    list_history_messages,
    soft_delete_conversation,
)
from chatfoundry.services.credentials import CredentialResolver
from chatfoundry.services.llm.adapter import LanguageModel
from chatfoundry.services.llm.prompt import ClientHints, build_system_prompt, render_prompt
from chatfoundry.services.llm.reasoning import wrap_for_reasoning
from chatfoundry.services.llm.router import MAX_TOKENS, LLMRouter
from chatfoundry.services.llm.types import LLMRequest, LLMResponse, LLMUsage, Turn
from chatfoundry.services.model_registry import ResolvedModel, resolve_model
from chatfoundry.services.redact import safe_kv
from chatfoundry.services.titles import TitleSynthesizer, should_synthesize_title

logger = get_logger(__name__)

GENERATION_FAILED_MESSAGE = "Failed to generate text"
DELETE_FAILED_MESSAGE = "Failed to delete conversation"


@dataclass(frozen=True)
class PreparedTurn:
    """A validated turn whose user message is already persisted.

    Attributes:
        conversation_id: Conversation the turn belongs to.
        resolved: Selected model and provider rows.
        model: Generation client, reasoning-wrapped when requested and supported.
        prompt: Full turn list sent upstream.
        user_message_id: Id of the persisted user message.
    """

    conversation_id: UUID
    resolved: ResolvedModel
    model: LanguageModel
    prompt: list[Turn]
    user_message_id: UUID

    def request(self) -> LLMRequest:
        return LLMRequest(messages=self.prompt, max_tokens=MAX_TOKENS)


@dataclass(frozen=True)
class _LoadedTurn:
    conversation_id: UUID
    title: str
    resolved: ResolvedModel
    history: list[tuple[str, list[dict[str, Any]]]]
    user_parts: list[dict[str, Any]]
    user_message_id: UUID


class ChatService:
    """Completion orchestrator for chat turns.

    Args:
        router: Provider adapter selector.
        credentials: Per-request credential resolver.
        session_factory: Opens one short-lived session per phase.
        titles: Background title synthesizer.
    """

    def __init__(
        self,
        router: LLMRouter,
        credentials: CredentialResolver,
        session_factory: sessionmaker[Session],
        titles: TitleSynthesizer,
    ):
        self._router = router
        self._credentials = credentials
        self._session_factory = session_factory
        self._titles = titles
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background work (titles, stream producers) to finish."""
        if not self._tasks:
            return
        logger.info("chat.background.draining", pending=len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("chat.background.drain_timeout", pending=len(pending))

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _load_turn(self, viewer_id: str, conversation_id: str, body: ChatRequest) -> _LoadedTurn:
        with self._session_factory() as db:
            conversation = get_conversation_for_viewer_or_404(
                db, viewer_id, conversation_id, message=INVALID_CONVERSATION_ID
            )
            resolved = resolve_model(db, body.model_id)
            history = [(m.role, m.parts) for m in list_history_messages(db, conversation.id)]

            user_parts = body.message.normalized_parts()
            user_message = insert_user_message(db, conversation.id, user_parts, body.message.id)

            return _LoadedTurn(
                conversation_id=conversation.id,
                title=conversation.title,
                resolved=resolved,
                history=history,
                user_parts=user_parts,
                user_message_id=user_message.id,
            )

    def _store_assistant(
        self, conversation_id: UUID, output: LLMResponse, reference_id: str | None
    ) -> None:
        with self._session_factory() as db:
            insert_assistant_messages(db, conversation_id, [output], reference_id)

    async def prepare(
        self,
        viewer_id: str,
        conversation_id: str,
        body: ChatRequest,
        *,
        hints: ClientHints | None = None,
        reasoning: bool = False,
    ) -> PreparedTurn:
        """Validate the turn, persist the user message, and bind the model.

        Raises:
            NotFoundError(E_CONVERSATION_NOT_FOUND): Missing or foreign conversation.
            InvalidModelConfigurationError: Unknown, deleted, or inactive model.
        """
        loaded = await run_in_threadpool(self._load_turn, viewer_id, conversation_id, body)
        set_conversation_id(str(loaded.conversation_id))

        system_prompt = build_system_prompt(hints or ClientHints(), utcnow())
        prompt = render_prompt(loaded.user_parts, loaded.history, system_prompt)

        if should_synthesize_title(len(loaded.history) + 1, loaded.title):
            self._spawn(
                self._titles.run(loaded.conversation_id, prompt[1:]),
                name=f"title:{loaded.conversation_id}",
            )

        resolved = loaded.resolved
        credentials = await self._credentials.resolve(resolved.provider.slug)
        client = self._router.select(resolved.binding(credentials))
        model = wrap_for_reasoning(client, requested=reasoning, has_reasoning=resolved.has_reasoning)

        logger.info(
            "chat.turn.prepared",
            **safe_kv(
                provider=resolved.provider.slug,
                model_slug=resolved.model.slug,
                reasoning=model is not client,
                history_count=len(loaded.history),
                prompt_chars=sum(len(t.content) for t in prompt),
            ),
        )
        return PreparedTurn(
            conversation_id=loaded.conversation_id,
            resolved=resolved,
            model=model,
            prompt=prompt,
            user_message_id=loaded.user_message_id,
        )

    async def generate(self, turn: PreparedTurn) -> str:
        """Batch generation: complete the turn, persist, and return the text.

        Raises:
            GenerationFailedError: On any failure; no assistant row is written.
        """
        try:
            output = await turn.model.generate(turn.request())
            await run_in_threadpool(self._store_assistant, turn.conversation_id, output, None)
        except Exception as exc:
            logger.error(
                "chat.turn.failed",
                streaming=False,
                error_type=type(exc).__name__,
                error_class=getattr(getattr(exc, "error_class", None), "value", None),
            )
            raise GenerationFailedError(GENERATION_FAILED_MESSAGE) from exc

        logger.info("chat.turn.finished", streaming=False, text_chars=len(output.text))
        return output.text

    def stream(self, turn: PreparedTurn) -> AsyncIterator[str]:
        """Streaming generation: returns the data-stream frames as they arrive."""
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        message_id = stream_protocol.new_message_id()
        self._spawn(self._produce(turn, queue, message_id), name=f"stream:{turn.conversation_id}")
        return self._drain_queue(queue)

    async def _drain_queue(self, queue: "asyncio.Queue[str | None]") -> AsyncIterator[str]:
        while True:
            frame = await queue.get()
            if frame is None:
                return
            yield frame

    async def _produce(
        self, turn: PreparedTurn, queue: "asyncio.Queue[str | None]", message_id: str
    ) -> None:
        text: list[str] = []
        reasoning: list[str] = []
        usage: LLMUsage | None = None
        provider_request_id: str | None = None

        try:
            queue.put_nowait(stream_protocol.start_step(message_id))
            try:
                async for chunk in turn.model.generate_stream(turn.request()):
                    if chunk.done:
                        usage = chunk.usage
                        provider_request_id = chunk.provider_request_id
                        continue
                    if not chunk.delta_text:
                        continue
                    if chunk.kind == "reasoning":
                        reasoning.append(chunk.delta_text)
                        queue.put_nowait(stream_protocol.reasoning_part(chunk.delta_text))
                    else:
                        text.append(chunk.delta_text)
                        queue.put_nowait(stream_protocol.text_part(chunk.delta_text))
            except Exception as exc:
                logger.error(
                    "chat.turn.failed",
                    streaming=True,
                    error_type=type(exc).__name__,
                    error_class=getattr(getattr(exc, "error_class", None), "value", None),
                )
                queue.put_nowait(stream_protocol.error_part(GENERATION_FAILED_MESSAGE))
                return

            queue.put_nowait(stream_protocol.finish_step(usage))
            queue.put_nowait(stream_protocol.finish_message(usage))

            output = LLMResponse(
                text="".join(text),
                usage=usage,
                provider_request_id=provider_request_id,
                reasoning="".join(reasoning).strip() or None,
            )
            try:
                await run_in_threadpool(
                    self._store_assistant, turn.conversation_id, output, message_id
                )
            except Exception:
                logger.exception("chat.turn.persist_failed", streaming=True)
                return

            logger.info("chat.turn.finished", streaming=True, text_chars=len(output.text))
        finally:
            queue.put_nowait(None)

    async def delete_conversation(self, viewer_id: str, conversation_id: str) -> None:
        """Soft-delete a conversation owned by the viewer.

        Raises:
            NotFoundError(E_CONVERSATION_NOT_FOUND): Missing or foreign conversation.
            ApiError(E_DELETE_FAILED): Any other failure.
        """

        def _delete() -> None:
            with self._session_factory() as db:
                soft_delete_conversation(db, viewer_id, conversation_id)

        try:
            await run_in_threadpool(_delete)
        except ApiError:
            raise
        except Exception as exc:
            logger.error("conversation.delete.failed", error_type=type(exc).__name__)
            raise ApiError(ApiErrorCode.E_DELETE_FAILED, DELETE_FAILED_MESSAGE) from exc
