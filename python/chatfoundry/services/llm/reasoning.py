"""Reasoning extraction middleware.

Some reasoning models emit their "thinking" inline with the answer, delimited
by <think>...</think>, and some variants drop the opening tag. ReasoningModel
wraps any LanguageModel and:

1. Normalizes the tagging: the opening tag is inserted once, ahead of the first
   real text, unless the output already carries it.
2. Splits the output into reasoning and visible text.

Streaming runs as two explicit stateful stages over the chunk iterator:

    provider chunks -> inject_opening_tag_stream -> split_reasoning_stream -> caller

The wrapper exposes the same generate / generate_stream interface as a raw
adapter, so callers cannot tell whether wrapping happened.
"""

import dataclasses
from collections.abc import AsyncIterator

from chatfoundry.services.llm.adapter import LanguageModel
from chatfoundry.services.llm.types import ChunkKind, LLMChunk, LLMRequest, LLMResponse

DEFAULT_REASONING_TAG = "think"


def opening_tag(tag: str) -> str:
    return f"<{tag}>"


def closing_tag(tag: str) -> str:
    return f"</{tag}>"


def _partial_suffix_len(buffer: str, tag: str) -> int:
    """Length of the longest suffix of buffer that is a proper prefix of tag."""
    for size in range(min(len(tag) - 1, len(buffer)), 0, -1):
        if buffer.endswith(tag[:size]):
            return size
    return 0


class OpeningTagInjector:
    """Accumulator + pass-through that inserts the opening tag at most once.

    The decision is made on cumulative text, not per chunk: while the output so
    far (ignoring leading whitespace) could still grow into the opening tag, the
    chunks are held back. Once decided, every chunk passes through unmodified.
    """

    def __init__(self, tag: str = DEFAULT_REASONING_TAG):
        self.open_tag = opening_tag(tag)
        self._accumulated = ""
        self._pending: list[LLMChunk] = []
        self._decided = False
        self.inserted = False

    def _decide(self, insert: bool) -> list[LLMChunk]:
        self._decided = True
        released = self._pending
        self._pending = []
        if insert and released:
            self.inserted = True
            return [LLMChunk(delta_text=self.open_tag, done=False), *released]
        return released

    def feed(self, chunk: LLMChunk) -> list[LLMChunk]:
        """Return the chunks to forward for one incoming chunk."""
        if self._decided:
            return [chunk]

        if chunk.done:
            return [*self.finish(), chunk]

        if not chunk.delta_text:
            return [chunk]

        self._accumulated += chunk.delta_text
        self._pending.append(chunk)

        leading = self._accumulated.lstrip()
        if leading.startswith(self.open_tag):
            return self._decide(insert=False)
        if self.open_tag.startswith(leading):
            return []
        return self._decide(insert=True)

    def finish(self) -> list[LLMChunk]:
        """Release held chunks at end of stream; held text never formed the tag."""
        if self._decided:
            return []
        return self._decide(insert=True)


class ReasoningSplitter:
    """Splits tagged text into reasoning and visible text segments.

    Tags may be split across feeds; a trailing fragment that could begin a tag
    is held until the next feed or flush. Text after an unclosed opening tag is
    reasoning. Newlines directly after a tag are dropped.
    """

    def __init__(self, tag: str = DEFAULT_REASONING_TAG):
        self.open_tag = opening_tag(tag)
        self.close_tag = closing_tag(tag)
        self._buffer = ""
        self._in_reasoning = False
        self._after_tag = False

    @property
    def _kind(self) -> ChunkKind:
        return "reasoning" if self._in_reasoning else "text"

    def _emit(self, segment: str, out: list[tuple[ChunkKind, str]]) -> None:
        if self._after_tag:
            segment = segment.lstrip("\n")
        if segment:
            self._after_tag = False
            out.append((self._kind, segment))

    def feed(self, text: str) -> list[tuple[ChunkKind, str]]:
        self._buffer += text
        out: list[tuple[ChunkKind, str]] = []

        while True:
            tag = self.close_tag if self._in_reasoning else self.open_tag
            index = self._buffer.find(tag)
            if index == -1:
                keep = _partial_suffix_len(self._buffer, tag)
                self._emit(self._buffer[: len(self._buffer) - keep], out)
                self._buffer = self._buffer[len(self._buffer) - keep :]
                return out

            self._emit(self._buffer[:index], out)
            self._buffer = self._buffer[index + len(tag) :]
            self._in_reasoning = not self._in_reasoning
            self._after_tag = True

    def flush(self) -> list[tuple[ChunkKind, str]]:
        out: list[tuple[ChunkKind, str]] = []
        self._emit(self._buffer, out)
        self._buffer = ""
        return out


def inject_opening_tag(text: str, tag: str = DEFAULT_REASONING_TAG) -> str:
    """Prepend the opening tag unless the text already starts with it."""
    open_tag = opening_tag(tag)
    if text.lstrip().startswith(open_tag):
        return text
    return open_tag + text


def split_reasoning(text: str, tag: str = DEFAULT_REASONING_TAG) -> tuple[str | None, str]:
    """Split complete text into (reasoning, visible text)."""
    splitter = ReasoningSplitter(tag)
    segments = splitter.feed(text) + splitter.flush()

    reasoning = "".join(s for kind, s in segments if kind == "reasoning").strip()
    visible = "".join(s for kind, s in segments if kind == "text")
    return (reasoning or None), visible


async def inject_opening_tag_stream(
    chunks: AsyncIterator[LLMChunk], tag: str = DEFAULT_REASONING_TAG
) -> AsyncIterator[LLMChunk]:
    injector = OpeningTagInjector(tag)
    async for chunk in chunks:
        for forwarded in injector.feed(chunk):
            yield forwarded
    for forwarded in injector.finish():
        yield forwarded


async def split_reasoning_stream(
    chunks: AsyncIterator[LLMChunk], tag: str = DEFAULT_REASONING_TAG
) -> AsyncIterator[LLMChunk]:
    splitter = ReasoningSplitter(tag)
    async for chunk in chunks:
        if chunk.done:
            for kind, segment in splitter.flush():
                yield LLMChunk(delta_text=segment, done=False, kind=kind)
            yield chunk
            continue
        for kind, segment in splitter.feed(chunk.delta_text):
            yield LLMChunk(delta_text=segment, done=False, kind=kind)
    for kind, segment in splitter.flush():
        yield LLMChunk(delta_text=segment, done=False, kind=kind)


class ReasoningModel(LanguageModel):
    """LanguageModel wrapper that normalizes and extracts reasoning output."""

    def __init__(self, inner: LanguageModel, tag: str = DEFAULT_REASONING_TAG):
        self.inner = inner
        self.tag = tag
        self.provider = inner.provider
        self.model_id = inner.model_id

    async def generate(self, req: LLMRequest) -> LLMResponse:
        response = await self.inner.generate(req)
        reasoning, text = split_reasoning(inject_opening_tag(response.text, self.tag), self.tag)
        return dataclasses.replace(response, text=text, reasoning=reasoning)

    async def generate_stream(self, req: LLMRequest) -> AsyncIterator[LLMChunk]:
        tagged = inject_opening_tag_stream(self.inner.generate_stream(req), self.tag)
        async for chunk in split_reasoning_stream(tagged, self.tag):
            yield chunk


def wrap_for_reasoning(model: LanguageModel, *, requested: bool, has_reasoning: bool) -> LanguageModel:
    """Apply the reasoning wrapper only when requested AND supported by the model."""
    if requested and has_reasoning:
        return ReasoningModel(model)
    return model
