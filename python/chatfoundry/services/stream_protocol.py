"""Data-stream protocol encoder.

The chat client consumes a line-oriented stream where each part is
``<code>:<json>\\n``:

    f  start step       {"messageId": "..."}
    0  text delta       "..."
    g  reasoning delta  "..."
    3  error            "..."
    e  finish step      {"finishReason", "usage", "isContinued"}
    d  finish message   {"finishReason", "usage"}

Responses carrying this format set ``x-vercel-ai-data-stream: v1``.
"""

import json
from typing import Any
from uuid import uuid4

from chatfoundry.services.llm.types import LLMUsage

DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
DATA_STREAM_HEADERS = {
    "x-vercel-ai-data-stream": "v1",
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def _part(code: str, value: Any) -> str:
    return f"{code}:{json.dumps(value, separators=(',', ':'), ensure_ascii=False)}\n"


def _usage(usage: LLMUsage | None) -> dict[str, int | None]:
    return {
        "promptTokens": usage.prompt_tokens if usage else None,
        "completionTokens": usage.completion_tokens if usage else None,
    }


def new_message_id() -> str:
    return f"msg-{uuid4().hex}"


def start_step(message_id: str) -> str:
    return _part("f", {"messageId": message_id})


def text_part(text: str) -> str:
    return _part("0", text)


def reasoning_part(text: str) -> str:
    return _part("g", text)


def error_part(message: str) -> str:
    return _part("3", message)


def finish_step(usage: LLMUsage | None, finish_reason: str = "stop") -> str:
    return _part("e", {"finishReason": finish_reason, "usage": _usage(usage), "isContinued": False})


def finish_message(usage: LLMUsage | None, finish_reason: str = "stop") -> str:
    return _part("d", {"finishReason": finish_reason, "usage": _usage(usage)})
