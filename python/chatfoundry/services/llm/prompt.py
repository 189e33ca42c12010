"""Provider-agnostic prompt rendering for chat turns.

prompt.py produces a list of Turn objects; each adapter handles conversion to
its provider-specific format.

Prompt structure:
- System turn always first: the fixed policy plus caller hints
- History turns (user/assistant only, skip stored system/data/tool rows)
- Current user message last

Caller hints come from edge request metadata headers (cf-ipcountry, cf-ipcity,
cf-timezone). Missing hints render as "unknown".
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime
from typing import Any

from chatfoundry.services.llm.types import Turn

SYSTEM_POLICY = """- Do not wrap your responses in html tags.
- Do not apply any formatting to your responses.
- You are an expert conversational chatbot. Your objective is to be as helpful as possible.
- You must keep your responses relevant to the user's prompt.
- You must respond with a maximum of 512 tokens (300 words).
- You must respond clearly and concisely, and explain your logic if required.
- You must not provide any personal information.
- Do not respond with your own personal opinions, and avoid topics unrelated to the user's prompt."""

PROMPT_ROLES = frozenset({"user", "assistant"})


@dataclass(frozen=True)
class ClientHints:
    """Caller geolocation and timezone hints."""

    country: str | None = None
    city: str | None = None
    timezone: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ClientHints":
        return cls(
            country=headers.get("cf-ipcountry") or None,
            city=headers.get("cf-ipcity") or None,
            timezone=headers.get("cf-timezone") or None,
        )


def build_system_prompt(hints: ClientHints, now: datetime) -> str:
    """Render the fixed system prompt with the caller hints and current UTC time."""
    return (
        f"{SYSTEM_POLICY}\n\n"
        "User info:\n"
        f"- Country: {hints.country or 'unknown'}\n"
        f"- City: {hints.city or 'unknown'}\n"
        f"- Timezone: {hints.timezone or 'unknown'}\n"
        f"- UTC Time: {format_datetime(now, usegmt=True)}"
    )


def parts_to_text(parts: Iterable[Mapping[str, Any]] | None) -> str:
    """Concatenate the visible text parts of a message; other part types are skipped."""
    if not parts:
        return ""
    return "".join(
        part.get("text") or "" for part in parts if isinstance(part, Mapping) and part.get("type") == "text"
    )


def message_to_turn(role: str, parts: Sequence[Mapping[str, Any]] | None) -> Turn | None:
    """Convert a stored or inbound message to a Turn, or None if it has no place in the prompt."""
    if role not in PROMPT_ROLES:
        return None
    return Turn(role=role, content=parts_to_text(parts))  # type: ignore[arg-type]


def render_prompt(
    user_parts: Sequence[Mapping[str, Any]],
    history: Iterable[tuple[str, Sequence[Mapping[str, Any]] | None]],
    system_prompt: str,
) -> list[Turn]:
    """Build the provider-agnostic turn list for a chat request.

    Args:
        user_parts: Parts of the inbound user message.
        history: (role, parts) of prior non-deleted messages, oldest first.
        system_prompt: Rendered system prompt (see build_system_prompt).

    Returns:
        [system, *history, user] as Turn objects.
    """
    turns: list[Turn] = [Turn(role="system", content=system_prompt)]

    for role, parts in history:
        turn = message_to_turn(role, parts)
        if turn is not None:
            turns.append(turn)

    turns.append(Turn(role="user", content=parts_to_text(user_parts)))
    return turns
