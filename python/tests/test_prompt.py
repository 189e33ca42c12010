"""Tests for prompt rendering.

The prompt is always [system, *history, user]; stored rows outside the
user/assistant roles never reach the provider.
"""

from datetime import UTC, datetime

from chatfoundry.services.llm.prompt import (
    SYSTEM_POLICY,
    ClientHints,
    build_system_prompt,
    message_to_turn,
    parts_to_text,
    render_prompt,
)
from chatfoundry.services.llm.types import Turn

NOW = datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC)


def text(value: str) -> list[dict]:
    return [{"type": "text", "text": value}]


class TestSystemPrompt:
    def test_includes_policy_hints_and_time(self):
        prompt = build_system_prompt(
            ClientHints(country="NZ", city="Wellington", timezone="Pacific/Auckland"), NOW
        )

        assert prompt.startswith(SYSTEM_POLICY)
        assert "- Country: NZ" in prompt
        assert "- City: Wellington" in prompt
        assert "- Timezone: Pacific/Auckland" in prompt
        assert "- UTC Time: Wed, 04 Mar 2026 05:06:07 GMT" in prompt

    def test_missing_hints_render_unknown(self):
        prompt = build_system_prompt(ClientHints(), NOW)

        assert "- Country: unknown" in prompt
        assert "- City: unknown" in prompt
        assert "- Timezone: unknown" in prompt

    def test_hints_from_edge_headers(self):
        hints = ClientHints.from_headers(
            {"cf-ipcountry": "DE", "cf-ipcity": "Berlin", "cf-timezone": ""}
        )

        assert hints == ClientHints(country="DE", city="Berlin", timezone=None)


class TestParts:
    def test_text_parts_are_concatenated(self):
        parts = [
            {"type": "text", "text": "Hello "},
            {"type": "reasoning", "reasoning": "hidden"},
            {"type": "text", "text": "world"},
        ]

        assert parts_to_text(parts) == "Hello world"

    def test_empty_parts(self):
        assert parts_to_text(None) == ""
        assert parts_to_text([]) == ""

    def test_only_user_and_assistant_become_turns(self):
        assert message_to_turn("user", text("q")) == Turn(role="user", content="q")
        assert message_to_turn("assistant", text("a")) == Turn(role="assistant", content="a")
        assert message_to_turn("system", text("s")) is None
        assert message_to_turn("data", text("d")) is None
        assert message_to_turn("tool", text("t")) is None


class TestRenderPrompt:
    def test_order_is_system_history_user(self):
        history = [
            ("user", text("first question")),
            ("assistant", text("first answer")),
            ("data", text("ignored")),
            ("user", text("second question")),
        ]

        turns = render_prompt(text("third question"), history, "SYSTEM")

        assert turns == [
            Turn(role="system", content="SYSTEM"),
            Turn(role="user", content="first question"),
            Turn(role="assistant", content="first answer"),
            Turn(role="user", content="second question"),
            Turn(role="user", content="third question"),
        ]

    def test_no_history(self):
        turns = render_prompt(text("hi"), [], "SYSTEM")

        assert [t.role for t in turns] == ["system", "user"]
