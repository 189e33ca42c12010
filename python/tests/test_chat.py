"""Integration tests for the chat routes.

Upstream calls go to the platform-hosted provider (Workers AI) and are mocked
with respx. Title synthesis runs in the background against a provider with no
configured key, so it fails fast without HTTP and never touches assertions.

Tests cover:
- batch and streaming turns, with and without reasoning extraction
- prompt ordering and user-message-first persistence
- failure paths: nothing of the assistant output is persisted
- owner-only access (foreign == missing)
- conversation create / list / get / delete
"""

import json
from datetime import timedelta
from uuid import uuid4

import httpx
import respx
from fastapi.testclient import TestClient

from chatfoundry.db.models import Conversation, utcnow
from tests.factories import (
    create_test_conversation,
    create_test_message,
    create_test_model,
    create_test_provider,
    create_workers_model,
    list_conversation_messages as messages_of,
)
from tests.helpers import auth_headers, create_test_user_id, parse_data_stream

WORKERS_RUN_URL = "https://api.cloudflare.com/client/v4/accounts/test-account/ai/run/"
WORKERS_MODEL = "@cf/meta/llama-3.1-8b-instruct"
WORKERS_URL = WORKERS_RUN_URL + WORKERS_MODEL


def chat_body(model_id, text: str = "Hello there", message_id: str | None = "ui-msg-1") -> dict:
    return {
        "id": "chat-1",
        "message": {
            "id": message_id,
            "role": "user",
            "parts": [{"type": "text", "text": text}],
        },
        "modelId": str(model_id) if model_id is not None else None,
    }


def sse(*events) -> str:
    return "".join(
        f"data: {e if isinstance(e, str) else json.dumps(e)}\n\n" for e in events
    )


def workers_completion(text: str) -> dict:
    return {
        "success": True,
        "result": {
            "response": text,
            "usage": {"prompt_tokens": 11, "completion_tokens": 3, "total_tokens": 14},
        },
        "errors": [],
    }


# =============================================================================
# Batch turns
# =============================================================================


class TestBatchTurn:
    def test_batch_turn_returns_text_and_persists(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            respx.post(WORKERS_URL).respond(200, json=workers_completion("Hi! How can I help?"))
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers=auth_headers(test_user_id),
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "text": "Hi! How can I help?"}

        user_msg, assistant_msg = messages_of(session_factory, conversation.id)
        assert user_msg.role == "user"
        assert user_msg.status == "received"
        assert user_msg.reference_id == "ui-msg-1"
        assert user_msg.parts == [{"type": "text", "text": "Hello there"}]

        assert assistant_msg.role == "assistant"
        assert assistant_msg.status == "sent"
        assert assistant_msg.parts == [{"type": "text", "text": "Hi! How can I help?"}]
        assert assistant_msg.details["usage"] == {
            "promptTokens": 11,
            "completionTokens": 3,
            "totalTokens": 14,
        }
        assert assistant_msg.version == 0

        with session_factory() as db:
            assert db.get(Conversation, conversation.id).last_message_at is not None

    def test_prompt_is_system_history_user_and_user_persisted_first(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session)
        conversation = create_test_conversation(db_session, test_user_id, title="Named chat")
        base = utcnow() - timedelta(hours=1)
        create_test_message(db_session, conversation.id, role="user", text="q1", created_at=base)
        create_test_message(
            db_session,
            conversation.id,
            role="assistant",
            text="a1",
            created_at=base + timedelta(minutes=1),
        )
        create_test_message(
            db_session, conversation.id, role="data", text="x", created_at=base + timedelta(minutes=2)
        )
        create_test_message(
            db_session,
            conversation.id,
            role="user",
            text="deleted",
            is_deleted=True,
            created_at=base + timedelta(minutes=3),
        )

        seen_user_rows = []

        def upstream(request: httpx.Request) -> httpx.Response:
            rows = [m for m in messages_of(session_factory, conversation.id) if m.role == "user"]
            seen_user_rows.append(len(rows))
            return httpx.Response(200, json=workers_completion("a2"))

        with respx.mock:
            route = respx.post(WORKERS_URL).mock(side_effect=upstream)
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id, text="q2"),
                headers={**auth_headers(test_user_id), "cf-ipcountry": "NZ"},
            )

        assert response.status_code == 200
        # q1, the soft-deleted row, and the inbound q2 are all on disk before the call
        assert seen_user_rows == [3]

        sent = json.loads(route.calls.last.request.content)
        assert [(m["role"], m["content"]) for m in sent["messages"][1:]] == [
            ("user", "q1"),
            ("assistant", "a1"),
            ("user", "q2"),
        ]
        system = sent["messages"][0]
        assert system["role"] == "system"
        assert "- Country: NZ" in system["content"]
        assert "- City: unknown" in system["content"]
        assert sent["max_tokens"] == 2048

    def test_batch_reasoning_is_split_into_parts(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session, has_reasoning=True)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            respx.post(WORKERS_URL).respond(
                200, json=workers_completion("Considering options.</think>\nGo with B.")
            )
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers={**auth_headers(test_user_id), "X-Reasoning": "true"},
            )

        assert response.json()["text"] == "Go with B."
        assistant_msg = messages_of(session_factory, conversation.id)[-1]
        assert assistant_msg.parts == [
            {"type": "reasoning", "reasoning": "Considering options."},
            {"type": "text", "text": "Go with B."},
        ]

    def test_reasoning_header_ignored_for_models_without_reasoning(
        self, client: TestClient, db_session, test_user_id
    ):
        model = create_workers_model(db_session, has_reasoning=False)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            respx.post(WORKERS_URL).respond(
                200, json=workers_completion("<think>raw</think>kept as is")
            )
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers={**auth_headers(test_user_id), "X-Reasoning": "true"},
            )

        assert response.json()["text"] == "<think>raw</think>kept as is"

    def test_upstream_failure_returns_500_and_persists_no_assistant(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        # No OpenAI key is configured, so generation fails with an auth error
        provider = create_test_provider(db_session, "openai")
        model = create_test_model(db_session, provider, "gpt-4.1")
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Failed to generate text"
        assert data["code"] == "E_GENERATION_FAILED"

        roles = [m.role for m in messages_of(session_factory, conversation.id)]
        assert roles == ["user"]

    def test_unmapped_provider_uses_hosted_fallback(
        self, client: TestClient, db_session, test_user_id
    ):
        provider = create_test_provider(db_session, "google", name="Google")
        model = create_test_model(db_session, provider, "gemini-2.0-flash")
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            route = respx.post(
                WORKERS_RUN_URL + "@cf/deepseek-ai/deepseek-r1-distill-qwen-32b"
            ).respond(200, json=workers_completion("from fallback"))
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers=auth_headers(test_user_id),
            )

        assert response.json() == {"success": True, "text": "from fallback"}
        assert route.called


# =============================================================================
# Streaming turns
# =============================================================================


class TestStreamingTurn:
    def test_stream_frames_and_persistence(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            respx.post(WORKERS_URL).respond(
                200,
                text=sse(
                    {"response": "Hello"},
                    {"response": " world"},
                    {"response": "", "usage": {"prompt_tokens": 7, "completion_tokens": 2}},
                    "[DONE]",
                ),
            )
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers={**auth_headers(test_user_id), "X-Stream": "true"},
            )

        assert response.status_code == 200
        assert response.headers["x-vercel-ai-data-stream"] == "v1"
        assert response.headers["content-type"].startswith("text/plain")

        frames = parse_data_stream(response.text)
        assert [code for code, _ in frames] == ["f", "0", "0", "e", "d"]
        message_id = frames[0][1]["messageId"]
        assert frames[1][1] == "Hello"
        assert frames[2][1] == " world"
        assert frames[3][1] == {
            "finishReason": "stop",
            "usage": {"promptTokens": 7, "completionTokens": 2},
            "isContinued": False,
        }
        assert frames[4][1]["finishReason"] == "stop"

        assistant_msg = messages_of(session_factory, conversation.id)[-1]
        assert assistant_msg.role == "assistant"
        assert assistant_msg.parts == [{"type": "text", "text": "Hello world"}]
        assert assistant_msg.reference_id == message_id

    def test_stream_with_reasoning(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session, has_reasoning=True)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            respx.post(WORKERS_URL).respond(
                200,
                text=sse(
                    {"response": "Let me"},
                    {"response": " think</th"},
                    {"response": "ink>\n"},
                    {"response": "Answer."},
                    "[DONE]",
                ),
            )
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers={
                    **auth_headers(test_user_id),
                    "X-Stream": "true",
                    "X-Reasoning": "true",
                },
            )

        frames = parse_data_stream(response.text)
        reasoning = "".join(v for code, v in frames if code == "g")
        text = "".join(v for code, v in frames if code == "0")
        assert reasoning == "Let me think"
        assert text == "Answer."
        assert "<think>" not in response.text

        assistant_msg = messages_of(session_factory, conversation.id)[-1]
        assert assistant_msg.parts == [
            {"type": "reasoning", "reasoning": "Let me think"},
            {"type": "text", "text": "Answer."},
        ]

    def test_stream_failure_emits_error_frame(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        provider = create_test_provider(db_session, "anthropic")
        model = create_test_model(db_session, provider, "claude-3-5-haiku-latest")
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(model.id),
            headers={**auth_headers(test_user_id), "X-Stream": "true"},
        )

        assert response.status_code == 200
        frames = parse_data_stream(response.text)
        assert [code for code, _ in frames] == ["f", "3"]
        assert frames[1][1] == "Failed to generate text"

        roles = [m.role for m in messages_of(session_factory, conversation.id)]
        assert roles == ["user"]


# =============================================================================
# Validation and access
# =============================================================================


class TestTurnValidation:
    def test_unknown_model_rejected_before_anything_is_persisted(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(uuid4()),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid model configuration"
        assert response.json()["code"] == "E_INVALID_MODEL_CONFIGURATION"
        assert messages_of(session_factory, conversation.id) == []

    def test_missing_model_id_rejected(self, client: TestClient, db_session, test_user_id):
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(None),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid model configuration"

    def test_inactive_model_rejected(self, client: TestClient, db_session, test_user_id):
        provider = create_test_provider(db_session, "cloudflare")
        model = create_test_model(db_session, provider, WORKERS_MODEL, status="inactive")
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400

    def test_soft_deleted_model_rejected_before_upstream(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        provider = create_test_provider(db_session, "cloudflare")
        model = create_test_model(db_session, provider, WORKERS_MODEL, is_deleted=True)
        conversation = create_test_conversation(db_session, test_user_id)

        with respx.mock:
            upstream = respx.post(WORKERS_URL).respond(200, json=workers_completion("never"))
            response = client.post(
                f"/api/chat/{conversation.id}",
                json=chat_body(model.id),
                headers=auth_headers(test_user_id),
            )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid model configuration"
        assert not upstream.called
        assert messages_of(session_factory, conversation.id) == []

    def test_deleted_provider_rejects_model(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        provider = create_test_provider(db_session, "cloudflare", is_deleted=True)
        model = create_test_model(db_session, provider, WORKERS_MODEL)
        conversation = create_test_conversation(db_session, test_user_id)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400
        assert messages_of(session_factory, conversation.id) == []

    def test_foreign_conversation_is_indistinguishable_from_missing(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        model = create_workers_model(db_session)
        other_conversation = create_test_conversation(db_session, create_test_user_id())

        foreign = client.post(
            f"/api/chat/{other_conversation.id}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )
        missing = client.post(
            f"/api/chat/{uuid4()}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json()["error"] == missing.json()["error"] == "Invalid conversation ID"
        assert foreign.json()["code"] == missing.json()["code"]
        assert messages_of(session_factory, other_conversation.id) == []

    def test_malformed_conversation_id_is_404(self, client: TestClient, db_session, test_user_id):
        model = create_workers_model(db_session)

        response = client.post(
            "/api/chat/not-a-uuid",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 404

    def test_deleted_conversation_is_404(self, client: TestClient, db_session, test_user_id):
        model = create_workers_model(db_session)
        conversation = create_test_conversation(db_session, test_user_id, is_deleted=True)

        response = client.post(
            f"/api/chat/{conversation.id}",
            json=chat_body(model.id),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 404

    def test_unsupported_method_is_405(self, client: TestClient, test_user_id):
        response = client.patch(f"/api/chat/{uuid4()}", headers=auth_headers(test_user_id))

        assert response.status_code == 405


# =============================================================================
# Conversation endpoints
# =============================================================================


class TestConversationEndpoints:
    def test_create_without_body(self, client: TestClient, test_user_id):
        response = client.post("/api/chat", headers=auth_headers(test_user_id))

        assert response.status_code == 201
        conversation = response.json()["conversation"]
        assert conversation["title"].startswith("[Chat] ")
        assert conversation["model_id"] is None
        assert conversation["status"] == "active"

    def test_create_with_model(self, client: TestClient, db_session, test_user_id):
        model = create_workers_model(db_session)

        response = client.post(
            "/api/chat", json={"modelId": str(model.id)}, headers=auth_headers(test_user_id)
        )

        assert response.status_code == 201
        assert response.json()["conversation"]["model_id"] == str(model.id)

    def test_create_with_unknown_model(self, client: TestClient, test_user_id):
        response = client.post(
            "/api/chat", json={"modelId": str(uuid4())}, headers=auth_headers(test_user_id)
        )

        assert response.status_code == 400

    def test_list_is_owner_only_and_most_recent_first(
        self, client: TestClient, db_session, test_user_id
    ):
        now = utcnow()
        older = create_test_conversation(
            db_session, test_user_id, title="Older", updated_at=now - timedelta(days=1)
        )
        newer = create_test_conversation(db_session, test_user_id, title="Newer", updated_at=now)
        create_test_conversation(db_session, test_user_id, title="Gone", is_deleted=True)
        create_test_conversation(db_session, create_test_user_id(), title="Someone else's")

        response = client.get("/api/chat", headers=auth_headers(test_user_id))

        assert response.status_code == 200
        ids = [c["id"] for c in response.json()["conversations"]]
        assert ids == [str(newer.id), str(older.id)]

    def test_get_conversation_with_messages(self, client: TestClient, db_session, test_user_id):
        conversation = create_test_conversation(db_session, test_user_id)
        base = utcnow() - timedelta(minutes=10)
        create_test_message(db_session, conversation.id, role="user", text="q", created_at=base)
        create_test_message(
            db_session,
            conversation.id,
            role="tool",
            text="tool output",
            created_at=base + timedelta(minutes=1),
        )
        create_test_message(
            db_session,
            conversation.id,
            role="assistant",
            text="hidden",
            is_deleted=True,
            created_at=base + timedelta(minutes=2),
        )

        response = client.get(f"/api/chat/{conversation.id}", headers=auth_headers(test_user_id))

        assert response.status_code == 200
        detail = response.json()["conversation"]
        assert detail["id"] == str(conversation.id)
        assert [(m["role"], m["parts"][0]["text"]) for m in detail["messages"]] == [
            ("user", "q"),
            ("assistant", "tool output"),
        ]

    def test_get_foreign_conversation_is_404(self, client: TestClient, db_session, test_user_id):
        conversation = create_test_conversation(db_session, create_test_user_id())

        response = client.get(f"/api/chat/{conversation.id}", headers=auth_headers(test_user_id))

        assert response.status_code == 404
        assert response.json()["error"] == "Conversation not found"

    def test_delete_soft_deletes_conversation_and_messages(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        conversation = create_test_conversation(db_session, test_user_id)
        create_test_message(db_session, conversation.id, role="user", text="q")

        response = client.delete(
            f"/api/chat/{conversation.id}", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Conversation deleted successfully",
        }

        with session_factory() as db:
            stored = db.get(Conversation, conversation.id)
            assert stored.is_deleted is True
            assert stored.status == "deleted"
            assert stored.deleted_at is not None
        assert all(m.is_deleted for m in messages_of(session_factory, conversation.id))

        again = client.get(f"/api/chat/{conversation.id}", headers=auth_headers(test_user_id))
        assert again.status_code == 404

    def test_delete_foreign_conversation_is_404(
        self, client: TestClient, db_session, session_factory, test_user_id
    ):
        conversation = create_test_conversation(db_session, create_test_user_id())

        response = client.delete(
            f"/api/chat/{conversation.id}", headers=auth_headers(test_user_id)
        )

        assert response.status_code == 404
        with session_factory() as db:
            assert db.get(Conversation, conversation.id).is_deleted is False
