from lume.config import get_settings
from lume.db import repository
from lume.providers.base import Finish, TextDelta, ToolCall, ToolInputDelta, ToolInputStart, Usage
from conftest import decode_stream, user_message

ALICE = {"x-guest-id": "alice"}


def new_conversation(client, headers=ALICE, **body):
    return client.post("/api/v1/conversations", json=body or None, headers=headers).json()["id"]


def test_chat_streams_ui_message_stream(client, fake_provider):
    fake_provider.script([TextDelta("Hi "), TextDelta("Alice"), Usage(4, 2), Finish("stop")])
    cid = new_conversation(client)

    resp = client.post("/api/v1/chat", json={"conversationId": cid, "message": user_message("Hello")}, headers=ALICE)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["x-vercel-ai-ui-message-stream"] == "v1"
    assert resp.headers["x-conversation-id"] == cid
    assert resp.text.endswith("data: [DONE]\n\n")

    chunks = decode_stream([resp.text])
    assert [c["delta"] for c in chunks if c["type"] == "text-delta"] == ["Hi ", "Alice"]
    assert chunks[0]["type"] == "start"
    assert chunks[-1]["type"] == "finish"


def test_chat_persists_history_usage_and_title(client, fake_provider):
    cid = new_conversation(client)

    client.post("/api/v1/chat", json={"conversationId": cid, "message": user_message("Hello")}, headers=ALICE)

    messages = client.get(f"/api/v1/conversations/{cid}/messages", headers=ALICE).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]
    assert messages[1]["parts"][-1] == {"type": "text", "text": "ok"}
    assert client.get(f"/api/v1/conversations/{cid}", headers=ALICE).json()["title"] == "Greeting Chat"

    usage = client.portal.call(repository.list_usage, cid)
    assert len(usage) == 1
    assert usage[0].user_id == "alice"
    assert usage[0].model_provider == "anthropic"


def test_chat_streams_emoji_split_across_tool_input_deltas(client, fake_provider):
    fake_provider.script(
        [
            ToolInputStart("call-1", "createMarkdownFile"),
            ToolInputDelta("call-1", '{"title": "Smile \\ud83d'),
            ToolInputDelta("call-1", '\\ude00", "content": "x"}'),
            ToolCall("call-1", "createMarkdownFile", {"title": "Smile \U0001F600", "content": "x"}),
            Finish("tool-calls"),
        ],
    )
    cid = new_conversation(client)

    resp = client.post("/api/v1/chat", json={"conversationId": cid, "message": user_message("Hello")}, headers=ALICE)

    assert resp.status_code == 200
    assert resp.text.endswith("data: [DONE]\n\n")
    views = [c["data"] for c in decode_stream([resp.text]) if c["type"] == "data-markdown"]
    assert [v["status"] for v in views] == ["starting", "in_progress", "in_progress", "completed"]
    assert views[1]["content"] == {"title": "Smile "}
    assert views[2]["content"] == {"title": "Smile \U0001F600", "content": "x"}


def test_chat_accepts_legacy_id_field(client, fake_provider):
    cid = new_conversation(client)
    resp = client.post("/api/v1/chat", json={"id": cid, "message": user_message("Hello")}, headers=ALICE)
    assert resp.status_code == 200


def test_chat_rejections(client, fake_provider):
    cid = new_conversation(client)

    missing = client.post("/api/v1/chat", json={"conversationId": "nope", "message": user_message("x")}, headers=ALICE)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Conversation not found"}

    empty = client.post(
        "/api/v1/chat",
        json={"conversationId": cid, "message": {"id": "u", "role": "user", "parts": []}},
        headers=ALICE,
    )
    assert empty.status_code == 400

    malformed = client.post("/api/v1/chat", json={"conversationId": cid}, headers=ALICE)
    assert malformed.status_code == 400
    assert "message" in malformed.json()["error"]

    other = client.post(
        "/api/v1/chat", json={"conversationId": cid, "message": user_message("x")}, headers={"x-guest-id": "bob"}
    )
    assert other.status_code == 403

    assert fake_provider.requests == []


def test_chat_rate_limit(client, fake_provider, monkeypatch):
    monkeypatch.setenv("CHAT_RATE_LIMIT", "2")
    get_settings.cache_clear()
    cid = new_conversation(client)

    statuses = [
        client.post(
            "/api/v1/chat", json={"conversationId": cid, "message": user_message("x", f"user-{i}")}, headers=ALICE
        ).status_code
        for i in range(3)
    ]

    assert statuses == [200, 200, 429]
