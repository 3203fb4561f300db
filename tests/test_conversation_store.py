import json

import httpx
import pytest

from lume.client.api import ApiError, LumeClient
from lume.client.conversations import ConversationItem, ConversationStore


def conversation(cid, title="New Chat", **settings):
    return {
        "id": cid,
        "title": title,
        "modelId": "gpt-4o",
        "settings": {"websearch": False, "extendedThinking": False, **settings},
        "messageCount": 0,
        "createdAt": "2025-01-01T00:00:00Z",
        "updatedAt": "2025-01-01T00:00:00Z",
        "lastMessageAt": "2025-01-01T00:00:00Z",
    }


class FakeServer:
    """Routes requests to canned responses and records what was sent."""

    def __init__(self):
        self.calls = []
        self.fail = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        key = (request.method, request.url.path)
        self.calls.append((request.method, request.url.path, body))
        if key in self.fail:
            return httpx.Response(500, json={"error": "database is locked"})
        if key == ("GET", "/api/v1/conversations"):
            return httpx.Response(200, json=[conversation("c1", "First"), conversation("c2", "Second")])
        if key == ("POST", "/api/v1/conversations"):
            return httpx.Response(200, json=conversation("c-new", **(body or {}).get("settings") or {}))
        if request.method == "PATCH":
            merged = conversation(request.url.path.rsplit("/", 1)[-1], title=body.get("title") or "First")
            merged["settings"]["websearch"] = bool(body.get("websearch"))
            return httpx.Response(200, json={"success": True, "conversation": merged})
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True, "deleted": 1})
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
async def store(server):
    client = LumeClient("http://lume.test", guest_id="alice", transport=httpx.MockTransport(server))
    store = ConversationStore(client)
    await store.refresh()
    yield store
    await client.aclose()


async def test_refresh_loads_items(store, server):
    assert [c.id for c in store.conversations] == ["c1", "c2"]
    assert isinstance(store.conversations[0], ConversationItem)
    assert store.get("c2").title == "Second"


async def test_delete_success(store, server):
    await store.delete("c1")
    assert [c.id for c in store.conversations] == ["c2"]
    assert server.calls[-1][:2] == ("DELETE", "/api/v1/conversations/c1")


async def test_delete_failure_restores_same_list_and_notifies(store, server):
    before = list(store.conversations)
    errors = []
    store.on_error(lambda action, err: errors.append((action, err)))
    server.fail.add(("DELETE", "/api/v1/conversations/c1"))

    with pytest.raises(ApiError) as exc_info:
        await store.delete("c1")

    assert exc_info.value.status == 500
    assert exc_info.value.message == "database is locked"
    assert len(store.conversations) == len(before)
    assert all(a is b for a, b in zip(store.conversations, before))
    assert [action for action, _ in errors] == ["delete"]


async def test_clear_all_failure_restores(store, server):
    before = list(store.conversations)
    server.fail.add(("DELETE", "/api/v1/conversations"))

    with pytest.raises(ApiError):
        await store.clear_all()

    assert store.conversations == before


async def test_create_swaps_placeholder_for_server_item(store, server):
    message = {"id": "u1", "role": "user", "parts": [{"type": "text", "text": "hi"}]}

    created = await store.create(settings={"websearch": True}, pending_message=message)

    assert created.id == "c-new"
    assert created.pendingMessage == message
    assert [c.id for c in store.conversations] == ["c-new", "c1", "c2"]
    assert not any(c.is_pending for c in store.conversations)
    assert server.calls[-1] == ("POST", "/api/v1/conversations", {"settings": {"websearch": True}})


async def test_create_failure_drops_placeholder(store, server):
    server.fail.add(("POST", "/api/v1/conversations"))
    with pytest.raises(ApiError):
        await store.create()
    assert [c.id for c in store.conversations] == ["c1", "c2"]


async def test_update_merges_settings_and_adopts_server_copy(store, server):
    store.conversations[0] = ConversationItem.from_api(conversation("c1", "First", extendedThinking=True))

    updated = await store.update("c1", websearch=True)

    assert server.calls[-1] == ("PATCH", "/api/v1/conversations/c1", {"websearch": True})
    assert updated.settings["websearch"] is True
    assert store.get("c1") is updated


async def test_update_failure_rolls_back(store, server):
    original = store.get("c1")
    server.fail.add(("PATCH", "/api/v1/conversations/c1"))

    with pytest.raises(ApiError):
        await store.update("c1", title="Renamed", settings={"extendedThinking": True})

    assert store.get("c1") is original
    assert original.title == "First"


async def test_optimistic_update_keeps_unrelated_settings():
    seen = []

    async def handler(request):
        seen.append(store.get("c9").settings)
        return httpx.Response(500, json={"error": "boom"})

    store = ConversationStore(LumeClient(transport=httpx.MockTransport(handler)))
    store.add(ConversationItem.from_api(conversation("c9", extendedThinking=True)))

    with pytest.raises(ApiError):
        await store.update("c9", websearch=True)

    assert seen == [{"websearch": True, "extendedThinking": True}]
    assert store.get("c9").settings == {"websearch": False, "extendedThinking": True}


async def test_data_title_chunk_updates_title(store):
    store.apply_chunk("c2", {"type": "data-title", "data": {"value": "Trip plan"}, "transient": True})
    store.apply_chunk("c2", {"type": "text-delta", "id": "t", "delta": "x"})
    store.apply_chunk("missing", {"type": "data-title", "data": {"value": "ignored"}})

    assert store.get("c2").title == "Trip plan"


async def test_network_error_is_status_zero():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = LumeClient(transport=httpx.MockTransport(boom))
    with pytest.raises(ApiError) as exc_info:
        await client.list_conversations()
    assert exc_info.value.status == 0
    await client.aclose()
