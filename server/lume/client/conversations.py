"""Client-side conversation list with optimistic updates.

Every mutation snapshots the list, applies its effect right away, then awaits
the server. If the call fails the snapshot is put back (same order, same
objects), error listeners are notified and the error is re-raised. Items are
never mutated in place, so a snapshot always holds the pre-mutation state.
"""
from __future__ import annotations
import dataclasses
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from lume.client.api import ApiError, LumeClient
from lume.schemas.conversations import merge_settings

logger = logging.getLogger(__name__)

PENDING_PREFIX = "pending-"

ErrorListener = Callable[[str, Exception], None]


@dataclasses.dataclass(frozen=True)
class ConversationItem:
    id: str
    title: str = "New Chat"
    modelId: Optional[str] = None
    settings: Dict[str, Any] = dataclasses.field(default_factory=lambda: merge_settings(None))
    messageCount: int = 0
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
    lastMessageAt: Optional[str] = None
    # First message to send once the server has assigned an id
    pendingMessage: Optional[Dict[str, Any]] = None

    @property
    def is_pending(self) -> bool:
        return self.id.startswith(PENDING_PREFIX)

    @classmethod
    def from_api(cls, data: Dict[str, Any], **extra: Any) -> "ConversationItem":
        fields = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in fields}
        values["settings"] = merge_settings(data.get("settings"))
        values.update(extra)
        return cls(**values)


class ConversationStore:
    def __init__(self, client: LumeClient) -> None:
        self.client = client
        self.conversations: List[ConversationItem] = []
        self._listeners: List[ErrorListener] = []

    def on_error(self, listener: ErrorListener) -> None:
        """Register a callback ``(action, error)``, e.g. to show a toast."""
        self._listeners.append(listener)

    def get(self, conversation_id: str) -> Optional[ConversationItem]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def _index(self, conversation_id: str) -> int:
        for i, conv in enumerate(self.conversations):
            if conv.id == conversation_id:
                return i
        raise KeyError(conversation_id)

    async def _commit(self, action: str, snapshot: List[ConversationItem], call: Awaitable[Any]) -> Any:
        try:
            return await call
        except Exception as e:
            self.conversations = snapshot
            logger.warning("%s failed, local changes rolled back: %s", action, e)
            for listener in list(self._listeners):
                listener(action, e)
            raise

    async def refresh(self) -> List[ConversationItem]:
        try:
            data = await self.client.list_conversations()
        except ApiError as e:
            for listener in list(self._listeners):
                listener("refresh", e)
            raise
        self.conversations = [ConversationItem.from_api(d) for d in data]
        return self.conversations

    def add(self, conversation: ConversationItem) -> None:
        """Put a conversation at the top of the list (local only)."""
        self.conversations = [conversation] + [c for c in self.conversations if c.id != conversation.id]

    async def create(
        self,
        model_id: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        pending_message: Optional[Dict[str, Any]] = None,
    ) -> ConversationItem:
        """Show a placeholder immediately, then swap in the server's conversation."""
        snapshot = list(self.conversations)
        now = datetime.now(timezone.utc).isoformat()
        placeholder = ConversationItem(
            id=PENDING_PREFIX + uuid.uuid4().hex,
            modelId=model_id,
            settings=merge_settings(None, settings),
            createdAt=now,
            updatedAt=now,
            lastMessageAt=now,
            pendingMessage=pending_message,
        )
        self.add(placeholder)
        data = await self._commit("create", snapshot, self.client.create_conversation(model_id, settings))
        created = ConversationItem.from_api(data, pendingMessage=pending_message)
        try:
            index = self._index(placeholder.id)
        except KeyError:
            # Placeholder was removed meanwhile (e.g. clear_all); keep the server row visible
            self.add(created)
        else:
            self.conversations = self.conversations[:index] + [created] + self.conversations[index + 1:]
        return created

    async def delete(self, conversation_id: str) -> None:
        snapshot = list(self.conversations)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        await self._commit("delete", snapshot, self.client.delete_conversation(conversation_id))

    async def clear_all(self) -> None:
        snapshot = list(self.conversations)
        self.conversations = []
        await self._commit("clear_all", snapshot, self.client.delete_all_conversations())

    async def update(self, conversation_id: str, **partial: Any) -> ConversationItem:
        """Apply ``title``/``modelId``/``settings``/``websearch`` locally, then on the server."""
        snapshot = list(self.conversations)
        index = self._index(conversation_id)
        current = self.conversations[index]
        changes: Dict[str, Any] = {}
        if partial.get("title") is not None:
            changes["title"] = partial["title"]
        if partial.get("modelId") is not None:
            changes["modelId"] = partial["modelId"]
        settings_patch = dict(partial.get("settings") or {})
        if partial.get("websearch") is not None:
            settings_patch["websearch"] = partial["websearch"]
        if settings_patch:
            changes["settings"] = merge_settings(current.settings, settings_patch)
        updated = dataclasses.replace(current, **changes)
        self.conversations = self.conversations[:index] + [updated] + self.conversations[index + 1:]

        result = await self._commit(
            "update", snapshot, self.client.update_conversation(conversation_id, **partial)
        )
        server = (result or {}).get("conversation")
        if server:
            confirmed = ConversationItem.from_api(server, messageCount=updated.messageCount)
            try:
                index = self._index(conversation_id)
            except KeyError:
                return confirmed
            self.conversations = self.conversations[:index] + [confirmed] + self.conversations[index + 1:]
            return confirmed
        return updated

    def apply_title(self, conversation_id: str, title: str) -> None:
        """Adopt a title the server already saved (transient ``data-title`` chunk)."""
        try:
            index = self._index(conversation_id)
        except KeyError:
            return
        titled = dataclasses.replace(self.conversations[index], title=title)
        self.conversations = self.conversations[:index] + [titled] + self.conversations[index + 1:]

    def apply_chunk(self, conversation_id: str, chunk: Dict[str, Any]) -> None:
        if chunk.get("type") == "data-title":
            value = (chunk.get("data") or {}).get("value")
            if value:
                self.apply_title(conversation_id, value)
