from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


class LockHandle:
    """A held conversation lock. ``release()`` may be called more than once."""

    def __init__(self, owner: "ConversationLocks", conversation_id: str) -> None:
        self._owner = owner
        self.conversation_id = conversation_id
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._owner._release(self.conversation_id)


class ConversationLocks:
    """One asyncio.Lock per conversation id, released entries are pruned.

    Serializes chat turns on the same conversation inside one process so that
    history load, user-message insert and assistant-message insert of two
    concurrent sends cannot interleave. A turn acquires in the request handler
    and releases when its stream finishes, so the hold spans the response.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    async def acquire(self, conversation_id: str, timeout: Optional[float] = None) -> LockHandle:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout)
        except BaseException:
            self._forget(conversation_id)
            raise
        return LockHandle(self, conversation_id)

    def _release(self, conversation_id: str) -> None:
        lock = self._locks.get(conversation_id)
        if lock is not None and lock.locked():
            lock.release()
        self._forget(conversation_id)

    def _forget(self, conversation_id: str) -> None:
        remaining = self._waiters.get(conversation_id, 0) - 1
        if remaining > 0:
            self._waiters[conversation_id] = remaining
        else:
            self._waiters.pop(conversation_id, None)
            self._locks.pop(conversation_id, None)

    @asynccontextmanager
    async def hold(self, conversation_id: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        handle = await self.acquire(conversation_id, timeout)
        try:
            yield
        finally:
            handle.release()

    def is_locked(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return bool(lock and lock.locked())


conversation_locks = ConversationLocks()
