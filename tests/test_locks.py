import asyncio

import pytest

from lume.core.locks import ConversationLocks


async def test_turns_on_one_conversation_run_one_at_a_time():
    locks = ConversationLocks()
    order = []

    async def turn(name):
        async with locks.hold("c1"):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(turn("a"), turn("b"))

    assert order == ["a-start", "a-end", "b-start", "b-end"]
    assert not locks.is_locked("c1")
    assert locks._locks == {}


async def test_other_conversations_are_not_blocked():
    locks = ConversationLocks()
    held = await locks.acquire("c1")

    other = await locks.acquire("c2", timeout=0.1)

    assert locks.is_locked("c1") and locks.is_locked("c2")
    held.release()
    other.release()


async def test_timeout_leaves_holder_untouched():
    locks = ConversationLocks()
    held = await locks.acquire("c1")

    with pytest.raises(asyncio.TimeoutError):
        await locks.acquire("c1", timeout=0.01)

    assert locks.is_locked("c1")
    held.release()
    assert not locks.is_locked("c1")
    assert locks._waiters == {}


async def test_release_is_idempotent():
    locks = ConversationLocks()
    first = await locks.acquire("c1")
    first.release()
    second = await locks.acquire("c1")

    first.release()

    assert locks.is_locked("c1")
    second.release()
    assert not locks.is_locked("c1")
