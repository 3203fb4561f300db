"""Persistence gateway: CRUD over conversations, messages, artifacts and usage.

Each function opens its own session (commit on success, rollback on error),
so callers never hold a transaction across a provider stream.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlmodel import select

from lume.db.models import Artifact, Conversation, Message, ModelUsage, utcnow
from lume.db.session import get_session
from lume.errors import InvalidInput, NotFound, VersionConflict


def _owner_clause(column: Any, user_id: Optional[str]) -> Any:
    return column.is_(None) if user_id is None else column == user_id


# Conversations

async def create_conversation(
    user_id: Optional[str],
    model_id: str,
    settings: Dict[str, Any],
    title: str = "New Chat",
) -> Conversation:
    async with get_session() as session:
        conv = Conversation(user_id=user_id, model_id=model_id, settings=settings, title=title)
        session.add(conv)
        await session.flush()
        await session.refresh(conv)
        return conv


async def get_conversation(conversation_id: str) -> Optional[Conversation]:
    async with get_session() as session:
        return await session.get(Conversation, conversation_id)


async def list_conversations(user_id: Optional[str]) -> List[Tuple[Conversation, int]]:
    """Caller's conversations with message counts, most recent activity first."""
    async with get_session() as session:
        counts = (
            select(Message.conversation_id, func.count(Message.id).label("n"))
            .group_by(Message.conversation_id)
            .subquery()
        )
        stmt = (
            select(Conversation, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.conversation_id == Conversation.id)
            .where(_owner_clause(Conversation.user_id, user_id))
            .order_by(Conversation.last_message_at.desc(), Conversation.updated_at.desc())
        )
        result = await session.exec(stmt)
        return [(conv, int(n)) for conv, n in result.all()]


async def update_conversation(
    conversation_id: str,
    *,
    title: Optional[str] = None,
    model_id: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> Conversation:
    async with get_session() as session:
        conv = await session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        if title is not None:
            conv.title = title
        if model_id is not None:
            conv.model_id = model_id
        if settings is not None:
            conv.settings = settings
        conv.updated_at = utcnow()
        session.add(conv)
        await session.flush()
        await session.refresh(conv)
        return conv


async def set_title(conversation_id: str, title: str) -> None:
    async with get_session() as session:
        conv = await session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        conv.title = title
        session.add(conv)


async def _delete_children(session: Any, conversation_ids: Sequence[str]) -> None:
    for model in (Message, Artifact, ModelUsage):
        await session.execute(sa_delete(model).where(model.conversation_id.in_(conversation_ids)))


async def delete_conversation(conversation_id: str) -> None:
    async with get_session() as session:
        conv = await session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        await _delete_children(session, [conversation_id])
        await session.delete(conv)


async def delete_conversations_for(user_id: Optional[str]) -> int:
    async with get_session() as session:
        result = await session.exec(
            select(Conversation.id).where(_owner_clause(Conversation.user_id, user_id))
        )
        ids = list(result.all())
        if not ids:
            return 0
        await _delete_children(session, ids)
        await session.execute(sa_delete(Conversation).where(Conversation.id.in_(ids)))
        return len(ids)


# Messages

async def list_messages(conversation_id: str) -> List[Message]:
    async with get_session() as session:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.seq, Message.created_at)
        )
        result = await session.exec(stmt)
        return list(result.all())


async def count_messages(conversation_id: str) -> int:
    async with get_session() as session:
        result = await session.exec(
            select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
        )
        return int(result.one())


async def append_messages(
    conversation_id: str,
    messages: Iterable[Tuple[str, str, List[Dict[str, Any]]]],
) -> List[str]:
    """Append ``(id, role, parts)`` rows after the conversation's last message.

    Ids already stored in this conversation are skipped, so a retried request
    does not insert the same message twice. An id stored under another
    conversation is rejected with InvalidInput. Touches ``updated_at`` and
    ``last_message_at``. Returns the ids actually inserted.
    """
    rows = list(messages)
    async with get_session() as session:
        conv = await session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        ids = [mid for mid, _, _ in rows]
        existing = set()
        if ids:
            result = await session.exec(
                select(Message.id, Message.conversation_id).where(Message.id.in_(ids))
            )
            for mid, owner_id in result.all():
                if owner_id != conversation_id:
                    raise InvalidInput(f"Message id {mid} belongs to another conversation")
                existing.add(mid)
        result = await session.exec(
            select(func.max(Message.seq)).where(Message.conversation_id == conversation_id)
        )
        seq = result.one() or 0
        inserted: List[str] = []
        now = utcnow()
        for mid, role, parts in rows:
            if mid in existing or mid in inserted:
                continue
            seq += 1
            session.add(Message(id=mid, conversation_id=conversation_id, role=role, parts=parts, seq=seq, created_at=now))
            inserted.append(mid)
        conv.updated_at = now
        conv.last_message_at = now
        session.add(conv)
        return inserted


# Artifacts

async def create_artifact(
    artifact_id: str,
    conversation_id: str,
    message_id: str,
    user_id: Optional[str],
    artifact_type: str,
    content: Dict[str, Any],
) -> Artifact:
    async with get_session() as session:
        artifact = Artifact(
            id=artifact_id,
            conversation_id=conversation_id,
            message_id=message_id,
            user_id=user_id,
            type=artifact_type,
            content=content,
            version="1",
        )
        session.add(artifact)
        await session.flush()
        await session.refresh(artifact)
        return artifact


async def get_artifact(artifact_id: str) -> Optional[Artifact]:
    async with get_session() as session:
        return await session.get(Artifact, artifact_id)


async def list_artifacts(conversation_id: str, user_id: Optional[str]) -> List[Artifact]:
    async with get_session() as session:
        stmt = select(Artifact).where(Artifact.conversation_id == conversation_id)
        if user_id is not None:
            stmt = stmt.where(Artifact.user_id == user_id)
        result = await session.exec(stmt.order_by(Artifact.created_at.desc()))
        return list(result.all())


def next_version(version: str) -> str:
    try:
        current = int(version)
    except (TypeError, ValueError):
        current = 1
    return str(current + 1)


async def save_artifact_content(
    artifact_id: str,
    content: Dict[str, Any],
    expected_version: Optional[str] = None,
) -> Artifact:
    """Replace content and bump the version.

    With ``expected_version`` the write is a compare-and-swap: a stale
    version raises ``VersionConflict`` and nothing is written.
    """
    async with get_session() as session:
        artifact = await session.get(Artifact, artifact_id)
        if artifact is None:
            raise NotFound("Artifact not found")
        if expected_version is not None and artifact.version != expected_version:
            raise VersionConflict(
                f"Artifact was modified (stored version {artifact.version}, expected {expected_version})"
            )
        artifact.content = content
        artifact.version = next_version(artifact.version)
        artifact.updated_at = utcnow()
        session.add(artifact)
        await session.flush()
        await session.refresh(artifact)
        return artifact


async def delete_artifact(artifact_id: str) -> None:
    async with get_session() as session:
        artifact = await session.get(Artifact, artifact_id)
        if artifact is None:
            raise NotFound("Artifact not found")
        await session.delete(artifact)


# Usage

async def record_usage(
    conversation_id: str,
    user_id: Optional[str],
    model_id: str,
    model_provider: str,
    input_tokens: int,
    output_tokens: int,
    estimated_cost: float,
    response_time_ms: Optional[int],
    success: bool = True,
    error_message: Optional[str] = None,
) -> ModelUsage:
    async with get_session() as session:
        usage = ModelUsage(
            conversation_id=conversation_id,
            user_id=user_id,
            model_id=model_id,
            model_provider=model_provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost=estimated_cost,
            response_time_ms=response_time_ms,
            success=success,
            error_message=error_message,
        )
        session.add(usage)
        await session.flush()
        await session.refresh(usage)
        return usage


async def list_usage(conversation_id: str) -> List[ModelUsage]:
    async with get_session() as session:
        result = await session.exec(
            select(ModelUsage).where(ModelUsage.conversation_id == conversation_id).order_by(ModelUsage.created_at)
        )
        return list(result.all())
