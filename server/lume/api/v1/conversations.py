from fastapi import APIRouter, Request
from typing import Any, Dict, List, Optional

from lume.config import get_settings
from lume.core.auth import ensure_owner, get_effective_owner
from lume.db import repository
from lume.db.models import Conversation
from lume.errors import InvalidInput, NotFound
from lume.providers.router import router as provider_router
from lume.schemas.chat import StoredMessage
from lume.schemas.conversations import (
    ConversationDetail,
    ConversationSummary,
    CreateConversationRequest,
    UpdateConversationRequest,
    merge_settings,
)

router = APIRouter()


def _detail(conv: Conversation) -> ConversationDetail:
    return ConversationDetail(
        id=conv.id,
        title=conv.title,
        modelId=conv.model_id,
        settings=merge_settings(conv.settings),
        createdAt=conv.created_at,
        updatedAt=conv.updated_at,
        lastMessageAt=conv.last_message_at,
    )


async def _load_owned(conversation_id: str, owner: Optional[str]) -> Conversation:
    conv = await repository.get_conversation(conversation_id)
    if conv is None:
        raise NotFound("Conversation not found")
    ensure_owner(conv.user_id, owner)
    return conv


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(http_request: Request) -> List[ConversationSummary]:
    """Caller's conversations, most recent activity first."""
    owner = get_effective_owner(http_request)
    rows = await repository.list_conversations(owner)
    return [
        ConversationSummary(
            id=conv.id,
            title=conv.title,
            messageCount=count,
            modelId=conv.model_id,
            settings=merge_settings(conv.settings),
            createdAt=conv.created_at,
            updatedAt=conv.updated_at,
            lastMessageAt=conv.last_message_at,
        )
        for conv, count in rows
    ]


@router.post("/conversations", response_model=ConversationDetail)
async def create_conversation(
    http_request: Request, body: Optional[CreateConversationRequest] = None
) -> ConversationDetail:
    body = body or CreateConversationRequest()
    model_id = body.modelId or get_settings().default_model_id
    provider_router.resolve_model(model_id)
    settings = merge_settings(None, body.settings.changes() if body.settings else None)
    conv = await repository.create_conversation(get_effective_owner(http_request), model_id, settings)
    return _detail(conv)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(conversation_id: str, http_request: Request) -> ConversationDetail:
    conv = await _load_owned(conversation_id, get_effective_owner(http_request))
    return _detail(conv)


@router.patch("/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: str, body: UpdateConversationRequest, http_request: Request
) -> Dict[str, Any]:
    """Partial update; settings are merged, never replaced."""
    conv = await _load_owned(conversation_id, get_effective_owner(http_request))

    title = None
    if body.title is not None:
        title = body.title.strip()
        if not title:
            raise InvalidInput("Title must not be empty")
    if body.modelId is not None:
        provider_router.resolve_model(body.modelId)

    patch: Dict[str, Any] = body.settings.changes() if body.settings else {}
    if body.websearch is not None:
        patch["websearch"] = body.websearch
    settings = merge_settings(conv.settings, patch) if patch else None

    updated = await repository.update_conversation(
        conversation_id, title=title, model_id=body.modelId, settings=settings
    )
    return {"success": True, "conversation": _detail(updated).model_dump(mode="json")}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, http_request: Request) -> Dict[str, Any]:
    """Delete a conversation with its messages, artifacts and usage rows."""
    await _load_owned(conversation_id, get_effective_owner(http_request))
    await repository.delete_conversation(conversation_id)
    return {"success": True, "deleted": 1}


@router.delete("/conversations")
async def delete_all_conversations(http_request: Request) -> Dict[str, Any]:
    deleted = await repository.delete_conversations_for(get_effective_owner(http_request))
    return {"success": True, "deleted": deleted}


@router.get("/conversations/{conversation_id}/messages", response_model=List[StoredMessage])
async def list_messages(conversation_id: str, http_request: Request) -> List[StoredMessage]:
    """Messages in replay order (oldest first)."""
    await _load_owned(conversation_id, get_effective_owner(http_request))
    rows = await repository.list_messages(conversation_id)
    return [StoredMessage(id=m.id, role=m.role, parts=m.parts, createdAt=m.created_at) for m in rows]
