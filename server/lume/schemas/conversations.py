from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from pydantic import AliasChoices, BaseModel, Field


class ConversationSettings(BaseModel):
    """Per-conversation toggles stored in the settings JSON column."""

    websearch: bool = False
    extendedThinking: bool = False


class ConversationSettingsPatch(BaseModel):
    websearch: Optional[bool] = None
    extendedThinking: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def merge_settings(
    stored: Optional[Mapping[str, Any]],
    patch: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Overlay ``patch`` on ``stored`` on top of the defaults.

    Fields absent from the patch keep their stored value, so a partial update
    never resets an unrelated toggle.
    """
    merged = ConversationSettings().model_dump()
    for source in (stored or {}, patch or {}):
        merged.update({k: v for k, v in source.items() if v is not None})
    return ConversationSettings.model_validate(merged).model_dump()


class CreateConversationRequest(BaseModel):
    modelId: Optional[str] = None
    settings: Optional[ConversationSettingsPatch] = None


class UpdateConversationRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    modelId: Optional[str] = None
    settings: Optional[ConversationSettingsPatch] = None
    # Legacy top-level toggle, folded into settings.websearch
    websearch: Optional[bool] = Field(default=None, validation_alias=AliasChoices("websearch", "webSearch"))


class ConversationSummary(BaseModel):
    id: str
    title: str
    messageCount: int
    modelId: str
    settings: ConversationSettings
    createdAt: datetime
    updatedAt: datetime
    lastMessageAt: datetime


class ConversationDetail(BaseModel):
    id: str
    title: str
    modelId: str
    settings: ConversationSettings
    createdAt: datetime
    updatedAt: datetime
    lastMessageAt: datetime
