from __future__ import annotations
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from lume.schemas.parts import Part, dump_parts


Role = Literal["user", "assistant", "system", "tool"]

# Ids minted by the server carry this prefix; client ids must not.
SERVER_MESSAGE_ID_PREFIX = "msg-"


class UIMessage(BaseModel):
    id: str = Field(..., min_length=1)
    role: Role
    parts: List[Part] = Field(default_factory=list)

    def dumped_parts(self) -> List[dict]:
        return dump_parts(self.parts)


class ChatRequest(BaseModel):
    # The web client historically sent the conversation id as "id"
    conversationId: str = Field(..., min_length=1, validation_alias=AliasChoices("conversationId", "id"))
    message: UIMessage
    modelId: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class StoredMessage(BaseModel):
    id: str
    role: Role
    parts: List[dict]
    createdAt: datetime


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    description: str = ""
    context_length: int = 128000
    supports_thinking: bool = False
