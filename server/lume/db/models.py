from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Aware UTC datetimes in Python, naive UTC in the column.

    SQLite keeps no offset, so values are normalised on the way in and
    tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def timestamp(index: bool = False) -> Any:
    return Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime(), nullable=False, index=index),
    )


def new_uuid() -> str:
    return str(uuid.uuid4())


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: str = Field(default_factory=new_uuid, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    title: str = "New Chat"
    model_id: str
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = timestamp(index=True)
    updated_at: datetime = timestamp()
    last_message_at: datetime = timestamp(index=True)


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: str = Field(primary_key=True)
    conversation_id: str = Field(index=True, foreign_key="conversations.id")
    role: str
    parts: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # Position within the conversation; replay order is (seq, created_at)
    seq: int = Field(default=0, index=True)
    created_at: datetime = timestamp(index=True)


class Artifact(SQLModel, table=True):
    __tablename__ = "artifacts"

    id: str = Field(primary_key=True)
    conversation_id: str = Field(index=True, foreign_key="conversations.id")
    message_id: str = Field(index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    type: str = Field(index=True)
    content: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: str = "1"
    created_at: datetime = timestamp(index=True)
    updated_at: datetime = timestamp()


class ModelUsage(SQLModel, table=True):
    __tablename__ = "model_usage"

    id: str = Field(default_factory=new_uuid, primary_key=True)
    conversation_id: str = Field(index=True, foreign_key="conversations.id")
    user_id: Optional[str] = Field(default=None, index=True)
    model_id: str
    model_provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    response_time_ms: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    created_at: datetime = timestamp(index=True)
