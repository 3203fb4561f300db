"""Message parts.

A message is an ordered list of parts. ``type`` is the discriminant; tool
parts are tagged ``tool-<toolName>`` and custom data parts ``data-<name>``, so
the union uses a callable discriminator that folds those families onto one
model each.
"""
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag
from typing_extensions import Annotated


ToolState = Literal["input-streaming", "input-available", "output-available", "output-error"]


class _PartBase(BaseModel):
    # Providers attach metadata (providerMetadata, callProviderMetadata, ...)
    # that has to survive a persist/replay round-trip untouched.
    model_config = ConfigDict(extra="allow")


class TextPart(_PartBase):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(_PartBase):
    type: Literal["reasoning"] = "reasoning"
    text: str


class FilePart(_PartBase):
    type: Literal["file"] = "file"
    mediaType: str
    url: str
    filename: Optional[str] = None


class SourceUrlPart(_PartBase):
    type: Literal["source-url"] = "source-url"
    sourceId: str
    url: str
    title: Optional[str] = None


class StepStartPart(_PartBase):
    type: Literal["step-start"] = "step-start"


class ToolPart(_PartBase):
    type: str = Field(..., pattern=r"^tool-.+")
    toolCallId: str
    state: ToolState
    input: Any = None
    output: Any = None
    errorText: Optional[str] = None

    @property
    def tool_name(self) -> str:
        return self.type[len("tool-"):]


class DataPart(_PartBase):
    type: str = Field(..., pattern=r"^data-.+")
    id: Optional[str] = None
    data: Any = None

    @property
    def data_name(self) -> str:
        return self.type[len("data-"):]


def part_tag(value: Any) -> Optional[str]:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if not isinstance(kind, str):
        return None
    if kind.startswith("tool-"):
        return "tool"
    if kind.startswith("data-"):
        return "data"
    return kind


Part = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[ReasoningPart, Tag("reasoning")],
        Annotated[FilePart, Tag("file")],
        Annotated[SourceUrlPart, Tag("source-url")],
        Annotated[StepStartPart, Tag("step-start")],
        Annotated[ToolPart, Tag("tool")],
        Annotated[DataPart, Tag("data")],
    ],
    Discriminator(part_tag),
]


def dump_parts(parts: List[Any]) -> List[Dict[str, Any]]:
    """Serialize parts for storage, omitting unset optionals."""
    return [p.model_dump(mode="json", exclude_none=True) for p in parts]
