"""Artifact payload schemas.

Artifacts are structured side-documents produced by tools: a slides outline
(chapters of slides, later rendered to a deck) or a markdown document. The
stored ``content`` column always holds one of the payloads below, validated
for the artifact's ``type``.
"""
from __future__ import annotations
import copy
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from lume.errors import InvalidInput


MAX_SLIDES = 10
MAX_CHAPTERS = 10

ArtifactType = Literal["slidesOutline", "markdown"]
SlideType = Literal["text", "title", "bullets", "image", "chart"]


class Slide(BaseModel):
    slideNumber: int = Field(..., ge=1)
    slideTitle: str = Field(..., min_length=1)
    slideContent: str = Field(..., min_length=1)
    slideType: SlideType


class Chapter(BaseModel):
    chapterTitle: str = Field(..., min_length=1)
    slides: List[Slide] = Field(..., min_length=1)


class PresentationOutline(BaseModel):
    pptTitle: str = Field(..., min_length=1)
    slidesCount: int = Field(..., ge=1, le=MAX_SLIDES)
    overallRequirements: Optional[str] = None


class SlidesOutlineArtifact(BaseModel):
    outline: PresentationOutline
    chapters: List[Chapter] = Field(..., min_length=1, max_length=MAX_CHAPTERS)

    @model_validator(mode="after")
    def _check_numbering(self) -> "SlidesOutlineArtifact":
        numbers = [s.slideNumber for c in self.chapters for s in c.slides]
        if len(numbers) > MAX_SLIDES:
            raise ValueError("Exceeded max slide count")
        if self.outline.slidesCount != len(numbers):
            raise ValueError("slidesCount must equal the number of slides")
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError("slideNumber must run 1..slidesCount across chapters")
        return self


class MarkdownArtifact(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    description: Optional[str] = None


ARTIFACT_SCHEMAS = {
    "slidesOutline": SlidesOutlineArtifact,
    "markdown": MarkdownArtifact,
}


def renumber_outline(content: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy with empty chapters dropped, slides numbered 1..N in
    reading order and ``outline.slidesCount`` set to N.

    Tolerates malformed shapes by leaving the offending pieces alone; full
    validation happens afterwards.
    """
    result = copy.deepcopy(content)
    chapters = result.get("chapters")
    if not isinstance(chapters, list):
        return result
    kept = []
    counter = 0
    for chapter in chapters:
        slides = chapter.get("slides") if isinstance(chapter, dict) else None
        if isinstance(slides, list) and not slides:
            continue
        if isinstance(slides, list):
            for slide in slides:
                if isinstance(slide, dict):
                    counter += 1
                    slide["slideNumber"] = counter
        kept.append(chapter)
    result["chapters"] = kept
    outline = result.get("outline")
    if isinstance(outline, dict):
        outline["slidesCount"] = counter
    return result


def validate_artifact_content(artifact_type: str, content: Any) -> Dict[str, Any]:
    """Validate ``content`` for ``artifact_type`` and return the normalized dict."""
    schema = ARTIFACT_SCHEMAS.get(artifact_type)
    if schema is None:
        raise InvalidInput(f"Unknown artifact type: {artifact_type}")
    if not isinstance(content, dict):
        raise InvalidInput(f"Invalid {artifact_type} content")
    if artifact_type == "slidesOutline":
        content = renumber_outline(content)
    try:
        model = schema.model_validate(content)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        detail = f"{where}: {first['msg']}" if where else first["msg"]
        raise InvalidInput(f"Invalid {artifact_type} content ({detail})") from e
    return model.model_dump(mode="json")


class ArtifactOut(BaseModel):
    id: str
    conversationId: str
    messageId: str
    userId: Optional[str] = None
    type: str
    content: Dict[str, Any]
    version: str
    createdAt: datetime
    updatedAt: datetime


class ArtifactPatch(BaseModel):
    content: Dict[str, Any]
    # When given, the save only applies if the stored version still matches
    expectedVersion: Optional[str] = None
