"""Structural editor for slides outline artifacts.

Edits are local until ``save()``. Every structural change renumbers slides
1..N across chapters and recomputes ``outline.slidesCount``; a chapter whose
last slide is deleted disappears. Slides touched by an edit are marked dirty;
the marker follows the slide object, so reordering keeps it.
"""
from __future__ import annotations
import copy
import logging
from typing import Any, Dict, List, Optional

from lume.client.api import LumeClient
from lume.errors import InvalidInput
from lume.schemas.artifacts import MAX_SLIDES

logger = logging.getLogger(__name__)

SLIDE_FIELDS = ("slideTitle", "slideContent", "slideType")


def _move(items: List[Any], src: int, dst: int) -> None:
    if not (0 <= src < len(items)) or not (0 <= dst < len(items)):
        raise IndexError(f"cannot move {src} -> {dst} in a list of {len(items)}")
    items.insert(dst, items.pop(src))


class OutlineEditor:
    def __init__(self, client: LumeClient, artifact: Dict[str, Any]) -> None:
        if artifact.get("type", "slidesOutline") != "slidesOutline":
            raise InvalidInput(f"Not a slides outline: {artifact.get('type')}")
        self.client = client
        self.artifact_id: str = artifact["id"]
        self.version: str = artifact["version"]
        self.content: Dict[str, Any] = copy.deepcopy(artifact["content"])
        # id(slide) -> slide; holding the object keeps its id from being reused
        self._dirty: Dict[int, Dict[str, Any]] = {}
        self.modified = False

    @classmethod
    async def open(cls, client: LumeClient, artifact_id: str) -> "OutlineEditor":
        return cls(client, await client.get_artifact(artifact_id))

    # Views

    @property
    def chapters(self) -> List[Dict[str, Any]]:
        return self.content["chapters"]

    @property
    def slides_count(self) -> int:
        return self.content["outline"]["slidesCount"]

    def slides(self) -> List[Dict[str, Any]]:
        return [s for c in self.chapters for s in c["slides"]]

    def slide_numbers(self) -> List[int]:
        return [s["slideNumber"] for s in self.slides()]

    def is_dirty(self, chapter_idx: int, slide_idx: int) -> bool:
        return id(self.chapters[chapter_idx]["slides"][slide_idx]) in self._dirty

    @property
    def dirty_count(self) -> int:
        return len(self._dirty)

    # Edits

    def _mark(self, slide: Dict[str, Any]) -> None:
        self._dirty[id(slide)] = slide
        self.modified = True

    def _renumber(self) -> None:
        self.content["chapters"] = [c for c in self.chapters if c["slides"]]
        number = 0
        for chapter in self.chapters:
            for slide in chapter["slides"]:
                number += 1
                slide["slideNumber"] = number
        self.content["outline"]["slidesCount"] = number
        # Deleted slides no longer count as unsaved edits
        live = {id(s) for s in self.slides()}
        self._dirty = {k: v for k, v in self._dirty.items() if k in live}
        self.modified = True

    def update_title(self, text: str) -> None:
        self.content["outline"]["pptTitle"] = text
        self.modified = True

    def update_chapter_title(self, chapter_idx: int, text: str) -> None:
        chapter = self.chapters[chapter_idx]
        chapter["chapterTitle"] = text
        for slide in chapter["slides"]:
            self._mark(slide)

    def update_slide(self, chapter_idx: int, slide_idx: int, patch: Dict[str, Any]) -> None:
        slide = self.chapters[chapter_idx]["slides"][slide_idx]
        # slideNumber is owned by renumbering
        slide.update({k: v for k, v in patch.items() if k in SLIDE_FIELDS})
        self._mark(slide)

    def add_slide(self, chapter_idx: int, after_idx: Optional[int] = None) -> Dict[str, Any]:
        if self.slides_count >= MAX_SLIDES:
            raise InvalidInput(f"A presentation can have at most {MAX_SLIDES} slides")
        slides = self.chapters[chapter_idx]["slides"]
        slide = {"slideNumber": 0, "slideTitle": "New slide", "slideContent": "Add content", "slideType": "text"}
        position = len(slides) if after_idx is None else after_idx + 1
        slides.insert(position, slide)
        self._renumber()
        self._mark(slide)
        return slide

    def delete_slide(self, chapter_idx: int, slide_idx: int) -> None:
        if len(self.slides()) <= 1:
            raise InvalidInput("An outline needs at least one slide")
        del self.chapters[chapter_idx]["slides"][slide_idx]
        self._renumber()

    def reorder_chapters(self, src: int, dst: int) -> None:
        _move(self.chapters, src, dst)
        self._renumber()

    def reorder_slides(self, chapter_idx: int, src: int, dst: int) -> None:
        _move(self.chapters[chapter_idx]["slides"], src, dst)
        self._renumber()

    async def save(self) -> Dict[str, Any]:
        """Send the whole outline; adopt the server's normalized content and version.

        A concurrent save elsewhere surfaces as ``ApiError`` with status 409 and
        leaves local edits untouched.
        """
        saved = await self.client.save_artifact(self.artifact_id, self.content, expected_version=self.version)
        self.content = copy.deepcopy(saved["content"])
        self.version = saved["version"]
        self._dirty.clear()
        self.modified = False
        logger.info("saved outline %s as version %s", self.artifact_id, self.version)
        return saved
