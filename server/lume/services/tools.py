"""Tools offered to the model during a chat turn.

Web tools call Tavily's REST API. Artifact tools receive the whole artifact
as their input: while that input streams they relay a partial view to the
client as ``data-<type>`` chunks, and on execution they validate and persist
the artifact.
"""
from __future__ import annotations
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, Field

from lume.config import get_settings
from lume.db import repository
from lume.errors import LumeError
from lume.providers.base import ToolSpec
from lume.schemas.artifacts import MarkdownArtifact, SlidesOutlineArtifact, validate_artifact_content
from lume.services.partial_json import PartialJSONParser, partial_markdown, partial_slides_outline
from lume.services.ui_stream import UIStreamWriter

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com"
ARTIFACT_ID_PREFIX = "artifact-"


class ToolError(LumeError):
    """Tool failed; reported to the model and the client, the turn goes on."""


@dataclass
class ToolContext:
    conversation_id: str
    message_id: str
    user_id: Optional[str]
    writer: UIStreamWriter


def new_artifact_id() -> str:
    return ARTIFACT_ID_PREFIX + uuid.uuid4().hex[:16]


def inline_refs(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve ``#/$defs/...`` references; not every provider follows them."""
    defs = schema.get("$defs", {})

    def resolve(node: Any) -> Any:
        if isinstance(node, dict):
            ref = node.get("$ref")
            if isinstance(ref, str) and ref.startswith("#/$defs/"):
                return resolve(copy.deepcopy(defs[ref[len("#/$defs/"):]]))
            return {k: resolve(v) for k, v in node.items() if k != "$defs"}
        if isinstance(node, list):
            return [resolve(v) for v in node]
        return node

    return resolve(schema)


class Tool(ABC):
    name: str = ""
    description: str = ""
    input_model: Type[BaseModel]

    def spec(self) -> ToolSpec:
        return ToolSpec(self.name, self.description, inline_refs(self.input_model.model_json_schema()))

    def on_input_start(self, call_id: str, ctx: ToolContext) -> None:
        pass

    def on_input_delta(self, call_id: str, delta: str, ctx: ToolContext) -> None:
        pass

    @abstractmethod
    async def execute(self, call_id: str, args: Any, ctx: ToolContext) -> Any:
        ...


# Web tools

class WebSearchInput(BaseModel):
    query: str = Field(..., description="Search query")


class WebExtractInput(BaseModel):
    urls: List[str] = Field(..., description="Pages to extract content from")


async def _tavily(path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    api_key = get_settings().tavily_api_key
    if not api_key:
        raise ToolError("Web search is not configured")
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0), trust_env=True) as client:
            resp = await client.post(f"{TAVILY_URL}/{path}", headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPError as e:
        logger.warning("tavily %s failed: %s", path, e)
        raise ToolError(f"Web request failed: {e}") from e


class WebSearchTool(Tool):
    name = "webSearch"
    description = "Search the web for current information. Returns the top results with their content."
    input_model = WebSearchInput
    max_results = 5

    async def execute(self, call_id: str, args: Any, ctx: ToolContext) -> Any:
        query = WebSearchInput.model_validate(args).query
        data = await _tavily("search", {"query": query, "max_results": self.max_results, "search_depth": "basic"})
        results = [
            {"url": r.get("url", ""), "title": r.get("title", ""), "content": r.get("content", "")}
            for r in data.get("results") or []
        ]
        for r in results:
            if r["url"]:
                ctx.writer.write({
                    "type": "source-url",
                    "sourceId": f"src-{uuid.uuid4().hex[:12]}",
                    "url": r["url"],
                    "title": r["title"] or None,
                })
        return {"query": query, "results": results}


class WebExtractTool(Tool):
    name = "webExtract"
    description = "Extract the readable content of one or more web pages."
    input_model = WebExtractInput

    async def execute(self, call_id: str, args: Any, ctx: ToolContext) -> Any:
        urls = WebExtractInput.model_validate(args).urls
        data = await _tavily("extract", {"urls": urls, "extract_depth": "basic"})
        return {
            "results": [
                {"url": r.get("url", ""), "content": r.get("raw_content", "")}
                for r in data.get("results") or []
            ],
            "failedResults": data.get("failed_results") or [],
        }


# Artifact tools

class ArtifactTool(Tool):
    artifact_type: str = ""
    partial_view: Callable[[Any], Any]

    def __init__(self) -> None:
        # toolCallId -> (artifact id, parser); one tool can be called several times per turn
        self._calls: Dict[str, tuple] = {}

    def _state(self, call_id: str) -> tuple:
        if call_id not in self._calls:
            self._calls[call_id] = (new_artifact_id(), PartialJSONParser(type(self).partial_view))
        return self._calls[call_id]

    def _emit(self, ctx: ToolContext, artifact_id: str, status: str, content: Any = None, error: Optional[str] = None) -> None:
        data: Dict[str, Any] = {"status": status, "content": content}
        if error:
            data["error"] = error
        ctx.writer.write({"type": f"data-{self.artifact_type}", "id": artifact_id, "data": data})

    def on_input_start(self, call_id: str, ctx: ToolContext) -> None:
        artifact_id, _ = self._state(call_id)
        self._emit(ctx, artifact_id, "starting")

    def on_input_delta(self, call_id: str, delta: str, ctx: ToolContext) -> None:
        artifact_id, parser = self._state(call_id)
        view = parser.feed(delta)
        if view:
            self._emit(ctx, artifact_id, "in_progress", view)

    async def execute(self, call_id: str, args: Any, ctx: ToolContext) -> Any:
        artifact_id, _ = self._state(call_id)
        try:
            content = validate_artifact_content(self.artifact_type, args)
            await repository.create_artifact(
                artifact_id, ctx.conversation_id, ctx.message_id, ctx.user_id, self.artifact_type, content
            )
        except LumeError as e:
            logger.warning("%s artifact %s rejected: %s", self.artifact_type, artifact_id, e.message)
            self._emit(ctx, artifact_id, "error", error=e.message)
            raise ToolError(e.message) from e
        self._emit(ctx, artifact_id, "completed", content)
        logger.info("created %s artifact %s for message %s", self.artifact_type, artifact_id, ctx.message_id)
        return {
            "artifactId": artifact_id,
            "type": self.artifact_type,
            "version": "1",
            "message": f"Created {self.artifact_type} artifact. Simply acknowledge the creation.",
        }


class SlidesOutlineTool(ArtifactTool):
    name = "createSlidesOutline"
    artifact_type = "slidesOutline"
    input_model = SlidesOutlineArtifact
    partial_view = staticmethod(partial_slides_outline)
    description = (
        "Create a presentation outline with chapters and slides (title, text, bullets, image, chart types). "
        "At most 10 slides and 10 chapters; slideNumber runs 1..N across all chapters and "
        "outline.slidesCount equals the number of slides. Use when the user asks for slides or a presentation."
    )


class MarkdownTool(ArtifactTool):
    name = "createMarkdownFile"
    artifact_type = "markdown"
    input_model = MarkdownArtifact
    partial_view = staticmethod(partial_markdown)
    description = (
        "Create a markdown document: documentation, articles, notes or guides. "
        "Give it a short title, well structured markdown content and an optional one-line description."
    )


def build_tools(settings: Dict[str, Any]) -> Dict[str, Tool]:
    """Tool set for one turn, gated by the conversation settings."""
    tools: List[Tool] = [SlidesOutlineTool(), MarkdownTool()]
    if settings.get("websearch"):
        tools = [WebSearchTool(), WebExtractTool()] + tools
    return {t.name: t for t in tools}
