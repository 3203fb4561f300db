"""UI message stream encoding.

Chunks follow the AI SDK UI message stream protocol (``text-delta``,
``tool-input-available``, ``data-*`` and so on), framed as SSE ``data:``
lines and terminated by ``data: [DONE]``. ``MessageBuilder`` folds the same
chunks back into message parts, which is what gets persisted once the turn
completes, so the stored message is exactly what the client rendered.
"""
from __future__ import annotations
import json
from typing import Any, Dict, List, Optional

DONE = "data: [DONE]\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "x-vercel-ai-ui-message-stream": "v1",
    "x-accel-buffering": "no",
}


def sse(chunk: Dict[str, Any]) -> str:
    return "data: " + json.dumps(chunk) + "\n\n"


class MessageBuilder:
    def __init__(self) -> None:
        self.parts: List[Dict[str, Any]] = []
        self._open: Dict[str, Dict[str, Any]] = {}  # text/reasoning part id -> part
        self._tools: Dict[str, Dict[str, Any]] = {}  # toolCallId -> part

    def apply(self, chunk: Dict[str, Any]) -> None:
        kind = chunk.get("type", "")
        if kind == "start-step":
            self.parts.append({"type": "step-start"})
        elif kind in ("text-start", "reasoning-start"):
            part: Dict[str, Any] = {"type": kind.split("-")[0], "text": ""}
            self._open[chunk["id"]] = part
            self.parts.append(part)
        elif kind in ("text-delta", "reasoning-delta"):
            part = self._open.get(chunk["id"])
            if part is not None:
                part["text"] += chunk.get("delta", "")
                if chunk.get("providerMetadata"):
                    part["providerMetadata"] = chunk["providerMetadata"]
        elif kind in ("text-end", "reasoning-end"):
            part = self._open.pop(chunk["id"], None)
            if part is not None and chunk.get("providerMetadata"):
                part["providerMetadata"] = chunk["providerMetadata"]
        elif kind == "tool-input-start":
            part = {
                "type": f"tool-{chunk['toolName']}",
                "toolCallId": chunk["toolCallId"],
                "state": "input-streaming",
            }
            self._tools[chunk["toolCallId"]] = part
            self.parts.append(part)
        elif kind == "tool-input-available":
            part = self._tools.get(chunk["toolCallId"])
            if part is None:
                part = {"type": f"tool-{chunk['toolName']}", "toolCallId": chunk["toolCallId"]}
                self._tools[chunk["toolCallId"]] = part
                self.parts.append(part)
            part["state"] = "input-available"
            part["input"] = chunk.get("input")
        elif kind == "tool-output-available":
            part = self._tools.get(chunk["toolCallId"])
            if part is not None:
                part["state"] = "output-available"
                part["output"] = chunk.get("output")
        elif kind == "tool-output-error":
            part = self._tools.get(chunk["toolCallId"])
            if part is not None:
                part["state"] = "output-error"
                part["errorText"] = chunk.get("errorText", "")
        elif kind == "source-url":
            source = {"type": "source-url", "sourceId": chunk["sourceId"], "url": chunk["url"]}
            if chunk.get("title"):
                source["title"] = chunk["title"]
            self.parts.append(source)
        elif kind.startswith("data-") and not chunk.get("transient"):
            self._apply_data(chunk)

    def _apply_data(self, chunk: Dict[str, Any]) -> None:
        # Data parts sharing type and id are updates of one part
        data_id = chunk.get("id")
        if data_id is not None:
            for part in self.parts:
                if part["type"] == chunk["type"] and part.get("id") == data_id:
                    part["data"] = chunk.get("data")
                    return
        part = {"type": chunk["type"], "data": chunk.get("data")}
        if data_id is not None:
            part["id"] = data_id
        self.parts.append(part)

    def content_parts(self) -> List[Dict[str, Any]]:
        """Parts worth persisting: drops empty text and step markers of empty steps."""
        kept = []
        for part in self.parts:
            if part["type"] in ("text", "reasoning") and not part["text"] and not part.get("providerMetadata"):
                continue
            kept.append(part)
        while kept and kept[-1]["type"] == "step-start":
            kept.pop()
        return kept


class UIStreamWriter:
    """Collects chunks for the response and mirrors them into a MessageBuilder."""

    def __init__(self) -> None:
        self.builder = MessageBuilder()
        self._pending: List[Dict[str, Any]] = []

    def write(self, chunk: Dict[str, Any]) -> None:
        self.builder.apply(chunk)
        self._pending.append(chunk)

    def drain(self) -> List[str]:
        out = [sse(c) for c in self._pending]
        self._pending.clear()
        return out


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one ``data:`` line; None for blanks, comments and ``[DONE]``."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    return json.loads(payload)
