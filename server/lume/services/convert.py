"""UI messages (parts) -> flat provider messages."""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping

from lume.providers.base import (
    ContentBlock,
    FileBlock,
    ModelMessage,
    ReasoningBlock,
    TextBlock,
    ToolCallBlock,
    ToolResultBlock,
)

# Parts that only exist for rendering
UI_ONLY_PARTS = {"step-start", "source-url"}


def _signature(part: Mapping[str, Any]) -> Any:
    meta = part.get("providerMetadata") or {}
    return (meta.get("anthropic") or {}).get("signature")


def _split_steps(parts: List[Mapping[str, Any]]) -> List[List[Mapping[str, Any]]]:
    steps: List[List[Mapping[str, Any]]] = [[]]
    for part in parts:
        if part.get("type") == "step-start":
            if steps[-1]:
                steps.append([])
            continue
        steps[-1].append(part)
    return [s for s in steps if s]


def _assistant_step(parts: List[Mapping[str, Any]]) -> List[ModelMessage]:
    content: List[ContentBlock] = []
    results: List[ContentBlock] = []
    for part in parts:
        kind = part.get("type", "")
        if kind == "text" and part.get("text"):
            content.append(TextBlock(part["text"]))
        elif kind == "reasoning" and (part.get("text") or _signature(part)):
            content.append(ReasoningBlock(part.get("text", ""), _signature(part)))
        elif kind.startswith("tool-"):
            name = kind[len("tool-"):]
            state = part.get("state")
            if state == "output-available":
                content.append(ToolCallBlock(part["toolCallId"], name, part.get("input")))
                results.append(ToolResultBlock(part["toolCallId"], name, part.get("output")))
            elif state == "output-error":
                content.append(ToolCallBlock(part["toolCallId"], name, part.get("input")))
                results.append(ToolResultBlock(
                    part["toolCallId"], name, {"error": part.get("errorText") or "Tool failed"}, is_error=True
                ))
            # Calls that never finished cannot be replayed without a result
    out: List[ModelMessage] = []
    if content:
        out.append(ModelMessage("assistant", content))
    if results:
        out.append(ModelMessage("tool", results))
    return out


def to_model_messages(messages: Iterable[Mapping[str, Any]]) -> List[ModelMessage]:
    """Convert ``{role, parts}`` messages in order.

    Assistant messages are split at ``step-start`` markers so every step's tool
    calls are immediately followed by their results.
    """
    out: List[ModelMessage] = []
    for message in messages:
        role = message.get("role")
        parts: List[Dict[str, Any]] = list(message.get("parts") or [])
        if role == "assistant":
            for step in _split_steps(parts):
                out.extend(_assistant_step(step))
            continue
        content: List[ContentBlock] = []
        for part in parts:
            kind = part.get("type", "")
            if kind == "text" and part.get("text"):
                content.append(TextBlock(part["text"]))
            elif kind == "file" and role == "user":
                content.append(FileBlock(part["mediaType"], part["url"], part.get("filename")))
        if content and role in ("user", "system"):
            out.append(ModelMessage(role, content))
    return out
