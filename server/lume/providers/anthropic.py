from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from lume.config import get_settings
from lume.providers.base import (
    FileBlock,
    Finish,
    INITIAL_BACKOFF,
    MAX_ATTEMPTS,
    ModelMessage,
    ProviderError,
    ProviderEvent,
    ProviderRequest,
    ReasoningBlock,
    ReasoningDelta,
    TextBlock,
    TextDelta,
    ToolCall,
    ToolCallBlock,
    ToolInputDelta,
    ToolInputStart,
    ToolResultBlock,
    Usage,
    file_note,
    friendly_error,
    is_retryable,
    iter_sse_data,
    mock_stream,
    parse_tool_input,
    raise_for_status,
    split_data_url,
    stream_timeout,
)
from lume.providers.catalog import models_for_provider
from lume.schemas.chat import ModelInfo

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"

_STOP_REASONS = {"tool_use": "tool-calls", "max_tokens": "length"}


def _file_block(block: FileBlock) -> Dict[str, Any]:
    inline = split_data_url(block.url)
    if block.media_type.startswith("image/"):
        if inline:
            return {"type": "image", "source": {"type": "base64", "media_type": inline[0], "data": inline[1]}}
        return {"type": "image", "source": {"type": "url", "url": block.url}}
    if block.media_type == "application/pdf":
        if inline:
            return {"type": "document", "source": {"type": "base64", "media_type": inline[0], "data": inline[1]}}
        return {"type": "document", "source": {"type": "url", "url": block.url}}
    return {"type": "text", "text": file_note(block)}


def to_anthropic_messages(messages: List[ModelMessage]) -> tuple[List[Dict[str, Any]], List[str]]:
    """Split out system text and map the rest onto alternating user/assistant turns."""
    out: List[Dict[str, Any]] = []
    system_parts: List[str] = []
    for m in messages:
        if m.role == "system":
            system_parts.extend(b.text for b in m.content if isinstance(b, TextBlock) and b.text.strip())
            continue
        content: List[Dict[str, Any]] = []
        for b in m.content:
            if isinstance(b, TextBlock):
                if b.text.strip():
                    content.append({"type": "text", "text": b.text})
            elif isinstance(b, ReasoningBlock):
                # Thinking can only be replayed with the signature Anthropic issued for it
                if b.signature and m.role == "assistant":
                    content.append({"type": "thinking", "thinking": b.text, "signature": b.signature})
            elif isinstance(b, FileBlock):
                content.append(_file_block(b))
            elif isinstance(b, ToolCallBlock):
                content.append({"type": "tool_use", "id": b.id, "name": b.name, "input": b.input or {}})
            elif isinstance(b, ToolResultBlock):
                content.append({
                    "type": "tool_result",
                    "tool_use_id": b.id,
                    "content": json.dumps(b.output),
                    "is_error": b.is_error,
                })
        if not content:
            continue
        role = "assistant" if m.role == "assistant" else "user"
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(content)
        else:
            out.append({"role": role, "content": content})
    return out, system_parts


class AnthropicProvider:
    id = "anthropic"

    async def list_models(self) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=m.id,
                name=m.name,
                provider=self.id,
                description=m.description,
                context_length=m.context_length,
                supports_thinking=m.supports_thinking,
            )
            for m in models_for_provider(self.id)
        ]

    def build_payload(self, request: ProviderRequest) -> Dict[str, Any]:
        messages, system_parts = to_anthropic_messages(request.messages)
        if request.system:
            system_parts.insert(0, request.system)
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_output_tokens,
            "stream": True,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if request.tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in request.tools
            ]
        if request.thinking_budget:
            # Extended thinking rejects a custom temperature and needs room beyond the budget
            payload["thinking"] = {"type": "enabled", "budget_tokens": request.thinking_budget}
            payload["max_tokens"] = max(request.max_output_tokens, request.thinking_budget + 1024)
        elif request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        settings = get_settings()
        api_key = settings.anthropic_api_key
        if not api_key:
            async for event in mock_stream("anthropic", request):
                yield event
            return

        payload = self.build_payload(request)
        headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
            "accept": "text/event-stream",
        }

        backoff = INITIAL_BACKOFF
        for attempt in range(1, MAX_ATTEMPTS + 1):
            emitted = False
            try:
                async with httpx.AsyncClient(timeout=stream_timeout(), trust_env=True) as client:
                    async with client.stream("POST", API_URL, headers=headers, json=payload) as resp:
                        await raise_for_status(resp)
                        async for event in self._parse(resp):
                            emitted = True
                            yield event
                return
            except httpx.HTTPError as e:
                if not emitted and attempt < MAX_ATTEMPTS and is_retryable(e):
                    logger.warning("anthropic attempt %d failed: %s; retrying", attempt, e)
                    await asyncio.sleep(backoff)
                    backoff *= 2
                    continue
                logger.error("anthropic stream failed model=%s: %s", request.model, e)
                yield ProviderError(friendly_error("Anthropic", e, attempt))
                yield Finish("error")
                return

    async def _parse(self, resp: httpx.Response) -> AsyncIterator[ProviderEvent]:
        # content block index -> [tool id, tool name, accumulated json]
        tool_blocks: Dict[int, List[str]] = {}
        usage = Usage()
        stop_reason: Optional[str] = None
        async for data in iter_sse_data(resp):
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                continue
            etype = obj.get("type")
            if etype == "message_start":
                u = (obj.get("message") or {}).get("usage") or {}
                usage.input_tokens = int(u.get("input_tokens") or 0)
                usage.output_tokens = int(u.get("output_tokens") or 0)
            elif etype == "content_block_start":
                block = obj.get("content_block") or {}
                if block.get("type") == "tool_use":
                    tool_blocks[obj.get("index", 0)] = [block["id"], block["name"], ""]
                    yield ToolInputStart(id=block["id"], name=block["name"])
            elif etype == "content_block_delta":
                delta = obj.get("delta") or {}
                dtype = delta.get("type")
                if dtype == "text_delta" and delta.get("text"):
                    yield TextDelta(delta["text"])
                elif dtype == "thinking_delta" and delta.get("thinking"):
                    yield ReasoningDelta(delta["thinking"])
                elif dtype == "signature_delta":
                    yield ReasoningDelta("", signature=delta.get("signature"))
                elif dtype == "input_json_delta":
                    tool = tool_blocks.get(obj.get("index", 0))
                    if tool is not None and delta.get("partial_json"):
                        tool[2] += delta["partial_json"]
                        yield ToolInputDelta(id=tool[0], delta=delta["partial_json"])
            elif etype == "content_block_stop":
                tool = tool_blocks.pop(obj.get("index", 0), None)
                if tool is not None:
                    yield ToolCall(id=tool[0], name=tool[1], input=parse_tool_input(tool[2]))
            elif etype == "message_delta":
                u = obj.get("usage") or {}
                if u.get("output_tokens") is not None:
                    usage.output_tokens = int(u["output_tokens"])
                stop_reason = (obj.get("delta") or {}).get("stop_reason") or stop_reason
            elif etype == "error":
                message = (obj.get("error") or {}).get("message") or "unknown error"
                yield ProviderError(f"[Anthropic] {message}")
                yield Finish("error")
                return
            elif etype == "message_stop":
                break
        yield usage
        yield Finish(_STOP_REASONS.get(stop_reason or "", "stop"))
