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
    stream_timeout,
)
from lume.providers.catalog import models_for_provider
from lume.schemas.chat import ModelInfo

logger = logging.getLogger(__name__)

API_URL = "https://api.openai.com/v1/chat/completions"

_FINISH_REASONS = {"tool_calls": "tool-calls", "length": "length"}


def _is_reasoning_model(model: str) -> bool:
    return model.startswith("o1") or model.startswith("o3")


def to_openai_messages(messages: List[ModelMessage], model: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    system_role = "developer" if _is_reasoning_model(model) else "system"
    for m in messages:
        if m.role == "system":
            text = "\n\n".join(b.text for b in m.content if isinstance(b, TextBlock))
            if text.strip():
                out.append({"role": system_role, "content": text})
        elif m.role == "user":
            content: List[Dict[str, Any]] = []
            for b in m.content:
                if isinstance(b, TextBlock) and b.text.strip():
                    content.append({"type": "text", "text": b.text})
                elif isinstance(b, FileBlock):
                    if b.media_type.startswith("image/"):
                        content.append({"type": "image_url", "image_url": {"url": b.url}})
                    else:
                        content.append({"type": "text", "text": file_note(b)})
            if content:
                if all(c["type"] == "text" for c in content):
                    out.append({"role": "user", "content": "\n".join(c["text"] for c in content)})
                else:
                    out.append({"role": "user", "content": content})
        elif m.role == "assistant":
            text = "".join(b.text for b in m.content if isinstance(b, TextBlock))
            calls = [
                {"id": b.id, "type": "function", "function": {"name": b.name, "arguments": json.dumps(b.input or {})}}
                for b in m.content
                if isinstance(b, ToolCallBlock)
            ]
            if not text and not calls:
                continue
            msg: Dict[str, Any] = {"role": "assistant", "content": text or None}
            if calls:
                msg["tool_calls"] = calls
            out.append(msg)
        elif m.role == "tool":
            for b in m.content:
                if isinstance(b, ToolResultBlock):
                    out.append({"role": "tool", "tool_call_id": b.id, "content": json.dumps(b.output)})
    return out


class OpenAIProvider:
    id = "openai"

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
        messages = to_openai_messages(request.messages, request.model)
        if request.system:
            role = "developer" if _is_reasoning_model(request.model) else "system"
            messages.insert(0, {"role": role, "content": request.system})
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_completion_tokens": request.max_output_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        # Reasoning models only accept the default temperature
        if request.temperature is not None and not _is_reasoning_model(request.model):
            payload["temperature"] = request.temperature
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in request.tools
            ]
        return payload

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        settings = get_settings()
        api_key = settings.openai_api_key
        if not api_key:
            async for event in mock_stream("openai", request):
                yield event
            return

        payload = self.build_payload(request)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
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
                    logger.warning("openai attempt %d failed: %s; retrying", attempt, e)
                    await asyncio.sleep(backoff)
                    backoff *= 2
                    continue
                logger.error("openai stream failed model=%s: %s", request.model, e)
                yield ProviderError(friendly_error("OpenAI", e, attempt))
                yield Finish("error")
                return

    async def _parse(self, resp: httpx.Response) -> AsyncIterator[ProviderEvent]:
        # tool call index -> [id, name, accumulated arguments]
        calls: Dict[int, List[str]] = {}
        usage = Usage()
        finish_reason: Optional[str] = None
        async for data in iter_sse_data(resp):
            if data == "[DONE]":
                break
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                continue
            if obj.get("error"):
                yield ProviderError(f"[OpenAI] {obj['error'].get('message', 'unknown error')}")
                yield Finish("error")
                return
            u = obj.get("usage")
            if u:
                usage = Usage(
                    input_tokens=int(u.get("prompt_tokens") or 0),
                    output_tokens=int(u.get("completion_tokens") or 0),
                )
            choices = obj.get("choices") or []
            if not choices:
                continue
            ch0 = choices[0]
            delta = ch0.get("delta") or {}
            if delta.get("content"):
                yield TextDelta(delta["content"])
            for tc in delta.get("tool_calls") or []:
                index = tc.get("index", 0)
                fn = tc.get("function") or {}
                if index not in calls:
                    calls[index] = [tc.get("id") or f"call_{index}", fn.get("name") or "", ""]
                    yield ToolInputStart(id=calls[index][0], name=calls[index][1])
                if fn.get("arguments"):
                    calls[index][2] += fn["arguments"]
                    yield ToolInputDelta(id=calls[index][0], delta=fn["arguments"])
            if ch0.get("finish_reason"):
                finish_reason = ch0["finish_reason"]
        for index in sorted(calls):
            call_id, name, raw = calls[index]
            yield ToolCall(id=call_id, name=name, input=parse_tool_input(raw))
        yield usage
        yield Finish(_FINISH_REASONS.get(finish_reason or "", "stop"))
