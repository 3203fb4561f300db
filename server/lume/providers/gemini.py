from __future__ import annotations
import asyncio
import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List

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
    mock_stream,
    split_data_url,
)
from lume.providers.catalog import models_for_provider
from lume.schemas.chat import ModelInfo

logger = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# Subset of JSON schema accepted by functionDeclarations.parameters
_SCHEMA_KEYS = {
    "type", "format", "description", "nullable", "enum", "properties", "required",
    "items", "minItems", "maxItems", "minimum", "maximum",
}


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a (ref-free) JSON schema to what the Gemini API accepts."""
    variants = schema.get("anyOf")
    if variants:
        non_null = [v for v in variants if v.get("type") != "null"]
        base = to_gemini_schema(non_null[0]) if non_null else {"type": "string"}
        if len(non_null) < len(variants):
            base["nullable"] = True
        if schema.get("description"):
            base["description"] = schema["description"]
        return base
    if "const" in schema:
        return {"type": "string", "enum": [schema["const"]]}
    out: Dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _SCHEMA_KEYS:
            continue
        if key == "properties":
            out[key] = {name: to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            out[key] = to_gemini_schema(value)
        else:
            out[key] = value
    if out.get("type") == "object" and not out.get("properties"):
        # Empty objects are rejected; a tool with no arguments sends no schema
        return {}
    return out


def _file_part(block: FileBlock) -> Dict[str, Any]:
    inline = split_data_url(block.url)
    if inline:
        return {"inline_data": {"mime_type": inline[0], "data": inline[1]}}
    if block.url.startswith("gs://") or block.url.startswith("https://generativelanguage"):
        return {"file_data": {"mime_type": block.media_type, "file_uri": block.url}}
    return {"text": file_note(block)}


def to_gemini_contents(messages: List[ModelMessage]) -> tuple[List[Dict[str, Any]], List[str]]:
    contents: List[Dict[str, Any]] = []
    system_parts: List[str] = []
    for m in messages:
        if m.role == "system":
            system_parts.extend(b.text for b in m.content if isinstance(b, TextBlock))
            continue
        parts: List[Dict[str, Any]] = []
        for b in m.content:
            if isinstance(b, TextBlock) and b.text.strip():
                parts.append({"text": b.text})
            elif isinstance(b, FileBlock):
                parts.append(_file_part(b))
            elif isinstance(b, ToolCallBlock):
                parts.append({"functionCall": {"name": b.name, "args": b.input or {}}})
            elif isinstance(b, ToolResultBlock):
                response = b.output if isinstance(b.output, dict) else {"result": b.output}
                parts.append({"functionResponse": {"name": b.name, "response": response}})
        if not parts:
            continue
        # Gemini roles: "user" and "model"; tool results travel as user turns
        role = "model" if m.role == "assistant" else "user"
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})
    return contents, system_parts


class GeminiProvider:
    id = "google"

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
        contents, system_parts = to_gemini_contents(request.messages)
        if request.system:
            system_parts.insert(0, request.system)
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": request.temperature if request.temperature is not None else 0.7,
                "maxOutputTokens": request.max_output_tokens,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if request.tools:
            declarations = []
            for t in request.tools:
                decl: Dict[str, Any] = {"name": t.name, "description": t.description}
                params = to_gemini_schema(t.parameters)
                if params:
                    decl["parameters"] = params
                declarations.append(decl)
            payload["tools"] = [{"functionDeclarations": declarations}]
        return payload

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        settings = get_settings()
        api_key = settings.google_api_key or settings.gemini_api_key
        if not api_key:
            async for event in mock_stream("gemini", request):
                yield event
            return

        # Non-streaming endpoint (more reliable across clients); the response
        # is replayed as events so callers cannot tell the difference.
        url = f"{BASE_URL}/models/{request.model}:generateContent"
        payload = self.build_payload(request)
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        backoff = INITIAL_BACKOFF
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                timeout = httpx.Timeout(connect=10.0, read=60.0, write=30.0, pool=10.0)
                async with httpx.AsyncClient(timeout=timeout, trust_env=True) as client:
                    resp = await client.post(url, headers=headers, json=payload)
                    resp.raise_for_status()
                    obj = resp.json()
                break
            except httpx.HTTPError as e:
                if attempt < MAX_ATTEMPTS and is_retryable(e):
                    logger.warning("gemini attempt %d failed: %s; retrying", attempt, e)
                    await asyncio.sleep(backoff)
                    backoff *= 2
                    continue
                logger.error("gemini request failed model=%s: %s", request.model, e)
                yield ProviderError(friendly_error("Gemini", e, attempt))
                yield Finish("error")
                return

        for event in self._events(obj):
            yield event

    def _events(self, obj: Dict[str, Any]) -> List[ProviderEvent]:
        events: List[ProviderEvent] = []
        candidates = obj.get("candidates") or []
        if not candidates:
            reason = (obj.get("promptFeedback") or {}).get("blockReason")
            if reason:
                events.append(ProviderError(f"[Gemini] Prompt blocked: {reason}"))
                events.append(Finish("error"))
                return events
        called_tool = False
        finish = "stop"
        if candidates:
            for p in (candidates[0].get("content") or {}).get("parts") or []:
                if p.get("functionCall"):
                    fc = p["functionCall"]
                    call_id = f"call_{uuid.uuid4().hex[:12]}"
                    args = fc.get("args") or {}
                    events.append(ToolInputStart(id=call_id, name=fc["name"]))
                    events.append(ToolInputDelta(id=call_id, delta=json.dumps(args)))
                    events.append(ToolCall(id=call_id, name=fc["name"], input=args))
                    called_tool = True
                elif p.get("text"):
                    events.append(ReasoningDelta(p["text"]) if p.get("thought") else TextDelta(p["text"]))
            if candidates[0].get("finishReason") == "MAX_TOKENS":
                finish = "length"
        meta = obj.get("usageMetadata") or {}
        events.append(Usage(
            input_tokens=int(meta.get("promptTokenCount") or 0),
            output_tokens=int(meta.get("candidatesTokenCount") or 0),
        ))
        events.append(Finish("tool-calls" if called_tool else finish))
        return events
