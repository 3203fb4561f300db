"""Provider gateway contract.

A provider turns a ``ProviderRequest`` (flat model messages, system prompt,
tools, sampling parameters) into an async stream of ``ProviderEvent`` values.
Vendor wire formats stay inside the provider modules; everything above this
layer only sees the events defined here.
"""
from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

import httpx

from lume.schemas.chat import ModelInfo


# Flat message representation sent to providers

@dataclass
class TextBlock:
    text: str


@dataclass
class ReasoningBlock:
    text: str
    signature: Optional[str] = None


@dataclass
class FileBlock:
    media_type: str
    url: str
    filename: Optional[str] = None


@dataclass
class ToolCallBlock:
    id: str
    name: str
    input: Any


@dataclass
class ToolResultBlock:
    id: str
    name: str
    output: Any
    is_error: bool = False


ContentBlock = Union[TextBlock, ReasoningBlock, FileBlock, ToolCallBlock, ToolResultBlock]


@dataclass
class ModelMessage:
    role: str  # "system" | "user" | "assistant" | "tool"
    content: List[ContentBlock]


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class ProviderRequest:
    model: str
    messages: List[ModelMessage]
    system: Optional[str] = None
    tools: List[ToolSpec] = field(default_factory=list)
    temperature: Optional[float] = 0.7
    max_output_tokens: int = 4000
    thinking_budget: Optional[int] = None


# Events yielded by providers

@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str
    signature: Optional[str] = None


@dataclass
class ToolInputStart:
    id: str
    name: str


@dataclass
class ToolInputDelta:
    id: str
    delta: str


@dataclass
class ToolCall:
    id: str
    name: str
    input: Any


@dataclass
class SourceUrl:
    url: str
    title: Optional[str] = None


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Finish:
    reason: str = "stop"  # "stop" | "tool-calls" | "length" | "error"


@dataclass
class ProviderError:
    message: str


ProviderEvent = Union[
    TextDelta, ReasoningDelta, ToolInputStart, ToolInputDelta, ToolCall, SourceUrl, Usage, Finish, ProviderError
]


class ChatProvider(Protocol):
    id: str

    async def list_models(self) -> List[ModelInfo]:
        ...

    def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        """Yield events until (and including) a ``Finish``."""
        ...


# Shared plumbing

MAX_ATTEMPTS = 3
INITIAL_BACKOFF = 0.8


def stream_timeout() -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=120.0, write=30.0, pool=10.0)


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


def friendly_error(label: str, exc: Exception, attempts: int) -> str:
    """Map an HTTP failure to a message worth showing in the chat."""
    status = None
    body = None
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        try:
            body = exc.response.text
        except httpx.ResponseNotRead:
            body = None
    if status == 429:
        return f"[{label}] Too many requests. You have hit the rate limit. Please wait a moment and try again."
    if status in (401, 403):
        return f"[{label}] Authentication/permission issue. Check your API key and model access."
    if status == 400:
        return f"[{label}] Bad request. Please verify the model id and payload parameters."
    message = f"[{label.lower()}] request failed after {attempts} attempts: {exc}"
    if body:
        message += f"\nProvider response: {body}"
    return message


async def raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        # Read the body so error mapping can include it after the stream closes
        await resp.aread()
        resp.raise_for_status()


async def iter_sse_data(resp: httpx.Response) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line of an SSE response."""
    async for line in resp.aiter_lines():
        if not line or not line.startswith("data:"):
            continue
        yield line[len("data:"):].strip()


def parse_tool_input(raw: str) -> Any:
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}


def split_data_url(url: str) -> Optional[tuple]:
    """``data:<mime>;base64,<payload>`` -> ``(mime, payload)``; None for other urls."""
    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, payload = url[len("data:"):].split(";base64,", 1)
    return header, payload


def file_note(block: FileBlock) -> str:
    return f"[Attached file: {block.filename or block.url} ({block.media_type})]"


def last_user_text(request: ProviderRequest) -> str:
    for message in reversed(request.messages):
        if message.role != "user":
            continue
        texts = [b.text for b in message.content if isinstance(b, TextBlock)]
        if texts:
            return " ".join(texts)
    return ""


async def mock_stream(label: str, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
    """Deterministic stand-in used when a provider has no API key configured."""
    words = f"[{label}-mock] You said: '{last_user_text(request)}'".split()
    for i, word in enumerate(words):
        yield TextDelta(word + (" " if i < len(words) - 1 else ""))
        await asyncio.sleep(0.02)
    yield Usage(input_tokens=0, output_tokens=len(words))
    yield Finish("stop")


@dataclass
class Completion:
    text: str
    usage: Usage
    error: Optional[str] = None


async def complete(provider: ChatProvider, request: ProviderRequest) -> Completion:
    """Drain a stream into text; used for small auxiliary calls like titles."""
    chunks: List[str] = []
    usage = Usage()
    error = None
    async for event in provider.stream(request):
        if isinstance(event, TextDelta):
            chunks.append(event.text)
        elif isinstance(event, Usage):
            usage = event
        elif isinstance(event, ProviderError):
            error = event.message
    return Completion(text="".join(chunks), usage=usage, error=error)
