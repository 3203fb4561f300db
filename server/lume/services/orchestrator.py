"""Chat turn orchestration.

``ChatOrchestrator.prepare`` does everything that can still fail with a
plain HTTP error: validation, model resolution, taking the conversation lock,
and persisting the user message. ``ChatTurn.stream`` then runs the agentic
loop against the provider and relays it as UI message stream SSE. From that
point on failures travel inside the stream, and the assistant message and
usage row are written best effort once the stream ends.
"""
from __future__ import annotations
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from lume.config import get_settings
from lume.core.auth import ensure_owner
from lume.core.locks import LockHandle, conversation_locks
from lume.db import repository
from lume.db.models import Conversation
from lume.errors import InvalidInput, LumeError, NotFound
from lume.providers.base import (
    ChatProvider,
    Finish,
    ModelMessage,
    ProviderError,
    ProviderRequest,
    ReasoningBlock,
    ReasoningDelta,
    SourceUrl,
    TextBlock,
    TextDelta,
    ToolCall,
    ToolCallBlock,
    ToolInputDelta,
    ToolInputStart,
    ToolResultBlock,
    Usage,
)
from lume.providers.catalog import ModelConfig, calculate_cost
from lume.providers.router import router
from lume.schemas.chat import SERVER_MESSAGE_ID_PREFIX, ChatRequest
from lume.schemas.conversations import merge_settings
from lume.services.convert import to_model_messages
from lume.services.title import generate_title
from lume.services.tools import Tool, ToolContext, build_tools
from lume.services.ui_stream import DONE, UIStreamWriter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Lume, a helpful assistant. Answer clearly and concisely using markdown where it helps. "
    "When the user asks for a presentation or slides, call createSlidesOutline. "
    "When the user asks for a document, article or notes, call createMarkdownFile. "
    "After a tool creates an artifact, briefly acknowledge it instead of repeating its content."
)

# Seconds to wait at the end of a turn for a title still being generated
TITLE_WAIT_SECONDS = 5.0

# Title jobs outlive the stream that started them
_background: Set["asyncio.Task[Any]"] = set()


def new_message_id() -> str:
    return SERVER_MESSAGE_ID_PREFIX + uuid.uuid4().hex[:16]


@dataclass
class _Step:
    """Relay state of one provider round trip."""

    text_id: Optional[str] = None
    reasoning_id: Optional[str] = None
    texts: List[str] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)
    signature: Optional[str] = None
    tool_names: Dict[str, str] = field(default_factory=dict)
    calls: List[ToolCall] = field(default_factory=list)
    finish: str = "stop"

    def assistant_message(self) -> Optional[ModelMessage]:
        content: List[Any] = []
        if self.reasoning or self.signature:
            content.append(ReasoningBlock("".join(self.reasoning), self.signature))
        if self.texts:
            content.append(TextBlock("".join(self.texts)))
        content.extend(ToolCallBlock(c.id, c.name, c.input) for c in self.calls)
        return ModelMessage("assistant", content) if content else None


class ChatTurn:
    def __init__(
        self,
        conversation: Conversation,
        model: ModelConfig,
        provider: ChatProvider,
        owner: Optional[str],
        history: List[Dict[str, Any]],
        user_text: str,
        is_first: bool,
        lock: LockHandle,
    ) -> None:
        self.conversation = conversation
        self.model = model
        self.provider = provider
        self.owner = owner
        self.history = history
        self.user_text = user_text
        self.is_first = is_first
        self.lock = lock
        self.assistant_id = new_message_id()
        self.settings = merge_settings(conversation.settings)
        self.writer = UIStreamWriter()
        self.input_tokens = 0
        self.output_tokens = 0
        self.error: Optional[str] = None
        self._part_counter = 0
        self._title_task: Optional["asyncio.Task[Optional[str]]"] = None
        self._title_sent = False
        self._stream_started = False
        # A response that never starts iterating would otherwise hold the lock forever
        self._release_guard = asyncio.get_running_loop().call_later(
            get_settings().request_timeout_seconds, self.release_if_unstarted
        )

    def release_if_unstarted(self) -> None:
        """Release the lock of a turn whose stream never ran.

        Once streaming starts, only the stream releases, after persisting.
        """
        if not self._stream_started:
            self._release_guard.cancel()
            self.lock.release()

    @property
    def conversation_id(self) -> str:
        return self.conversation.id

    def build_request(self, messages: List[ModelMessage], tools: Dict[str, Tool]) -> ProviderRequest:
        settings = get_settings()
        thinking = None
        if self.settings.get("extendedThinking") and self.model.supports_thinking:
            thinking = settings.thinking_budget_tokens
        return ProviderRequest(
            model=self.model.id,
            messages=messages,
            system=SYSTEM_PROMPT,
            tools=[t.spec() for t in tools.values()],
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            thinking_budget=thinking,
        )

    # Title

    def _start_title(self) -> None:
        self._title_task = asyncio.create_task(_title_job(self.conversation_id, self.user_text))
        _background.add(self._title_task)
        self._title_task.add_done_callback(_background.discard)

    def _echo_title(self) -> None:
        task = self._title_task
        if task is None or self._title_sent or not task.done() or task.cancelled():
            return
        self._title_sent = True
        title = task.result()
        if title:
            self.writer.write({"type": "data-title", "data": {"value": title}, "transient": True})

    async def _wait_for_title(self) -> None:
        if self._title_task is None or self._title_task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._title_task), TITLE_WAIT_SECONDS)
        except asyncio.TimeoutError:
            logger.info("title for %s still pending; it will be saved without an echo", self.conversation_id)

    # Relay

    def _next_id(self, kind: str) -> str:
        self._part_counter += 1
        return f"{kind}-{self._part_counter}"

    def _close_text(self, step: _Step) -> None:
        if step.text_id:
            self.writer.write({"type": "text-end", "id": step.text_id})
            step.text_id = None

    def _close_reasoning(self, step: _Step) -> None:
        if step.reasoning_id:
            chunk: Dict[str, Any] = {"type": "reasoning-end", "id": step.reasoning_id}
            if step.signature:
                chunk["providerMetadata"] = {"anthropic": {"signature": step.signature}}
            self.writer.write(chunk)
            step.reasoning_id = None

    def _relay(self, event: Any, step: _Step, tools: Dict[str, Tool], ctx: ToolContext) -> None:
        w = self.writer
        if isinstance(event, TextDelta):
            self._close_reasoning(step)
            if step.text_id is None:
                step.text_id = self._next_id("text")
                w.write({"type": "text-start", "id": step.text_id})
            w.write({"type": "text-delta", "id": step.text_id, "delta": event.text})
            step.texts.append(event.text)
        elif isinstance(event, ReasoningDelta):
            self._close_text(step)
            if step.reasoning_id is None:
                step.reasoning_id = self._next_id("reasoning")
                w.write({"type": "reasoning-start", "id": step.reasoning_id})
            if event.signature:
                step.signature = event.signature
            if event.text:
                w.write({"type": "reasoning-delta", "id": step.reasoning_id, "delta": event.text})
                step.reasoning.append(event.text)
        elif isinstance(event, ToolInputStart):
            self._close_text(step)
            self._close_reasoning(step)
            step.tool_names[event.id] = event.name
            w.write({"type": "tool-input-start", "toolCallId": event.id, "toolName": event.name})
            if event.name in tools:
                tools[event.name].on_input_start(event.id, ctx)
        elif isinstance(event, ToolInputDelta):
            w.write({"type": "tool-input-delta", "toolCallId": event.id, "inputTextDelta": event.delta})
            name = step.tool_names.get(event.id)
            if name in tools:
                tools[name].on_input_delta(event.id, event.delta, ctx)
        elif isinstance(event, ToolCall):
            self._close_text(step)
            self._close_reasoning(step)
            w.write({"type": "tool-input-available", "toolCallId": event.id, "toolName": event.name, "input": event.input})
            step.calls.append(event)
        elif isinstance(event, SourceUrl):
            w.write({
                "type": "source-url",
                "sourceId": f"src-{uuid.uuid4().hex[:12]}",
                "url": event.url,
                "title": event.title,
            })
        elif isinstance(event, Usage):
            self.input_tokens += event.input_tokens
            self.output_tokens += event.output_tokens
        elif isinstance(event, ProviderError):
            self.error = event.message
            w.write({"type": "error", "errorText": event.message})
        elif isinstance(event, Finish):
            step.finish = event.reason

    async def _run_tools(self, step: _Step, tools: Dict[str, Tool], ctx: ToolContext) -> ModelMessage:
        results = []
        for call in step.calls:
            tool = tools.get(call.name)
            try:
                if tool is None:
                    raise LumeError(f"Unknown tool: {call.name}")
                output = await tool.execute(call.id, call.input, ctx)
            except LumeError as e:
                self.writer.write({"type": "tool-output-error", "toolCallId": call.id, "errorText": e.message})
                results.append(ToolResultBlock(call.id, call.name, {"error": e.message}, is_error=True))
                continue
            except Exception as e:
                logger.exception("tool %s failed (conversation %s)", call.name, self.conversation_id)
                message = str(e) or "Tool execution failed"
                self.writer.write({"type": "tool-output-error", "toolCallId": call.id, "errorText": message})
                results.append(ToolResultBlock(call.id, call.name, {"error": message}, is_error=True))
                continue
            self.writer.write({"type": "tool-output-available", "toolCallId": call.id, "output": output})
            results.append(ToolResultBlock(call.id, call.name, output))
        return ModelMessage("tool", results)

    async def stream(self) -> AsyncIterator[str]:
        self._stream_started = True
        self._release_guard.cancel()
        settings = get_settings()
        started = time.monotonic()
        deadline = started + settings.request_timeout_seconds
        w = self.writer
        try:
            w.write({"type": "start", "messageId": self.assistant_id})
            if self.is_first:
                self._start_title()
            messages = to_model_messages(self.history)
            tools = build_tools(self.settings)
            ctx = ToolContext(self.conversation_id, self.assistant_id, self.owner, w)
            try:
                for _ in range(max(1, settings.max_tool_steps)):
                    step = _Step()
                    w.write({"type": "start-step"})
                    async for event in self.provider.stream(self.build_request(messages, tools)):
                        self._relay(event, step, tools, ctx)
                        self._echo_title()
                        for chunk in w.drain():
                            yield chunk
                        if time.monotonic() > deadline:
                            raise asyncio.TimeoutError()
                    self._close_text(step)
                    self._close_reasoning(step)
                    if step.calls and self.error is None:
                        assistant = step.assistant_message()
                        tool_message = await self._run_tools(step, tools, ctx)
                        messages = messages + [m for m in (assistant, tool_message) if m is not None]
                    w.write({"type": "finish-step"})
                    for chunk in w.drain():
                        yield chunk
                    if self.error is not None or not step.calls or step.finish == "length":
                        break
            except asyncio.TimeoutError:
                self.error = "The response took too long and was stopped."
                logger.warning("chat turn timed out (conversation %s)", self.conversation_id)
                w.write({"type": "error", "errorText": self.error})
            except Exception as e:
                logger.exception("chat stream failed (conversation %s)", self.conversation_id)
                self.error = str(e) or "Internal server error"
                w.write({"type": "error", "errorText": self.error})
            await self._wait_for_title()
            self._echo_title()
            w.write({"type": "finish"})
            for chunk in w.drain():
                yield chunk
            yield DONE
        finally:
            try:
                await asyncio.shield(self._persist(started))
            finally:
                self.lock.release()

    async def _persist(self, started: float) -> None:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        cost = calculate_cost(self.model.id, self.input_tokens, self.output_tokens)
        parts = self.writer.builder.content_parts()
        if parts:
            try:
                await repository.append_messages(self.conversation_id, [(self.assistant_id, "assistant", parts)])
            except Exception:
                logger.exception("failed to persist assistant message %s", self.assistant_id)
        try:
            await repository.record_usage(
                self.conversation_id,
                self.owner,
                self.model.id,
                self.model.provider,
                self.input_tokens,
                self.output_tokens,
                cost,
                elapsed_ms,
                success=self.error is None,
                error_message=self.error,
            )
        except Exception:
            logger.exception("failed to record usage for conversation %s", self.conversation_id)
        else:
            logger.info(
                "turn done conversation=%s model=%s tokens=%d/%d cost=%.5f elapsed_ms=%d success=%s",
                self.conversation_id,
                self.model.id,
                self.input_tokens,
                self.output_tokens,
                cost,
                elapsed_ms,
                self.error is None,
            )


async def _title_job(conversation_id: str, user_text: str) -> Optional[str]:
    title = await generate_title(user_text)
    if not title:
        return None
    try:
        await repository.set_title(conversation_id, title)
    except Exception:
        logger.exception("failed to save title for conversation %s", conversation_id)
        return None
    return title


def _text_of(parts: List[Dict[str, Any]]) -> str:
    return "\n".join(p.get("text", "") for p in parts if p.get("type") == "text").strip()


class ChatOrchestrator:
    async def prepare(self, request: ChatRequest, owner: Optional[str]) -> ChatTurn:
        settings = get_settings()
        message = request.message
        if not message.parts:
            raise InvalidInput("Message must have at least one part")
        if message.role != "user":
            raise InvalidInput("Only user messages can be sent")
        if message.id.startswith(SERVER_MESSAGE_ID_PREFIX):
            raise InvalidInput(f"Message ids must not start with '{SERVER_MESSAGE_ID_PREFIX}'")

        conv = await repository.get_conversation(request.conversationId)
        if conv is None:
            raise NotFound("Conversation not found")
        ensure_owner(conv.user_id, owner)

        model = router.resolve_model(request.modelId or conv.model_id or settings.default_model_id)
        provider = router.get_provider(model.id)

        try:
            lock = await conversation_locks.acquire(conv.id, timeout=settings.request_timeout_seconds)
        except asyncio.TimeoutError:
            raise LumeError("Conversation is busy, try again shortly", 409)
        try:
            stored = await repository.list_messages(conv.id)
            prior = stored
            parts = message.dumped_parts()
            resent = next((i for i, m in enumerate(stored) if m.id == message.id), None)
            if resent is None:
                await repository.append_messages(conv.id, [(message.id, "user", parts)])
            else:
                # Retry of a stored message: replay history as it stood when it was sent
                prior = stored[:resent]
                parts = stored[resent].parts
            if model.id != conv.model_id:
                conv = await repository.update_conversation(conv.id, model_id=model.id)
        except BaseException:
            lock.release()
            raise

        history = [{"role": m.role, "parts": m.parts} for m in prior]
        history.append({"role": "user", "parts": parts})
        logger.info(
            "chat turn conversation=%s model=%s history=%d", conv.id, model.id, len(history)
        )
        return ChatTurn(
            conversation=conv,
            model=model,
            provider=provider,
            owner=owner,
            history=history,
            user_text=_text_of(parts),
            is_first=not prior,
            lock=lock,
        )


orchestrator = ChatOrchestrator()
