"""
Shared pytest fixtures: isolated database, API client and a scripted provider.
"""
import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient

from lume.config import get_settings
from lume.core.ratelimit import reset_rate_limits
from lume.db import session as db_session
from lume.main import app
from lume.providers.base import Finish, ProviderRequest, TextDelta, Usage
from lume.providers.router import router
from lume.services.title import TITLE_PROMPT

_ENV_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
    "TAVILY_API_KEY",
    "AUTH_SECRET",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """No provider keys (mock streams) and fresh settings/rate limits per test."""
    for key in _ENV_KEYS:
        monkeypatch.setenv(key, "")
    get_settings.cache_clear()
    reset_rate_limits()
    yield
    get_settings.cache_clear()
    reset_rate_limits()


class ScriptedProvider:
    """Replays one predetermined event list per ``stream`` call.

    Title requests are answered separately so they never consume a step.
    """

    id = "anthropic"

    def __init__(self, steps: Optional[Iterable[List[Any]]] = None, title: str = "Greeting Chat") -> None:
        self.steps: List[List[Any]] = [list(s) for s in (steps or [])]
        self.title = title
        self.requests: List[ProviderRequest] = []
        self.title_requests: List[ProviderRequest] = []

    def script(self, *steps: List[Any]) -> "ScriptedProvider":
        self.steps.extend(list(s) for s in steps)
        return self

    async def list_models(self):
        return []

    async def stream(self, request: ProviderRequest) -> AsyncIterator[Any]:
        if request.system == TITLE_PROMPT:
            self.title_requests.append(request)
            if self.title:
                yield TextDelta(self.title)
            yield Usage(3, 2)
            yield Finish("stop")
            return
        self.requests.append(request)
        events = self.steps.pop(0) if self.steps else [TextDelta("ok"), Usage(1, 1), Finish("stop")]
        for event in events:
            if isinstance(event, Exception):
                raise event
            yield event


@pytest.fixture
def fake_provider(monkeypatch) -> ScriptedProvider:
    provider = ScriptedProvider()
    monkeypatch.setitem(router.providers, "anthropic", provider)
    return provider


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database for tests that talk to the repository directly."""
    engine = db_session.configure_engine(f"sqlite+aiosqlite:///{tmp_path / 'lume-test.db'}")
    await db_session.init_db()
    yield engine
    await db_session.dispose_engine()


@pytest.fixture
def client(tmp_path):
    """TestClient over a fresh database; tables are created by the startup hook."""
    db_session.configure_engine(f"sqlite+aiosqlite:///{tmp_path / 'lume-api.db'}")
    with TestClient(app) as test_client:
        yield test_client


def decode_stream(body: Iterable[str]) -> List[Dict[str, Any]]:
    """SSE text (or chunk strings) -> UI chunks, without the [DONE] marker."""
    chunks = []
    for block in body:
        for line in block.splitlines():
            if line.startswith("data:"):
                payload = line[len("data:"):].strip()
                if payload and payload != "[DONE]":
                    chunks.append(json.loads(payload))
    return chunks


def user_message(text: str, message_id: str = "user-1") -> Dict[str, Any]:
    return {"id": message_id, "role": "user", "parts": [{"type": "text", "text": text}]}


def outline_content(chapters: List[int]) -> Dict[str, Any]:
    """Slides outline with ``chapters[i]`` slides in chapter i, numbered 1..N."""
    number = 0
    built = []
    for ci, count in enumerate(chapters):
        slides = []
        for si in range(count):
            number += 1
            slides.append({
                "slideNumber": number,
                "slideTitle": f"Slide {ci + 1}.{si + 1}",
                "slideContent": f"Content {ci + 1}.{si + 1}",
                "slideType": "bullets",
            })
        built.append({"chapterTitle": f"Chapter {ci + 1}", "slides": slides})
    return {
        "outline": {"pptTitle": "Deck", "slidesCount": number, "overallRequirements": None},
        "chapters": built,
    }
