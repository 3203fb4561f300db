"""Async HTTP client for the Lume API."""
from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from lume.services.ui_stream import parse_sse_line

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class ApiError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


class LumeClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        guest_id: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 120.0,
    ) -> None:
        headers: Dict[str, str] = {}
        if guest_id:
            headers["x-guest-id"] = guest_id
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + API_PREFIX,
            headers=headers,
            transport=transport,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "LumeClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(0, str(e) or "Network error") from e
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, _error_message(resp))
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # Conversations

    async def list_conversations(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/conversations")

    async def create_conversation(
        self, model_id: Optional[str] = None, settings: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if model_id:
            body["modelId"] = model_id
        if settings:
            body["settings"] = settings
        return await self._request("POST", "/conversations", json=body)

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/conversations/{conversation_id}")

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Dict[str, Any]:
        return await self._request("PATCH", f"/conversations/{conversation_id}", json=fields)

    async def delete_conversation(self, conversation_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/conversations/{conversation_id}")

    async def delete_all_conversations(self) -> Dict[str, Any]:
        return await self._request("DELETE", "/conversations")

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/conversations/{conversation_id}/messages")

    # Artifacts

    async def get_artifact(self, artifact_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/artifacts/{artifact_id}")

    async def list_artifacts(self, conversation_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/artifacts/conversation/{conversation_id}")

    async def save_artifact(
        self, artifact_id: str, content: Dict[str, Any], expected_version: Optional[str] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"content": content}
        if expected_version is not None:
            body["expectedVersion"] = expected_version
        return await self._request("PATCH", f"/artifacts/{artifact_id}", json=body)

    async def delete_artifact(self, artifact_id: str) -> None:
        await self._request("DELETE", f"/artifacts/{artifact_id}")

    async def list_models(self) -> Dict[str, Any]:
        return await self._request("GET", "/models")

    # Chat

    async def stream_chat(
        self, conversation_id: str, message: Dict[str, Any], model_id: Optional[str] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """POST a user message and yield the decoded UI stream chunks."""
        body: Dict[str, Any] = {"conversationId": conversation_id, "message": message}
        if model_id:
            body["modelId"] = model_id
        async with self._http.stream("POST", "/chat", json=body) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise ApiError(resp.status_code, _error_message(resp))
            async for line in resp.aiter_lines():
                chunk = parse_sse_line(line)
                if chunk is not None:
                    yield chunk
