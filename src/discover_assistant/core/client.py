from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from discover_assistant.core.schemas import (
    ChatRequest,
    ChatResponse,
    ChatSession,
    InteractionType,
    Mode,
    SessionListResponse,
    SessionUpsert,
)


class AssistantClientError(RuntimeError):
    pass


class SessionNotFound(AssistantClientError):
    pass


class RetrievalError(AssistantClientError):
    pass


_Model = TypeVar("_Model", bound=BaseModel)


def _parse(model: type[_Model], resp: httpx.Response) -> _Model:
    try:
        return model.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        raise AssistantClientError(f"Malformed response from {resp.request.url.path}: {e}") from e


class AssistantClient:
    """Async client for the assistant backend (chat, sessions, telemetry).

    Pass an existing ``httpx.AsyncClient`` to share a connection pool or to
    route requests to an in-process ASGI app; otherwise one is created and
    owned (and closed) by this client.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 20.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "User-Agent": "discover-assistant/0.1",
                "Accept": "application/json",
            },
            timeout=timeout_s,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AssistantClient:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise AssistantClientError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 404:
            raise SessionNotFound(f"{url} not found")
        if resp.status_code >= 400:
            raise AssistantClientError(f"{method} {url} responded with {resp.status_code}")
        return resp

    async def chat(self, request: ChatRequest) -> ChatResponse:
        try:
            resp = await self._request(
                "POST", "/api/ai/chat", json=request.model_dump(mode="json")
            )
        except AssistantClientError as e:
            raise RetrievalError(str(e)) from e

        try:
            return ChatResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RetrievalError(f"Malformed chat response: {e}") from e

    async def upsert_session(self, snapshot: SessionUpsert) -> ChatSession:
        resp = await self._request(
            "POST", "/api/ai/chat/sessions", json=snapshot.model_dump(mode="json")
        )
        return _parse(ChatSession, resp)

    async def get_session(self, session_id: str) -> ChatSession:
        resp = await self._request("GET", f"/api/ai/chat/sessions/{session_id}")
        return _parse(ChatSession, resp)

    async def list_sessions(self, mode: Mode | None = None) -> list[ChatSession]:
        params = {"mode": mode} if mode else None
        resp = await self._request("GET", "/api/ai/chat/sessions", params=params)
        return _parse(SessionListResponse, resp).sessions

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/api/ai/chat/sessions/{session_id}")

    async def track_interaction(
        self, session_id: str, interaction_type: InteractionType
    ) -> None:
        await self._request(
            "POST",
            "/api/ai/interactions",
            json={"session_id": session_id, "interaction_type": interaction_type},
        )
