from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from discover_assistant.core.client import AssistantClientError, SessionNotFound
from discover_assistant.core.schemas import (
    ChatRequest,
    ChatResponse,
    ChatSession,
    ContentRef,
    InteractionType,
    Mode,
    SessionUpsert,
)


def make_results(prefix: str, n: int) -> list[ContentRef]:
    return [
        ContentRef(id=i + 1, media_type="movie", title=f"{prefix} {i + 1}") for i in range(n)
    ]


class FakeBackend:
    """In-memory stand-in for AssistantClient.

    ``replies`` is a queue of ChatResponse/Exception values consumed by
    ``chat``; when empty a canned reply for the request's mode is returned.
    Setting ``gate`` holds every chat call until the event is set.
    """

    def __init__(self) -> None:
        self.replies: list[ChatResponse | Exception] = []
        self.gate: asyncio.Event | None = None
        self.chat_requests: list[ChatRequest] = []
        self.upserts: list[SessionUpsert] = []
        self.sessions: dict[str, ChatSession] = {}
        self.deleted: list[str] = []
        self.interactions: list[tuple[str, InteractionType]] = []
        self.fail_upsert = False
        self.fail_delete = False
        self.fail_track = False

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.chat_requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        if request.mode == "recommendation":
            return ChatResponse(
                intent="RECOMMENDATION",
                message="Found titles matching your preferences.",
                results=make_results(request.message, 20),
            )
        return ChatResponse(intent="INFORMATION", message=f"About {request.message}.")

    async def upsert_session(self, snapshot: SessionUpsert) -> ChatSession:
        self.upserts.append(snapshot)
        if self.fail_upsert:
            raise AssistantClientError("POST /api/ai/chat/sessions responded with 500")
        self.sessions[snapshot.session_id] = self._stored(snapshot)
        return self.sessions[snapshot.session_id]

    async def get_session(self, session_id: str) -> ChatSession:
        if session_id not in self.sessions:
            raise SessionNotFound(session_id)
        return self.sessions[session_id]

    async def list_sessions(self, mode: Mode | None = None) -> list[ChatSession]:
        found = [s for s in self.sessions.values() if mode is None or s.mode == mode]
        return sorted(found, key=lambda s: s.updated_at, reverse=True)

    async def delete_session(self, session_id: str) -> None:
        if self.fail_delete:
            raise AssistantClientError("DELETE responded with 500")
        if session_id not in self.sessions:
            raise SessionNotFound(session_id)
        del self.sessions[session_id]
        self.deleted.append(session_id)

    async def track_interaction(self, session_id: str, interaction_type: InteractionType) -> None:
        if self.fail_track:
            raise AssistantClientError("POST /api/ai/interactions responded with 503")
        self.interactions.append((session_id, interaction_type))

    @staticmethod
    def _stored(snapshot: SessionUpsert, *, updated_at: datetime | None = None) -> ChatSession:
        now = updated_at or datetime.now(timezone.utc)
        data = snapshot.model_dump()
        data["title"] = data["title"] or "New Chat"
        return ChatSession(**data, created_at=now, updated_at=now)

    def seed(self, snapshot: SessionUpsert, *, updated_at: datetime | None = None) -> ChatSession:
        self.sessions[snapshot.session_id] = self._stored(snapshot, updated_at=updated_at)
        return self.sessions[snapshot.session_id]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("DISCOVER_ASSISTANT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("DISCOVER_ASSISTANT_TMDB_API_KEY", "test-key")
    for name in (
        "DISCOVER_ASSISTANT_CHAT_DB",
        "DISCOVER_ASSISTANT_CORS_ORIGINS",
        "DISCOVER_ASSISTANT_RL_GLOBAL",
        "DISCOVER_ASSISTANT_RL_CHAT",
        "DISCOVER_ASSISTANT_TMDB_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
