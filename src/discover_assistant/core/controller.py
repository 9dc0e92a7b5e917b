from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from pydantic import ValidationError

from discover_assistant.core.client import (
    AssistantClientError,
    RetrievalError,
    SessionNotFound,
)
from discover_assistant.core.ids import new_session_id
from discover_assistant.core.persistence import PersistenceChannel
from discover_assistant.core.reveal import RevealScheduler
from discover_assistant.core.schemas import (
    ChatRequest,
    ChatResponse,
    ChatSession,
    ContentRef,
    HistoryItem,
    InteractionType,
    Mode,
    SessionUpsert,
    Turn,
)
from discover_assistant.core.snapshot import build_snapshot, derive_title

logger = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, I encountered an error processing your request. Please try again."


class AssistantBackend(Protocol):
    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    async def upsert_session(self, snapshot: SessionUpsert) -> ChatSession: ...

    async def get_session(self, session_id: str) -> ChatSession: ...

    async def list_sessions(self, mode: Mode | None = None) -> list[ChatSession]: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def track_interaction(
        self, session_id: str, interaction_type: InteractionType
    ) -> None: ...


class ControllerState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting"
    REVEALING = "revealing"
    ERROR = "error"


@dataclass(frozen=True)
class ResultSet:
    """Displayed recommendation results plus the session that produced them."""

    session_id: str
    query: str
    items: tuple[ContentRef, ...]


class SessionController:
    """Drives one assistant conversation surface.

    Information mode accumulates turns in one session; every recommendation
    query is its own session with a freshly minted id. Persistence goes
    through a debounced :class:`PersistenceChannel`, and answers in
    information mode are shown through a :class:`RevealScheduler` before the
    assistant turn is appended.

    Any operation that replaces the conversation (mode switch, load, delete,
    new session) bumps ``_generation``; a chat response that comes back for an
    older generation is dropped.
    """

    def __init__(
        self,
        client: AssistantBackend,
        *,
        mode: Mode = "information",
        channel: PersistenceChannel | None = None,
        reveal: RevealScheduler | None = None,
        debounce_s: float = 1.0,
        tick_s: float = 0.005,
    ) -> None:
        self._client = client
        self._channel = channel or PersistenceChannel(client.upsert_session, delay_s=debounce_s)
        self._reveal = reveal or RevealScheduler(tick_s=tick_s)

        self._mode: Mode = mode
        self._session_id: str | None = None
        self._turns: list[Turn] = []
        self._result_set: ResultSet | None = None
        self._title: str | None = None
        self._state = ControllerState.IDLE
        self._generation = 0

        self.streaming_text: str | None = None
        self.last_error: Exception | None = None

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def transcript(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def result_set(self) -> ResultSet | None:
        return self._result_set

    @property
    def title(self) -> str | None:
        return self._title

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def channel(self) -> PersistenceChannel:
        return self._channel

    @property
    def reveal(self) -> RevealScheduler:
        return self._reveal

    def snapshot(self) -> SessionUpsert | None:
        if self._session_id is None or not self._turns:
            return None
        return build_snapshot(self._session_id, self._mode, self._turns, title=self._title)

    # -- submission ---------------------------------------------------------

    async def submit(self, text: str) -> None:
        message = text.strip()
        if not message:
            return
        if self._state is ControllerState.AWAITING:
            logger.debug("Ignoring submit while a request is in flight")
            return

        # A new exchange supersedes any running reveal; its partial text is dropped.
        self._reveal.cancel()
        self.streaming_text = None
        self._channel.flush()

        if self._mode == "recommendation":
            await self._submit_recommendation(message)
        else:
            await self._submit_information(message)

    async def _submit_recommendation(self, message: str) -> None:
        session_id = new_session_id()
        generation = self._generation
        self._state = ControllerState.AWAITING

        try:
            response = await self._client.chat(
                ChatRequest(message=message, session_id=session_id, mode="recommendation")
            )
            if response.results is None:
                raise RetrievalError("Chat response has no results")
        except (AssistantClientError, ValidationError) as e:
            if generation != self._generation:
                return
            # The previously displayed result set stays on screen.
            logger.warning("Recommendation request failed: %s", e)
            self.last_error = e
            self._state = ControllerState.ERROR
            return

        if generation != self._generation:
            logger.debug("Dropping stale recommendation response for %s", session_id)
            return

        # The minted id becomes current only once it has results to own.
        self._session_id = session_id
        items = tuple(response.results)
        self._result_set = ResultSet(session_id=session_id, query=message, items=items)
        self._title = derive_title(message)
        self._turns = [
            Turn(role="user", content=message),
            Turn(
                role="assistant",
                content=response.message,
                results=items,
                intent=response.intent,
                metadata=response.metadata,
            ),
        ]
        self.last_error = None
        self._state = ControllerState.IDLE
        self._schedule_save()

    async def _submit_information(self, message: str) -> None:
        if self._session_id is None:
            self._session_id = new_session_id()
            self._title = derive_title(message)

        history = [HistoryItem(role=t.role, content=t.content) for t in self._turns]
        self._turns.append(Turn(role="user", content=message))
        session_id = self._session_id
        generation = self._generation
        self._state = ControllerState.AWAITING

        try:
            response = await self._client.chat(
                ChatRequest(
                    message=message,
                    session_id=session_id,
                    conversation_history=history,
                    mode="information",
                )
            )
        except (AssistantClientError, ValidationError) as e:
            if generation != self._generation:
                return
            logger.warning("Information request failed: %s", e)
            self.last_error = e
            self._turns.append(Turn(role="assistant", content=ERROR_REPLY))
            self._state = ControllerState.ERROR
            self._schedule_save()
            return

        if generation != self._generation:
            logger.debug("Dropping stale information response for %s", session_id)
            return

        self.last_error = None
        self._state = ControllerState.REVEALING
        self.streaming_text = ""

        def on_tick(revealed: str) -> None:
            self.streaming_text = revealed

        def on_complete(full_text: str) -> None:
            self.streaming_text = None
            self._turns.append(
                Turn(
                    role="assistant",
                    content=full_text,
                    results=tuple(response.results) if response.results else None,
                    intent=response.intent,
                    metadata=response.metadata,
                )
            )
            self._state = ControllerState.IDLE
            self._schedule_save()

        self._reveal.start(response.message, on_tick, on_complete)

    def _schedule_save(self) -> None:
        snapshot = self.snapshot()
        if snapshot is not None:
            self._channel.schedule(snapshot)

    # -- conversation lifecycle ---------------------------------------------

    def switch_mode(self, mode: Mode) -> asyncio.Task[None] | None:
        """Change mode: flush the outgoing session, then clear local state.

        The flush must happen before the clear; the pending write belongs to
        the outgoing mode's session.
        """

        if mode == self._mode:
            return None

        self._reveal.cancel()
        snapshot = self.snapshot()
        task = self._channel.flush(snapshot)
        self._reset(mode)
        return task

    def new_session(self) -> asyncio.Task[None] | None:
        self._reveal.cancel()
        task = self._channel.flush(self.snapshot())
        self._reset(self._mode)
        return task

    async def load_session(self, session_id: str) -> bool:
        try:
            stored = await self._client.get_session(session_id)
        except AssistantClientError as e:
            logger.warning("Failed to load chat session %s: %s", session_id, e)
            self.last_error = e
            return False

        self._reveal.cancel()
        self._channel.flush(self.snapshot())
        self._reset(stored.mode)

        self._session_id = stored.session_id
        self._turns = list(stored.messages)
        self._title = stored.title
        if stored.mode == "recommendation":
            self._result_set = _result_set_from_turns(stored.session_id, stored.messages)
        self._channel.mark_persisted(
            build_snapshot(stored.session_id, stored.mode, stored.messages, title=stored.title)
        )
        return True

    async def load_latest(self, mode: Mode | None = None) -> bool:
        try:
            sessions = await self._client.list_sessions(mode or self._mode)
        except AssistantClientError as e:
            logger.warning("Failed to list chat sessions: %s", e)
            self.last_error = e
            return False

        if not sessions:
            return False
        latest = max(sessions, key=lambda s: s.updated_at)
        return await self.load_session(latest.session_id)

    async def delete_session(self, session_id: str) -> None:
        """Delete a stored session; raises AssistantClientError on failure.

        Local state is untouched until the backend confirms. The pending write
        for the session being deleted is held back meanwhile so it cannot
        recreate the session, and restored if the delete fails.
        """

        is_current = session_id == self._session_id
        held = self._channel.take_pending() if is_current else None

        try:
            await self._client.delete_session(session_id)
        except SessionNotFound:
            logger.info("Chat session %s was never stored; treating as deleted", session_id)
        except AssistantClientError:
            if held is not None:
                self._channel.schedule(held)
            raise

        if not is_current or session_id != self._session_id:
            return

        self._reveal.cancel()
        self._channel.discard()
        self._reset(self._mode)

    async def aclose(self) -> None:
        self._reveal.cancel()
        self.streaming_text = None
        if self._state is ControllerState.REVEALING:
            self._state = ControllerState.IDLE
        snapshot = self.snapshot()
        if snapshot is not None:
            self._channel.flush(snapshot)
        await self._channel.aclose()

    def _reset(self, mode: Mode) -> None:
        self._generation += 1
        self._mode = mode
        self._session_id = None
        self._turns = []
        self._result_set = None
        self._title = None
        self._state = ControllerState.IDLE
        self.streaming_text = None
        self.last_error = None


def _result_set_from_turns(session_id: str, turns: list[Turn]) -> ResultSet | None:
    found: ResultSet | None = None
    query = ""
    for turn in turns:
        if turn.role == "user":
            query = turn.content
        elif turn.results:
            found = ResultSet(session_id=session_id, query=query, items=tuple(turn.results))
    return found
