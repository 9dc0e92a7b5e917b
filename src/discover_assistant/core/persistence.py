from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from discover_assistant.core.client import AssistantClientError
from discover_assistant.core.schemas import SessionUpsert
from discover_assistant.core.snapshot import canonicalize, should_persist

logger = logging.getLogger(__name__)

Upsert = Callable[[SessionUpsert], Awaitable[Any]]


class PersistenceChannel:
    """Trailing-debounce writer for session snapshots.

    ``schedule`` collapses a burst of mutations into one write carrying the
    last snapshot; ``flush`` writes immediately. Both go through ``_issue``,
    which runs the dedup check and records the snapshot as "last issued"
    before the upsert is awaited, so two triggers for the same content can
    never both reach the network.

    A failed upsert is logged and not retried, and the "last issued" marker
    stays in place: delivery is at-most-once.
    """

    def __init__(self, upsert: Upsert, *, delay_s: float = 1.0) -> None:
        self._upsert = upsert
        self._delay_s = delay_s
        self._timer: asyncio.TimerHandle | None = None
        self._pending: SessionUpsert | None = None
        self._last_issued: str | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def has_pending(self) -> bool:
        return self._timer is not None

    @property
    def pending_snapshot(self) -> SessionUpsert | None:
        return self._pending

    @property
    def last_issued(self) -> str | None:
        return self._last_issued

    def schedule(self, snapshot: SessionUpsert) -> None:
        self._cancel_timer()
        self._pending = snapshot
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay_s, self._on_elapsed)

    def flush(self, snapshot: SessionUpsert | None = None) -> asyncio.Task[None] | None:
        """Write now, bypassing the delay.

        Without an explicit snapshot the pending one (if any) is written.
        Returns the upsert task, or None when there was nothing new to send.
        """

        pending = self.take_pending()
        target = snapshot if snapshot is not None else pending
        if target is None:
            return None
        return self._issue(target)

    def take_pending(self) -> SessionUpsert | None:
        """Cancel the timer and hand the pending snapshot to the caller."""

        self._cancel_timer()
        pending, self._pending = self._pending, None
        return pending

    def discard(self) -> None:
        dropped = self.take_pending()
        if dropped is not None:
            logger.debug("Discarded pending write for session %s", dropped.session_id)

    def mark_persisted(self, snapshot: SessionUpsert) -> None:
        self._last_issued = canonicalize(snapshot)

    async def aclose(self) -> None:
        self.flush()
        if self._inflight:
            await asyncio.gather(*self._inflight)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_elapsed(self) -> None:
        self._timer = None
        snapshot, self._pending = self._pending, None
        if snapshot is not None:
            self._issue(snapshot)

    def _issue(self, snapshot: SessionUpsert) -> asyncio.Task[None] | None:
        if not should_persist(snapshot, self._last_issued):
            logger.debug("Skipping unchanged snapshot for session %s", snapshot.session_id)
            return None

        self._last_issued = canonicalize(snapshot)
        task = asyncio.get_running_loop().create_task(self._send(snapshot))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _send(self, snapshot: SessionUpsert) -> None:
        try:
            await self._upsert(snapshot)
        except (AssistantClientError, ValidationError):
            logger.exception("Failed to save chat session %s", snapshot.session_id)
