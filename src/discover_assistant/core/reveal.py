from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], None]
CompleteCallback = Callable[[str], None]


@dataclass
class PendingReveal:
    full_text: str
    revealed_length: int = 0
    active: bool = True

    @property
    def revealed_text(self) -> str:
        return self.full_text[: self.revealed_length]


class RevealScheduler:
    """Reveals an already-received answer one character per tick.

    At most one reveal is active; ``start`` supersedes the current one. After
    ``cancel`` no further ``on_tick``/``on_complete`` calls happen, even if the
    tick task has already been woken up.
    """

    def __init__(self, *, tick_s: float = 0.005) -> None:
        self._tick_s = tick_s
        self._current: PendingReveal | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._current is not None and self._current.active

    @property
    def current(self) -> PendingReveal | None:
        return self._current

    def start(
        self,
        full_text: str,
        on_tick: TickCallback,
        on_complete: CompleteCallback,
    ) -> PendingReveal:
        self.cancel()
        reveal = PendingReveal(full_text=full_text)
        self._current = reveal
        self._task = asyncio.get_running_loop().create_task(
            self._run(reveal, on_tick, on_complete)
        )
        return reveal

    def cancel(self) -> None:
        reveal, task = self._current, self._task
        self._current = None
        self._task = None
        if reveal is not None:
            reveal.active = False
        if task is not None and not task.done():
            task.cancel()

    async def wait(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def _run(
        self,
        reveal: PendingReveal,
        on_tick: TickCallback,
        on_complete: CompleteCallback,
    ) -> None:
        try:
            while reveal.revealed_length < len(reveal.full_text):
                await asyncio.sleep(self._tick_s)
                if not reveal.active:
                    return
                reveal.revealed_length += 1
                on_tick(reveal.revealed_text)

            if not reveal.active:
                return
            reveal.active = False
            on_complete(reveal.full_text)
        except Exception:
            logger.exception("Reveal callback failed; stopping reveal")
        finally:
            reveal.active = False
            if self._current is reveal:
                self._current = None
                self._task = None
