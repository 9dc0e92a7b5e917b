from __future__ import annotations

import asyncio
import logging

import pytest

from discover_assistant.core.client import AssistantClientError
from discover_assistant.core.persistence import PersistenceChannel
from discover_assistant.core.schemas import SessionUpsert, Turn
from discover_assistant.core.snapshot import build_snapshot

DELAY = 0.05
SETTLE = 0.2


def _snap(session_id: str, *contents: str) -> SessionUpsert:
    return build_snapshot(
        session_id, "information", [Turn(role="user", content=c) for c in contents]
    )


class Recorder:
    def __init__(self, *, fail: bool = False, delay_s: float = 0.0) -> None:
        self.calls: list[SessionUpsert] = []
        self.fail = fail
        self.delay_s = delay_s

    async def __call__(self, snapshot: SessionUpsert) -> None:
        self.calls.append(snapshot)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise AssistantClientError("upsert responded with 500")


@pytest.mark.asyncio
async def test_burst_of_mutations_issues_one_write_with_last_snapshot() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    for i in range(1, 6):
        channel.schedule(_snap("s1", *[f"m{j}" for j in range(i)]))
        await asyncio.sleep(DELAY / 5)

    assert upsert.calls == []
    await asyncio.sleep(SETTLE)

    assert len(upsert.calls) == 1
    assert [t.content for t in upsert.calls[0].messages] == ["m0", "m1", "m2", "m3", "m4"]
    assert not channel.has_pending


@pytest.mark.asyncio
async def test_unchanged_snapshot_is_not_written_again() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    snap = _snap("s1", "hello")
    channel.schedule(snap)
    await asyncio.sleep(SETTLE)
    channel.schedule(snap.model_copy(deep=True))
    await asyncio.sleep(SETTLE)

    assert len(upsert.calls) == 1


@pytest.mark.asyncio
async def test_flush_writes_immediately_and_cancels_timer() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    channel.schedule(_snap("s1", "a"))
    task = channel.flush()
    assert task is not None
    assert not channel.has_pending
    await task

    await asyncio.sleep(SETTLE)
    assert len(upsert.calls) == 1


@pytest.mark.asyncio
async def test_flush_and_elapse_for_same_content_write_once() -> None:
    # The last-issued marker is set before the slow upsert resolves.
    upsert = Recorder(delay_s=0.1)
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    snap = _snap("s1", "a", "b")
    channel.flush(snap)
    channel.schedule(snap.model_copy(deep=True))
    await asyncio.sleep(SETTLE)

    assert len(upsert.calls) == 1


@pytest.mark.asyncio
async def test_flush_without_anything_pending_is_a_noop() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    assert channel.flush() is None
    assert upsert.calls == []


@pytest.mark.asyncio
async def test_discard_drops_pending_write() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    channel.schedule(_snap("s1", "a"))
    channel.discard()
    await asyncio.sleep(SETTLE)

    assert upsert.calls == []
    assert channel.pending_snapshot is None


@pytest.mark.asyncio
async def test_failed_write_is_logged_and_not_retried(caplog) -> None:
    upsert = Recorder(fail=True)
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    snap = _snap("s1", "a")
    with caplog.at_level(logging.ERROR, logger="discover_assistant.core.persistence"):
        task = channel.flush(snap)
        assert task is not None
        await task

    assert "Failed to save chat session s1" in caplog.text
    # The optimistic marker stays: the same content is not sent again.
    channel.schedule(snap)
    await asyncio.sleep(SETTLE)
    assert len(upsert.calls) == 1

    # A differing mutation goes out normally.
    channel.schedule(_snap("s1", "a", "b"))
    await asyncio.sleep(SETTLE)
    assert len(upsert.calls) == 2


@pytest.mark.asyncio
async def test_mark_persisted_sets_baseline_without_writing() -> None:
    upsert = Recorder()
    channel = PersistenceChannel(upsert, delay_s=DELAY)

    snap = _snap("s1", "loaded")
    channel.mark_persisted(snap)
    assert channel.flush(snap) is None
    assert upsert.calls == []


@pytest.mark.asyncio
async def test_aclose_flushes_pending_and_waits_for_writes() -> None:
    upsert = Recorder(delay_s=0.02)
    channel = PersistenceChannel(upsert, delay_s=10.0)

    channel.schedule(_snap("s1", "a"))
    await channel.aclose()

    assert len(upsert.calls) == 1
    assert not channel.has_pending


@pytest.mark.asyncio
async def test_malformed_upsert_reply_is_logged_not_raised(caplog) -> None:
    async def upsert(_snapshot: SessionUpsert) -> None:
        SessionUpsert.model_validate({})

    channel = PersistenceChannel(upsert, delay_s=DELAY)

    channel.schedule(_snap("s1", "a"))
    await asyncio.sleep(SETTLE)
    channel.schedule(_snap("s1", "a", "b"))
    await channel.aclose()

    assert caplog.text.count("Failed to save chat session s1") == 2
