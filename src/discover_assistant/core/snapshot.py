from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi.encoders import jsonable_encoder

from discover_assistant.core.schemas import Mode, SessionUpsert, Turn

TITLE_MAX_CHARS = 50


def derive_title(query: str) -> str:
    return query.strip()[:TITLE_MAX_CHARS]


def build_snapshot(
    session_id: str,
    mode: Mode,
    messages: Iterable[Turn],
    *,
    title: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> SessionUpsert:
    return SessionUpsert(
        session_id=session_id,
        mode=mode,
        messages=list(messages),
        title=title,
        metadata=dict(metadata) if metadata is not None else None,
    )


def canonicalize(snapshot: SessionUpsert | Mapping[str, Any]) -> str:
    """Serialize a snapshot to a canonical string.

    Keys are sorted at every level so two logically-equal snapshots always
    produce the same bytes regardless of object identity or dict insertion
    order.
    """

    return json.dumps(
        jsonable_encoder(snapshot),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def should_persist(
    candidate: SessionUpsert | Mapping[str, Any],
    last_persisted: SessionUpsert | Mapping[str, Any] | str | None,
) -> bool:
    """Return False when ``candidate`` is identical to the last persisted snapshot.

    ``last_persisted`` may be a snapshot or a string produced by
    :func:`canonicalize`. A missing baseline (first save) always persists.
    """

    if last_persisted is None:
        return True

    baseline = last_persisted if isinstance(last_persisted, str) else canonicalize(last_persisted)
    return canonicalize(candidate) != baseline
