from __future__ import annotations

from datetime import datetime, timezone

from discover_assistant.core.ids import new_session_id
from discover_assistant.core.schemas import ContentRef, Turn
from discover_assistant.core.snapshot import (
    build_snapshot,
    canonicalize,
    derive_title,
    should_persist,
)

TS = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _turns() -> list[Turn]:
    return [
        Turn(role="user", content="who directed Inception", timestamp=TS),
        Turn(role="assistant", content="Christopher Nolan.", intent="INFORMATION", timestamp=TS),
    ]


def test_new_session_id_has_time_prefix_and_is_unique() -> None:
    ids = {new_session_id() for _ in range(1000)}
    assert len(ids) == 1000

    sid = next(iter(ids))
    prefix, millis, suffix = sid.split("-")
    assert prefix == "session"
    assert millis.isdigit()
    assert len(suffix) == 9


def test_first_save_always_persists() -> None:
    snap = build_snapshot("s1", "information", _turns(), title="who directed Inception")
    assert should_persist(snap, None)


def test_logically_equal_snapshots_are_not_persisted_twice() -> None:
    a = build_snapshot("s1", "information", _turns(), metadata={"b": 1, "a": 2})
    b = build_snapshot("s1", "information", _turns(), metadata={"a": 2, "b": 1})

    assert a is not b
    assert canonicalize(a) == canonicalize(b)
    assert not should_persist(a, b)
    assert not should_persist(a, canonicalize(b))


def test_any_content_change_persists() -> None:
    base = build_snapshot("s1", "information", _turns())
    more = build_snapshot(
        "s1", "information", [*_turns(), Turn(role="user", content="and Tenet?", timestamp=TS)]
    )
    other_session = build_snapshot("s2", "information", _turns())
    other_mode = build_snapshot("s1", "recommendation", _turns())

    assert should_persist(more, base)
    assert should_persist(other_session, base)
    assert should_persist(other_mode, base)


def test_canonical_form_includes_result_refs() -> None:
    results = (ContentRef(id=27205, media_type="movie", title="Inception", year=2010),)
    with_results = build_snapshot(
        "s1",
        "recommendation",
        [Turn(role="assistant", content="Found", results=results, timestamp=TS)],
    )
    without = build_snapshot(
        "s1", "recommendation", [Turn(role="assistant", content="Found", timestamp=TS)]
    )
    assert '"title":"Inception"' in canonicalize(with_results)
    assert should_persist(with_results, without)


def test_derive_title_takes_first_50_chars() -> None:
    query = "  " + "x" * 80
    assert derive_title(query) == "x" * 50
    assert derive_title("sci-fi movies") == "sci-fi movies"
