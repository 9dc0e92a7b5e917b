from __future__ import annotations

from discover_assistant.core.intent import extract_params
from discover_assistant.core.retrieval import retrieve
from discover_assistant.core.schemas import ContentRef


def _refs(media_type: str, ids: range) -> list[ContentRef]:
    return [ContentRef(id=i, media_type=media_type, title=f"{media_type} {i}") for i in ids]


def test_information_takes_three_of_each_type_five_overall(monkeypatch) -> None:
    calls: list[tuple[str, str]] = []

    def fake_search(media_type, query, **_):
        calls.append((media_type, query))
        return _refs(media_type, range(1, 6))

    monkeypatch.setattr("discover_assistant.core.retrieval.search_titles", fake_search)

    out = retrieve(extract_params("tell me about Fargo"))

    assert calls == [("movie", "Fargo"), ("tv", "Fargo")]
    assert [(r.media_type, r.id) for r in out.results] == [
        ("movie", 1),
        ("movie", 2),
        ("movie", 3),
        ("tv", 1),
        ("tv", 2),
    ]
    assert out.message == 'Here\'s information about "movie 1".'


def test_information_without_results(monkeypatch) -> None:
    monkeypatch.setattr("discover_assistant.core.retrieval.search_titles", lambda *a, **k: [])
    out = retrieve(extract_params("tell me about Nothing At All"))
    assert out.results == []
    assert "couldn't find that title" in out.message


def test_genre_query_uses_discover_and_dedupes(monkeypatch) -> None:
    calls: list[dict] = []

    def fake_discover(media_type, *, genres=(), year=None, **_):
        calls.append({"media_type": media_type, "genres": genres, "year": year})
        return _refs(media_type, range(1, 4)) + _refs(media_type, range(1, 3))

    def no_search(*_a, **_k):
        raise AssertionError("search should not be used when filters were extracted")

    monkeypatch.setattr("discover_assistant.core.retrieval.discover_titles", fake_discover)
    monkeypatch.setattr("discover_assistant.core.retrieval.search_titles", no_search)

    out = retrieve(extract_params("horror from the 80s"))

    assert calls == [
        {"media_type": "movie", "genres": (27,), "year": 1980},
        {"media_type": "tv", "genres": (27,), "year": 1980},
    ]
    assert len(out.results) == 6
    assert out.message == "Found titles matching your preferences."


def test_requested_count_caps_results(monkeypatch) -> None:
    monkeypatch.setattr(
        "discover_assistant.core.retrieval.discover_titles",
        lambda media_type, **_: _refs(media_type, range(1, 30)),
    )
    out = retrieve(extract_params("give me 3 comedy movies"))
    assert len(out.results) == 3
    assert out.message == "Found 3 movies matching your preferences."


def test_plain_query_falls_back_to_search(monkeypatch) -> None:
    monkeypatch.setattr(
        "discover_assistant.core.retrieval.search_titles",
        lambda media_type, query, **_: _refs(media_type, range(1, 15)),
    )
    out = retrieve(extract_params("heist capers", mode="recommendation"))
    # Top ten of each type.
    assert len(out.results) == 20
    assert {r.media_type for r in out.results} == {"movie", "tv"}


def test_no_matches_message(monkeypatch) -> None:
    monkeypatch.setattr("discover_assistant.core.retrieval.search_titles", lambda *a, **k: [])
    out = retrieve(extract_params("zzzz", mode="recommendation"))
    assert out.results == []
    assert out.message.startswith("I couldn't find any matches")
