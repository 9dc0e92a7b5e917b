from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from discover_assistant.core.intent import ExtractedParams
from discover_assistant.core.schemas import ContentRef, MediaType
from discover_assistant.core.tmdb import discover_titles, search_titles

INFORMATION_LIMIT = 5
PER_TYPE_INFORMATION_LIMIT = 3
PER_TYPE_SEARCH_LIMIT = 10
DEFAULT_RECOMMENDATION_LIMIT = 20


@dataclass(frozen=True)
class RetrievalResult:
    results: list[ContentRef]
    message: str


def _media_types(params: ExtractedParams) -> list[MediaType]:
    if params.media_type == "movie":
        return ["movie"]
    if params.media_type == "tv":
        return ["tv"]
    return ["movie", "tv"]


def _dedupe(items: Iterable[ContentRef], limit: int) -> list[ContentRef]:
    seen: set[tuple[str, int]] = set()
    out: list[ContentRef] = []
    for item in items:
        key = (item.media_type, item.id)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
        if len(out) >= limit:
            break
    return out


def _retrieve_information(params: ExtractedParams) -> list[ContentRef]:
    query = params.title or params.query
    movies = search_titles("movie", query)[:PER_TYPE_INFORMATION_LIMIT]
    shows = search_titles("tv", query)[:PER_TYPE_INFORMATION_LIMIT]
    return [*movies, *shows][:INFORMATION_LIMIT]


def _retrieve_recommendations(params: ExtractedParams) -> list[ContentRef]:
    limit = params.count or DEFAULT_RECOMMENDATION_LIMIT

    if params.genres or params.year is not None:
        combined: list[ContentRef] = []
        for media_type in _media_types(params):
            combined.extend(
                discover_titles(media_type, genres=params.genres, year=params.year)
            )
        return _dedupe(combined, limit)

    if params.query:
        combined = []
        for media_type in _media_types(params):
            combined.extend(search_titles(media_type, params.query)[:PER_TYPE_SEARCH_LIMIT])
        return _dedupe(combined, limit)

    return []


def compose_reply(params: ExtractedParams, results: list[ContentRef]) -> str:
    if params.intent == "INFORMATION":
        if results:
            return f'Here\'s information about "{results[0].title}".'
        return "I couldn't find that title. Could you try a different search?"

    if not results:
        return "I couldn't find any matches. Try adjusting your criteria or be more specific."

    count = f" {params.count}" if params.count else ""
    kind = {"movie": "movies", "tv": "TV shows"}.get(params.media_type, "titles")
    return f"Found{count} {kind} matching your preferences."


def retrieve(params: ExtractedParams) -> RetrievalResult:
    """Fetch titles for extracted chat parameters and phrase the reply.

    Information requests look the title up as both movie and TV (best 3 of
    each, 5 overall). Recommendation requests use TMDB discover when genre or
    year filters were extracted, plain search otherwise, de-duplicated and
    capped at the requested count (20 by default).
    """

    if params.intent == "INFORMATION":
        results = _retrieve_information(params)
    else:
        results = _retrieve_recommendations(params)
    return RetrievalResult(results=results, message=compose_reply(params, results))
