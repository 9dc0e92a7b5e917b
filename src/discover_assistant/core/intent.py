from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal

from discover_assistant.core.schemas import Intent, Mode

TypeFilter = Literal["movie", "tv", "all"]

# TMDB genre ids. Movie and TV lists overlap except for a few TV-only ids.
GENRE_IDS: Final[dict[str, int]] = {
    "action": 28,
    "adventure": 12,
    "animation": 16,
    "animated": 16,
    "comedy": 35,
    "comedies": 35,
    "funny": 35,
    "crime": 80,
    "documentary": 99,
    "documentaries": 99,
    "drama": 18,
    "dramas": 18,
    "family": 10751,
    "fantasy": 14,
    "history": 36,
    "historical": 36,
    "horror": 27,
    "scary": 27,
    "music": 10402,
    "musical": 10402,
    "mystery": 9648,
    "romance": 10749,
    "romantic": 10749,
    "sci-fi": 878,
    "scifi": 878,
    "science fiction": 878,
    "thriller": 53,
    "thrillers": 53,
    "war": 10752,
    "western": 37,
    "westerns": 37,
}

_INFORMATION_PREFIXES: Final[tuple[str, ...]] = (
    "tell me about",
    "what is",
    "what's",
    "whats",
    "info about",
    "information about",
    "who directed",
    "who stars in",
    "who is in",
    "when was",
    "when did",
    "what's the plot of",
    "what is the plot of",
    "plot of",
)

_STOP_WORDS: Final[frozenset[str]] = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "with", "from", "in", "of", "for",
        "me", "some", "something", "show", "shows", "movie", "movies", "film",
        "films", "tv", "series", "i", "want", "like", "please", "give", "find",
        "recommend", "to", "watch", "that", "are", "is", "good", "best", "more",
    }
)

_COUNT_RE = re.compile(r"\b(\d{1,2})\s+(?:[a-z\-]+\s+){0,3}?(?:movies|films|shows|series|titles)\b")
_LEADING_COUNT_RE = re.compile(r"^\s*(?:show me|give me|find me|recommend)?\s*(\d{1,2})\b")
_YEAR_RE = re.compile(r"\b(?:in|from|released in|since)\s+((?:19|20)\d{2})\b")
_DECADE_RE = re.compile(r"\b(?:the\s+)?((?:19|20)?\d0)'?s\b")


@dataclass(frozen=True)
class ExtractedParams:
    """Search parameters pulled out of one chat message."""

    intent: Intent
    query: str
    genres: tuple[int, ...] = ()
    year: int | None = None
    media_type: TypeFilter = "all"
    keywords: tuple[str, ...] = ()
    title: str | None = None
    count: int | None = None


def _detect_intent(lowered: str) -> Intent:
    if lowered.startswith(_INFORMATION_PREFIXES) or " info about " in f" {lowered} ":
        return "INFORMATION"
    return "RECOMMENDATION"


def _parse_count(lowered: str) -> int | None:
    match = _COUNT_RE.search(lowered) or _LEADING_COUNT_RE.match(lowered)
    if not match:
        return None
    count = int(match.group(1))
    return count if 1 <= count <= 50 else None


def _parse_year(lowered: str) -> int | None:
    match = _YEAR_RE.search(lowered)
    if match:
        return int(match.group(1))

    decade = _DECADE_RE.search(lowered)
    if decade:
        raw = decade.group(1)
        # "90s" -> 1990, "2010s" -> 2010
        if len(raw) == 2:
            return 1900 + int(raw) if int(raw) >= 30 else 2000 + int(raw)
        return int(raw)
    return None


def _parse_genres(lowered: str) -> tuple[int, ...]:
    found: list[int] = []
    for name in sorted(GENRE_IDS, key=len, reverse=True):
        if re.search(rf"\b{re.escape(name)}\b", lowered):
            genre_id = GENRE_IDS[name]
            if genre_id not in found:
                found.append(genre_id)
    return tuple(found)


def _parse_media_type(lowered: str) -> TypeFilter:
    # "show me ..." is a request verb, not a TV hint.
    wants_tv = bool(re.search(r"\b(?:tv|shows|series|sitcoms?)\b|\bshow\b(?!\s+me\b)", lowered))
    wants_movie = bool(re.search(r"\b(?:movies?|films?)\b", lowered))
    if wants_tv and not wants_movie:
        return "tv"
    if wants_movie and not wants_tv:
        return "movie"
    return "all"


def _parse_title(raw: str, lowered: str) -> str | None:
    for prefix in sorted(_INFORMATION_PREFIXES, key=len, reverse=True):
        if lowered.startswith(prefix):
            title = raw[len(prefix) :]
            break
    else:
        title = raw

    title = title.strip(" \"'“”‘’.,;:!?")
    return title or None


def _parse_keywords(lowered: str) -> tuple[str, ...]:
    words = re.findall(r"[a-z][a-z\-]+", lowered)
    seen: set[str] = set()
    out: list[str] = []
    for w in words:
        if w in _STOP_WORDS or w in seen or w in GENRE_IDS:
            continue
        seen.add(w)
        out.append(w)
    return tuple(out[:10])


def extract_params(message: str, mode: Mode | None = None) -> ExtractedParams:
    """Turn a chat message into search parameters.

    A small rule-based extractor: an explicit ``mode`` decides the intent,
    otherwise a handful of question prefixes ("tell me about", "who
    directed", ...) mark an information request.
    """

    raw = re.sub(r"\s+", " ", message.strip())
    lowered = raw.lower()

    if mode == "information":
        intent: Intent = "INFORMATION"
    elif mode == "recommendation":
        intent = "RECOMMENDATION"
    else:
        intent = _detect_intent(lowered)

    if intent == "INFORMATION":
        title = _parse_title(raw, lowered)
        return ExtractedParams(intent=intent, query=title or raw, title=title)

    return ExtractedParams(
        intent=intent,
        query=raw,
        genres=_parse_genres(lowered),
        year=_parse_year(lowered),
        media_type=_parse_media_type(lowered),
        keywords=_parse_keywords(lowered),
        count=_parse_count(lowered),
    )
