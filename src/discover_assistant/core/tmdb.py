from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any, Literal

import httpx

from discover_assistant.core.schemas import ContentRef, MediaType

TMDB_BASE = "https://api.themoviedb.org/3"

SortBy = Literal["popularity.desc", "vote_average.desc", "release_date.desc"]


class TmdbError(RuntimeError):
    pass


def _api_key() -> str:
    key = os.environ.get("DISCOVER_ASSISTANT_TMDB_API_KEY", "").strip()
    if not key:
        raise TmdbError("DISCOVER_ASSISTANT_TMDB_API_KEY is not set")
    return key


def _base_url() -> str:
    return os.environ.get("DISCOVER_ASSISTANT_TMDB_BASE_URL", TMDB_BASE).rstrip("/")


def _year_of(date_value: Any) -> int | None:
    if isinstance(date_value, str) and len(date_value) >= 4:
        try:
            return int(date_value[:4])
        except ValueError:
            return None
    return None


def parse_tmdb_item(item: dict[str, Any], media_type: MediaType) -> ContentRef | None:
    """Map one TMDB search/discover result onto a ContentRef.

    Movies carry ``title``/``release_date``; TV carries ``name``/``first_air_date``.
    Items without an id or a title are dropped.
    """

    item_id = item.get("id")
    title = item.get("title") if media_type == "movie" else item.get("name")
    if not isinstance(item_id, int) or not isinstance(title, str) or not title.strip():
        return None

    date_value = item.get("release_date") if media_type == "movie" else item.get("first_air_date")
    genre_ids = item.get("genre_ids") or []

    return ContentRef(
        id=item_id,
        media_type=media_type,
        title=title.strip(),
        year=_year_of(date_value),
        overview=item.get("overview") or None,
        poster_path=item.get("poster_path") or None,
        vote_average=item.get("vote_average"),
        popularity=item.get("popularity"),
        genre_ids=tuple(g for g in genre_ids if isinstance(g, int)),
    )


def _get(client: httpx.Client | None, path: str, params: dict[str, Any], timeout_s: float) -> Any:
    close_client = False
    if client is None:
        client = httpx.Client(
            headers={
                "User-Agent": "discover-assistant/0.1",
                "Accept": "application/json",
            },
            timeout=timeout_s,
            follow_redirects=True,
        )
        close_client = True

    try:
        try:
            resp = client.get(
                f"{_base_url()}{path}",
                params={"api_key": _api_key(), "language": "en-US", **params},
            )
        except httpx.HTTPError as e:
            raise TmdbError(f"TMDB request failed: {e}") from e

        if resp.status_code >= 400:
            raise TmdbError(f"TMDB responded with {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise TmdbError("TMDB returned invalid JSON") from e
    finally:
        if close_client:
            client.close()


def _parse_results(payload: Any, media_type: MediaType) -> list[ContentRef]:
    raw = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        raise TmdbError("TMDB payload has no results list")

    out: list[ContentRef] = []
    for item in raw:
        if isinstance(item, dict):
            ref = parse_tmdb_item(item, media_type)
            if ref is not None:
                out.append(ref)
    return out


def search_titles(
    media_type: MediaType,
    query: str,
    *,
    page: int = 1,
    client: httpx.Client | None = None,
    timeout_s: float = 20.0,
) -> list[ContentRef]:
    payload = _get(
        client,
        f"/search/{media_type}",
        {"query": query, "page": page, "include_adult": "false"},
        timeout_s,
    )
    return _parse_results(payload, media_type)


def discover_titles(
    media_type: MediaType,
    *,
    genres: Sequence[int] = (),
    year: int | None = None,
    sort_by: SortBy = "popularity.desc",
    page: int = 1,
    client: httpx.Client | None = None,
    timeout_s: float = 20.0,
) -> list[ContentRef]:
    params: dict[str, Any] = {"sort_by": sort_by, "page": page, "include_adult": "false"}
    if genres:
        params["with_genres"] = ",".join(str(g) for g in genres)
    if year is not None:
        params["primary_release_year" if media_type == "movie" else "first_air_date_year"] = year

    payload = _get(client, f"/discover/{media_type}", params, timeout_s)
    return _parse_results(payload, media_type)
