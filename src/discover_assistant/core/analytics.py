from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Final

import pandas as pd

DEFAULT_RANGE_DAYS: Final[int] = 30
TOP_GENRES: Final[int] = 5
TOP_KEYWORDS: Final[int] = 10

EVENT_COLUMNS: Final[list[str]] = [
    "session_id",
    "intent",
    "response_time_ms",
    "results_count",
    "results_clicked",
    "results_added_to_collection",
    "extracted_genres",
    "extracted_keywords",
    "created_at",
]


class AnalyticsRangeError(ValueError):
    pass


@dataclass(frozen=True)
class AnalyticsSummary:
    total_queries: int
    recommendation_queries: int
    information_queries: int
    total_results: int
    total_clicks: int
    total_collection_adds: int
    average_response_time_ms: int
    unique_sessions: int
    trend: list[tuple[str, int]]
    top_genres: list[tuple[int, int]]
    top_keywords: list[tuple[str, int]]
    start: datetime | None
    end: datetime


def _parse_dt(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise AnalyticsRangeError(f"Invalid {name} parameter") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_range(
    *,
    range_days: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    now: datetime | None = None,
) -> tuple[datetime | None, datetime]:
    """Resolve the analytics window.

    Without any filter the window is open-ended (``start`` is None). An end
    more than a day in the future is clamped to now, and a start after the end
    falls back to ``range_days`` (or 30) days before the end.
    """

    actual_now = now or datetime.now(timezone.utc)
    if not (range_days or start_date or end_date):
        return None, actual_now

    end = _parse_dt(end_date, "end_date") if end_date else actual_now
    start = _parse_dt(start_date, "start_date") if start_date else None

    if start is None and range_days:
        start = end - timedelta(days=range_days)

    if end > actual_now + timedelta(days=1):
        end = actual_now

    if start is not None and start > end:
        start = end - timedelta(days=range_days or DEFAULT_RANGE_DAYS)

    return start, end


def events_frame(events: list[dict[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(events, columns=EVENT_COLUMNS)
    if df.empty:
        return df
    df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
    for col in ("response_time_ms", "results_count", "results_clicked", "results_added_to_collection"):
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0).astype(int)
    return df


def build_analytics_summary(
    events: list[dict[str, Any]],
    *,
    start: datetime | None,
    end: datetime,
) -> AnalyticsSummary:
    """Aggregate chat events (already filtered to the window) for the dashboard."""

    df = events_frame(events)
    if df.empty:
        return AnalyticsSummary(
            total_queries=0,
            recommendation_queries=0,
            information_queries=0,
            total_results=0,
            total_clicks=0,
            total_collection_adds=0,
            average_response_time_ms=0,
            unique_sessions=0,
            trend=[],
            top_genres=[],
            top_keywords=[],
            start=start,
            end=end,
        )

    intents = df["intent"].value_counts()

    trend_series = df.groupby(df["created_at"].dt.strftime("%Y-%m-%d")).size().sort_index()
    trend = [(str(day), int(count)) for day, count in trend_series.items()]

    genre_counts: Counter[int] = Counter()
    for genres in df["extracted_genres"]:
        for g in genres or []:
            genre_counts[int(g)] += 1

    keyword_counts: Counter[str] = Counter()
    for keywords in df["extracted_keywords"]:
        for k in keywords or []:
            keyword_counts[str(k).lower()] += 1

    return AnalyticsSummary(
        total_queries=len(df),
        recommendation_queries=int(intents.get("RECOMMENDATION", 0)),
        information_queries=int(intents.get("INFORMATION", 0)),
        total_results=int(df["results_count"].sum()),
        total_clicks=int(df["results_clicked"].sum()),
        total_collection_adds=int(df["results_added_to_collection"].sum()),
        average_response_time_ms=int(round(df["response_time_ms"].mean())),
        unique_sessions=int(df["session_id"].nunique()),
        trend=trend,
        top_genres=genre_counts.most_common(TOP_GENRES),
        top_keywords=keyword_counts.most_common(TOP_KEYWORDS),
        start=start,
        end=end,
    )
