from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Mode = Literal["information", "recommendation"]
Role = Literal["user", "assistant"]
Intent = Literal["INFORMATION", "RECOMMENDATION"]
MediaType = Literal["movie", "tv"]
InteractionType = Literal["click", "add_to_collection"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentRef(BaseModel):
    """A single movie/TV result as the assistant hands it to the UI."""

    model_config = ConfigDict(frozen=True)

    id: int
    media_type: MediaType
    title: str
    year: int | None = None
    overview: str | None = None
    poster_path: str | None = None
    vote_average: float | None = None
    popularity: float | None = None
    genre_ids: tuple[int, ...] = ()


class Turn(BaseModel):
    # Turns are appended, never edited in place.
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    results: tuple[ContentRef, ...] | None = None
    intent: Intent | None = None
    metadata: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class HistoryItem(BaseModel):
    role: Role
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    session_id: str | None = None
    conversation_history: list[HistoryItem] = Field(default_factory=list)
    mode: Mode | None = None


class ChatResponse(BaseModel):
    intent: Intent
    message: str
    # Absent results are treated as a retrieval failure by recommendation mode.
    results: list[ContentRef] | None = None
    metadata: dict[str, Any] | None = None


class SessionUpsert(BaseModel):
    """Persisted projection of a session; also the snapshot used for dedup."""

    session_id: str = Field(min_length=1)
    mode: Mode
    messages: list[Turn]
    metadata: dict[str, Any] | None = None
    title: str | None = None


class ChatSession(SessionUpsert):
    title: str
    created_at: datetime
    updated_at: datetime


class SessionListResponse(BaseModel):
    sessions: list[ChatSession]


class SessionDeleteResponse(BaseModel):
    session_id: str
    deleted: bool


class InteractionRequest(BaseModel):
    session_id: str = Field(min_length=1)
    interaction_type: InteractionType


class InteractionResponse(BaseModel):
    session_id: str
    interaction_type: InteractionType
    recorded: bool


class AnalyticsTotals(BaseModel):
    total_queries: int = Field(ge=0)
    recommendation_queries: int = Field(ge=0)
    information_queries: int = Field(ge=0)
    total_results: int = Field(ge=0)
    total_clicks: int = Field(ge=0)
    total_collection_adds: int = Field(ge=0)
    average_response_time_ms: int = Field(ge=0)
    unique_sessions: int = Field(ge=0)


class TrendPoint(BaseModel):
    date: str
    count: int = Field(ge=0)


class GenreCount(BaseModel):
    genre_id: int
    count: int = Field(ge=0)


class KeywordCount(BaseModel):
    keyword: str
    count: int = Field(ge=0)


class AnalyticsRange(BaseModel):
    start: datetime | None
    end: datetime


class AnalyticsSummaryResponse(BaseModel):
    totals: AnalyticsTotals
    trend: list[TrendPoint]
    top_genres: list[GenreCount]
    top_keywords: list[KeywordCount]
    range: AnalyticsRange


class ChatEventItem(BaseModel):
    id: int
    session_id: str
    user_message: str
    intent: Intent
    response_time_ms: int
    results_count: int
    results_clicked: int
    results_added_to_collection: int
    created_at: datetime


class Pagination(BaseModel):
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total_count: int = Field(ge=0)
    total_pages: int = Field(ge=0)


class ChatEventsResponse(BaseModel):
    events: list[ChatEventItem]
    pagination: Pagination
