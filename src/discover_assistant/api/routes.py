from __future__ import annotations

import logging
import math
import time
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request

from discover_assistant.api.session import ChatEvent, ChatStore
from discover_assistant.core.analytics import (
    AnalyticsRangeError,
    build_analytics_summary,
    resolve_range,
)
from discover_assistant.core.ids import new_session_id
from discover_assistant.core.intent import extract_params
from discover_assistant.core.retrieval import retrieve
from discover_assistant.core.schemas import (
    AnalyticsSummaryResponse,
    ChatEventsResponse,
    ChatRequest,
    ChatResponse,
    ChatSession,
    InteractionRequest,
    InteractionResponse,
    Mode,
    SessionDeleteResponse,
    SessionListResponse,
    SessionUpsert,
)
from discover_assistant.core.tmdb import TmdbError

logger = logging.getLogger(__name__)

router = APIRouter()


def _store(request: Request) -> ChatStore:
    return request.app.state.chat_store


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/ai/chat", response_model=ChatResponse)
def chat(req: ChatRequest, request: Request) -> ChatResponse:
    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    started = time.perf_counter()
    params = extract_params(message, req.mode)
    logger.debug(
        "chat intent=%s history=%d session=%s",
        params.intent,
        len(req.conversation_history),
        req.session_id,
    )

    try:
        retrieved = retrieve(params)
    except TmdbError as e:
        logger.warning("Retrieval failed for %r: %s", message, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    response_time_ms = int((time.perf_counter() - started) * 1000)

    try:
        _store(request).record_event(
            ChatEvent(
                session_id=req.session_id or new_session_id(),
                user_message=message,
                intent=params.intent,
                response_time_ms=response_time_ms,
                result_ids=[r.id for r in retrieved.results],
                result_types=[r.media_type for r in retrieved.results],
                extracted_genres=list(params.genres),
                extracted_keywords=list(params.keywords),
                extracted_year=params.year,
                extracted_type=params.media_type,
            )
        )
    except Exception:
        # Event logging must never fail the chat request.
        logger.exception("Failed to log chat event")

    return ChatResponse(
        intent=params.intent,
        message=retrieved.message,
        results=retrieved.results,
        metadata={
            "genres": list(params.genres),
            "year": params.year,
            "type": params.media_type,
            "keywords": list(params.keywords),
            "count": params.count,
            "title": params.title,
        },
    )


@router.get("/api/ai/chat/sessions", response_model=SessionListResponse)
def list_sessions(
    request: Request,
    mode: Annotated[Mode | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=50)] = 50,
) -> SessionListResponse:
    sessions = _store(request).list_sessions(mode=mode, limit=limit)
    return SessionListResponse(sessions=[ChatSession.model_validate(s) for s in sessions])


@router.post("/api/ai/chat/sessions", response_model=ChatSession)
def upsert_session(req: SessionUpsert, request: Request) -> ChatSession:
    stored = _store(request).upsert_session(req)
    return ChatSession.model_validate(stored)


@router.get("/api/ai/chat/sessions/{session_id}", response_model=ChatSession)
def get_session(session_id: str, request: Request) -> ChatSession:
    stored = _store(request).get_session(session_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return ChatSession.model_validate(stored)


@router.delete("/api/ai/chat/sessions/{session_id}", response_model=SessionDeleteResponse)
def delete_session(session_id: str, request: Request) -> SessionDeleteResponse:
    if not _store(request).delete_session(session_id):
        raise HTTPException(status_code=404, detail="Chat session not found")
    return SessionDeleteResponse(session_id=session_id, deleted=True)


@router.post("/api/ai/interactions", response_model=InteractionResponse)
def track_interaction(req: InteractionRequest, request: Request) -> InteractionResponse:
    recorded = _store(request).record_interaction(req.session_id, req.interaction_type)
    if not recorded:
        logger.info(
            "No chat event for session %s; %s not recorded", req.session_id, req.interaction_type
        )
    return InteractionResponse(
        session_id=req.session_id,
        interaction_type=req.interaction_type,
        recorded=recorded,
    )


@router.get("/api/ai/analytics", response_model=AnalyticsSummaryResponse)
def analytics_summary(
    request: Request,
    range_days: Annotated[int | None, Query(alias="range", ge=1, le=3650)] = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> AnalyticsSummaryResponse:
    try:
        start, end = resolve_range(range_days=range_days, start_date=start_date, end_date=end_date)
    except AnalyticsRangeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    events = _store(request).load_events(start=start, end=end)
    summary = build_analytics_summary(events, start=start, end=end)

    return AnalyticsSummaryResponse(
        totals={
            "total_queries": summary.total_queries,
            "recommendation_queries": summary.recommendation_queries,
            "information_queries": summary.information_queries,
            "total_results": summary.total_results,
            "total_clicks": summary.total_clicks,
            "total_collection_adds": summary.total_collection_adds,
            "average_response_time_ms": summary.average_response_time_ms,
            "unique_sessions": summary.unique_sessions,
        },
        trend=[{"date": d, "count": c} for d, c in summary.trend],
        top_genres=[{"genre_id": g, "count": c} for g, c in summary.top_genres],
        top_keywords=[{"keyword": k, "count": c} for k, c in summary.top_keywords],
        range={"start": summary.start, "end": summary.end},
    )


@router.get("/api/ai/analytics/events", response_model=ChatEventsResponse)
def analytics_events(
    request: Request,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 25,
) -> ChatEventsResponse:
    events, total = _store(request).page_events(page=page, page_size=page_size)
    return ChatEventsResponse(
        events=events,
        pagination={
            "page": page,
            "page_size": page_size,
            "total_count": total,
            "total_pages": math.ceil(total / page_size),
        },
    )
