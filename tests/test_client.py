from __future__ import annotations

import httpx
import pytest

from discover_assistant.core.client import AssistantClient, AssistantClientError, SessionNotFound
from discover_assistant.core.schemas import SessionUpsert, Turn


def _client(handler) -> AssistantClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    return AssistantClient(client=http)


def _snapshot() -> SessionUpsert:
    return SessionUpsert(
        session_id="session-1-aaaaaaaaa",
        mode="information",
        messages=[Turn(role="user", content="hi")],
    )


@pytest.mark.asyncio
async def test_malformed_session_replies_raise_client_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={"unexpected": True}))

    with pytest.raises(AssistantClientError, match="Malformed response"):
        await client.upsert_session(_snapshot())
    with pytest.raises(AssistantClientError, match="Malformed response"):
        await client.get_session("session-1-aaaaaaaaa")
    with pytest.raises(AssistantClientError, match="Malformed response"):
        await client.list_sessions()


@pytest.mark.asyncio
async def test_non_json_reply_raises_client_error() -> None:
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(AssistantClientError):
        await client.upsert_session(_snapshot())


@pytest.mark.asyncio
async def test_404_maps_to_session_not_found() -> None:
    client = _client(lambda request: httpx.Response(404, json={"detail": "Chat session not found"}))

    with pytest.raises(SessionNotFound):
        await client.get_session("session-0-missingxx")
