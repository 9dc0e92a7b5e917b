from __future__ import annotations

import asyncio
import logging

from discover_assistant.core.client import AssistantClientError
from discover_assistant.core.controller import AssistantBackend, SessionController
from discover_assistant.core.schemas import InteractionType

logger = logging.getLogger(__name__)


class InteractionTracker:
    """Reports clicks/collection-adds on recommendation results.

    Events are tagged with the session that produced the displayed result set
    (``controller.result_set.session_id``), which can differ from the
    controller's live session id once a newer query is in flight.
    """

    def __init__(self, client: AssistantBackend, controller: SessionController) -> None:
        self._client = client
        self._controller = controller
        self._inflight: set[asyncio.Task[None]] = set()

    def track(self, interaction_type: InteractionType) -> asyncio.Task[None] | None:
        result_set = self._controller.result_set
        if self._controller.mode != "recommendation" or result_set is None:
            logger.debug("Not tracking %s: no recommendation results on display", interaction_type)
            return None
        if not result_set.session_id:
            logger.debug("Not tracking %s: result set has no session id", interaction_type)
            return None

        task = asyncio.get_running_loop().create_task(
            self._send(result_set.session_id, interaction_type)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _send(self, session_id: str, interaction_type: InteractionType) -> None:
        try:
            await self._client.track_interaction(session_id, interaction_type)
        except AssistantClientError as e:
            logger.warning(
                "Failed to track %s for session %s: %s", interaction_type, session_id, e
            )
