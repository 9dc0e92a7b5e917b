from __future__ import annotations

import time
from uuid import uuid4


def new_session_id() -> str:
    """Return a fresh chat session id: ``session-<epoch ms>-<random suffix>``.

    The millisecond prefix keeps ids roughly sortable; the random suffix makes
    collisions within the same millisecond practically impossible. No central
    coordination and no collision check.
    """

    return f"session-{int(time.time() * 1000)}-{uuid4().hex[:9]}"
