# switchboard/infra/session_state_store.py
"""
In-memory persistence for per-session tool breaker state.

Stores the patch produced by ``build_tool_error_state_patch`` keyed by
session id. A real deployment swaps in a durable store implementing the
same ``ToolFailureStateStore`` protocol.
"""
from __future__ import annotations

import copy
from typing import Optional

from switchboard.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryToolFailureStateStore:
    def __init__(self) -> None:
        self._records: dict[str, dict] = {}

    async def load(self, session_id: str) -> Optional[dict]:
        record = self._records.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    async def save(self, session_id: str, patch: dict) -> None:
        self._records[session_id] = copy.deepcopy(patch)
        if patch.get("degraded"):
            logger.warning(
                "Session tool state degraded: %s", patch.get("degraded_reason"),
                extra={"session_id": session_id},
            )

    async def clear(self, session_id: str) -> None:
        self._records.pop(session_id, None)
