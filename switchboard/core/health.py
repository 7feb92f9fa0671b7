# switchboard/core/health.py
from __future__ import annotations

from enum import Enum


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"


def status_for_http(status_code: int) -> HealthStatus:
    """Probe status for a non-2xx response: server-side and throttling are transient."""
    if status_code >= 500 or status_code == 429:
        return HealthStatus.DEGRADED
    return HealthStatus.OFFLINE


def truncate_reason(reason: str | None, limit: int = 180) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    return reason[:limit] if reason else None
