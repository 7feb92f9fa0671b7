# switchboard/infra/http_client.py
"""
Shared HTTP client sessions for provider traffic.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **probe**   – health probes and model catalog reads (connect=5 s, pool limit=20)
- **voice**   – speech-to-text / text-to-speech  (total=60 s, connect=10 s, pool limit=10)
- **default** – completion requests               (total=120 s, connect=5 s, pool limit=20)

The probe session carries no total timeout: the caller imposes its own
deadline, shorter than the operation that triggered the probe.

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from switchboard.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_probe_session() -> aiohttp.ClientSession:
    """Session for health probes (provider catalog, voice probe)."""
    return _get_or_create(
        "probe",
        aiohttp.ClientTimeout(total=None, connect=5),
        limit=20,
    )


def get_voice_session() -> aiohttp.ClientSession:
    """Session for audio transfer (transcription, synthesis)."""
    return _get_or_create(
        "voice",
        aiohttp.ClientTimeout(total=60, connect=10),
        limit=10,
    )


def get_default_session() -> aiohttp.ClientSession:
    """General-purpose session (completion requests)."""
    return _get_or_create(
        "default",
        aiohttp.ClientTimeout(total=120, connect=5),
        limit=20,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
