# switchboard/voice/resolver.py
"""
Voice adapter resolution with health-gated fallback to the browser.

Resolution runs before every voice operation; nothing is cached per
session, so a recovered provider is picked up on the next call.

The resolver never emits audit events. When ``fallback_from_provider_id``
is set on the result, the caller must record the substitution.
"""
from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from switchboard.core.bindings import ResolvedBinding
from switchboard.core.health import HealthStatus, truncate_reason
from switchboard.infra.logging_config import get_logger
from switchboard.voice.adapters import (
    BROWSER_PROVIDER_ID,
    ELEVENLABS_PROVIDER_ID,
    BrowserVoiceAdapter,
    ElevenLabsVoiceAdapter,
    VoiceAdapterConfigurationError,
    VoiceProviderHealth,
    VoiceRuntimeAdapter,
)

logger = get_logger(__name__)

VOICE_PROVIDER_IDS: tuple[str, ...] = (BROWSER_PROVIDER_ID, ELEVENLABS_PROVIDER_ID)

VoiceAdapterFactory = Callable[[ResolvedBinding], VoiceRuntimeAdapter]


def _elevenlabs_factory(binding: ResolvedBinding) -> VoiceRuntimeAdapter:
    return ElevenLabsVoiceAdapter(
        binding.secret,
        base_url=binding.endpoint,
        default_voice_id=binding.metadata.get("default_voice_id"),
    )


DEFAULT_VOICE_FACTORIES: dict[str, VoiceAdapterFactory] = {
    ELEVENLABS_PROVIDER_ID: _elevenlabs_factory,
}


@dataclass(frozen=True)
class ResolvedVoiceAdapter:
    adapter: VoiceRuntimeAdapter
    health: VoiceProviderHealth
    requested_provider_id: str
    fallback_from_provider_id: str | None = None

    @property
    def provider_id(self) -> str:
        return self.adapter.provider_id


def normalize_voice_provider_id(value: str | None) -> str:
    """Known voice provider id, else the browser."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in VOICE_PROVIDER_IDS:
            return normalized
    return BROWSER_PROVIDER_ID


def _degraded(provider_id: str, now: datetime, reason: str | None) -> VoiceProviderHealth:
    return VoiceProviderHealth(
        provider_id=provider_id,
        status=HealthStatus.DEGRADED,
        checked_at=now,
        reason=reason,
    )


def _fallback(
    requested: str,
    health: VoiceProviderHealth,
) -> ResolvedVoiceAdapter:
    logger.warning(
        "Voice provider %s unavailable (%s: %s); falling back to %s",
        requested, health.status.value, health.reason, BROWSER_PROVIDER_ID,
        extra={"provider_id": requested},
    )
    return ResolvedVoiceAdapter(
        adapter=BrowserVoiceAdapter(),
        health=dataclasses.replace(health, fallback_provider_id=BROWSER_PROVIDER_ID),
        requested_provider_id=requested,
        fallback_from_provider_id=requested,
    )


async def resolve_voice_adapter(
    requested_provider_id: str | None,
    binding: ResolvedBinding | None,
    *,
    factories: Mapping[str, VoiceAdapterFactory] | None = None,
    probe_timeout: float | None = None,
    now: datetime | None = None,
) -> ResolvedVoiceAdapter:
    """
    Pick the adapter for a voice operation.

    1. Unknown ids resolve to the browser.
    2. Browser requested: returned immediately, no remote probe.
    3. No factory or no credential: browser, health degraded/missing_credential.
    4. Adapter construction fails, or the remote probe is not healthy, raises,
       or runs past ``probe_timeout``: browser with the probe's own health record.
    5. Otherwise the remote adapter and its health record.
    """
    requested = normalize_voice_provider_id(requested_provider_id)
    now = now or datetime.now(timezone.utc)

    if requested == BROWSER_PROVIDER_ID:
        adapter = BrowserVoiceAdapter()
        return ResolvedVoiceAdapter(
            adapter=adapter,
            health=await adapter.probe_health(),
            requested_provider_id=requested,
        )

    factory = (factories if factories is not None else DEFAULT_VOICE_FACTORIES).get(requested)
    if factory is None:
        return _fallback(
            requested,
            VoiceProviderHealth(
                provider_id=requested,
                status=HealthStatus.OFFLINE,
                checked_at=now,
                reason="unsupported_provider",
            ),
        )

    if binding is None or not (binding.secret or "").strip():
        return _fallback(requested, _degraded(requested, now, "missing_credential"))

    try:
        adapter = factory(binding)
    except VoiceAdapterConfigurationError as exc:
        logger.warning("Voice adapter %s not configured: %s", requested, exc, extra={"provider_id": requested})
        return _fallback(requested, _degraded(requested, now, "missing_credential"))
    except Exception as exc:
        logger.error("Voice adapter %s construction failed", requested, exc_info=True)
        return _fallback(
            requested,
            _degraded(requested, now, truncate_reason(f"adapter_init_failed: {exc}")),
        )

    try:
        if probe_timeout is not None:
            health = await asyncio.wait_for(adapter.probe_health(), timeout=probe_timeout)
        else:
            health = await adapter.probe_health()
    except TimeoutError:
        health = _degraded(requested, now, "probe_timeout")
    except Exception as exc:
        logger.error("Voice provider %s health probe failed", requested, exc_info=True)
        health = _degraded(requested, now, truncate_reason(f"probe_failed: {exc}"))

    if health.status is not HealthStatus.HEALTHY:
        return _fallback(requested, health)

    return ResolvedVoiceAdapter(adapter=adapter, health=health, requested_provider_id=requested)
