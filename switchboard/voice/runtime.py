# switchboard/voice/runtime.py
"""
Voice runtime service: session open/close, transcription and synthesis
over whichever backend the resolver picks for each call.

Every call resolves afresh. A substitution keeps the caller's voice
session id and is always recorded as a failover trust event. Remote
failures come back as ``VoiceOperationResult(success=False, error=...)``.
"""
from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass
from typing import Any, Mapping

import aiohttp

from switchboard.config import settings
from switchboard.core.bindings import ResolvedBinding
from switchboard.infra.audit_log import (
    AuditSink,
    VOICE_ADAPTIVE_FLOW_DECISION,
    VOICE_RUNTIME_FAILOVER,
    VOICE_SESSION_TRANSITION,
    build_trust_event,
)
from switchboard.infra.logging_config import LogContext, get_logger
from switchboard.infra.metrics import RuntimeMetrics
from switchboard.voice.adapters import BROWSER_PROVIDER_ID, VoiceProviderError, VoiceProviderHealth
from switchboard.voice.resolver import (
    ResolvedVoiceAdapter,
    VoiceAdapterFactory,
    resolve_voice_adapter,
)

logger = get_logger(__name__)

VOICE_CHANNEL = "voice_runtime"
BROWSER_PROCESSING_REQUIRED = "browser_runtime_requires_client_side_voice_processing"
DEFAULT_FAILOVER_REASON = "provider_health_degraded"


@dataclass(frozen=True)
class VoiceRuntimeContext:
    """Who is calling and with which credential."""
    org_id: str
    session_id: str                     # conversation / interview session
    actor_id: str
    binding: ResolvedBinding | None = None

    @property
    def default_voice_id(self) -> str | None:
        if self.binding is None:
            return None
        return self.binding.metadata.get("default_voice_id")


@dataclass(frozen=True)
class VoiceOperationResult:
    success: bool
    provider_id: str
    requested_provider_id: str
    health: VoiceProviderHealth
    voice_session_id: str | None = None
    fallback_provider_id: str | None = None
    text: str | None = None
    audio_base64: str | None = None
    mime_type: str | None = None
    requires_local_processing: bool = False
    error: str | None = None


def decode_base64_audio(payload: str) -> bytes:
    """Accepts raw base64 or a data URL."""
    data = payload.split(",", 1)[1] if "," in payload else payload
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 audio payload: {exc}") from exc


class VoiceRuntime:
    def __init__(
        self,
        audit_sink: AuditSink,
        *,
        factories: Mapping[str, VoiceAdapterFactory] | None = None,
        probe_timeout: float | None = None,
    ):
        self._audit = audit_sink
        self._factories = factories
        self._probe_timeout = probe_timeout if probe_timeout is not None else settings.voice_probe_timeout_seconds

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve(self, ctx: VoiceRuntimeContext, requested_provider_id: str | None) -> ResolvedVoiceAdapter:
        return await resolve_voice_adapter(
            requested_provider_id,
            ctx.binding,
            factories=self._factories,
            probe_timeout=self._probe_timeout,
        )

    async def _emit(self, ctx: VoiceRuntimeContext, event_name: str, mode: str, **fields: Any) -> None:
        payload = build_trust_event(
            event_name,
            org_id=ctx.org_id,
            session_id=ctx.session_id,
            mode=mode,
            channel=VOICE_CHANNEL,
            actor_id=ctx.actor_id,
            **fields,
        )
        await self._audit.record(event_name, payload)

    async def _emit_failover_if_needed(
        self,
        ctx: VoiceRuntimeContext,
        resolved: ResolvedVoiceAdapter,
        voice_session_id: str,
    ) -> None:
        if not resolved.fallback_from_provider_id:
            return
        reason = resolved.health.reason or DEFAULT_FAILOVER_REASON
        RuntimeMetrics.voice_failover(resolved.requested_provider_id, resolved.provider_id, reason)
        await self._emit(
            ctx,
            VOICE_RUNTIME_FAILOVER,
            "runtime",
            voice_session_id=voice_session_id,
            voice_runtime_provider=resolved.requested_provider_id,
            voice_failover_provider=resolved.provider_id,
            voice_failover_reason=reason,
            voice_provider_health_status=resolved.health.status.value,
        )

    @staticmethod
    def _result(resolved: ResolvedVoiceAdapter, **kwargs: Any) -> VoiceOperationResult:
        kwargs.setdefault("success", True)
        kwargs.setdefault("provider_id", resolved.provider_id)
        return VoiceOperationResult(
            requested_provider_id=resolved.requested_provider_id,
            health=resolved.health,
            fallback_provider_id=resolved.provider_id if resolved.fallback_from_provider_id else None,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def probe_health(self, ctx: VoiceRuntimeContext, requested_provider_id: str | None = None) -> VoiceProviderHealth:
        """Health of the requested provider as the resolver sees it right now."""
        resolved = await self._resolve(ctx, requested_provider_id)
        return resolved.health

    async def open_session(
        self,
        ctx: VoiceRuntimeContext,
        *,
        requested_provider_id: str | None = None,
        voice_id: str | None = None,
        voice_session_id: str | None = None,
    ) -> VoiceOperationResult:
        log = LogContext(logger, org_id=ctx.org_id, session_id=ctx.session_id)
        voice_session_id = (voice_session_id or "").strip() or f"voice:{ctx.session_id}:{int(time.time() * 1000)}"
        resolved = await self._resolve(ctx, requested_provider_id)

        handle = await resolved.adapter.open_session(
            voice_session_id,
            org_id=ctx.org_id,
            session_id=ctx.session_id,
            voice_id=(voice_id or "").strip() or ctx.default_voice_id,
        )
        await self._emit(
            ctx,
            VOICE_SESSION_TRANSITION,
            "lifecycle",
            voice_session_id=voice_session_id,
            voice_state_from="created",
            voice_state_to="capturing",
            voice_transition_reason="voice_session_open",
            voice_runtime_provider=handle.provider_id,
        )
        await self._emit_failover_if_needed(ctx, resolved, voice_session_id)

        log.info("Voice session %s opened on %s", voice_session_id, handle.provider_id)
        return self._result(resolved, voice_session_id=voice_session_id, provider_id=handle.provider_id)

    async def close_session(
        self,
        ctx: VoiceRuntimeContext,
        voice_session_id: str,
        *,
        active_provider_id: str | None = None,
        reason: str | None = None,
    ) -> VoiceOperationResult:
        reason = (reason or "").strip() or "voice_session_close"
        resolved = await self._resolve(ctx, active_provider_id)

        await resolved.adapter.close_session(voice_session_id, reason)
        await self._emit(
            ctx,
            VOICE_SESSION_TRANSITION,
            "lifecycle",
            voice_session_id=voice_session_id,
            voice_state_from="capturing",
            voice_state_to="closed",
            voice_transition_reason=reason,
            voice_runtime_provider=resolved.provider_id,
        )
        await self._emit_failover_if_needed(ctx, resolved, voice_session_id)
        return self._result(resolved, voice_session_id=voice_session_id)

    async def transcribe(
        self,
        ctx: VoiceRuntimeContext,
        voice_session_id: str,
        audio: bytes | str,
        *,
        mime_type: str | None = None,
        requested_provider_id: str | None = None,
        language: str | None = None,
    ) -> VoiceOperationResult:
        resolved = await self._resolve(ctx, requested_provider_id)
        await self._emit_failover_if_needed(ctx, resolved, voice_session_id)

        if resolved.provider_id == BROWSER_PROVIDER_ID:
            return self._result(
                resolved,
                success=False,
                voice_session_id=voice_session_id,
                requires_local_processing=True,
                error=BROWSER_PROCESSING_REQUIRED,
            )

        try:
            audio_bytes = decode_base64_audio(audio) if isinstance(audio, str) else audio
            transcript = await resolved.adapter.transcribe(
                voice_session_id,
                audio_bytes,
                mime_type=(mime_type or "").strip() or "audio/webm",
                language=(language or "").strip() or None,
            )
        except (VoiceProviderError, aiohttp.ClientError, TimeoutError, ValueError) as exc:
            logger.warning(
                "Voice transcription failed: %s", exc,
                extra={"org_id": ctx.org_id, "session_id": ctx.session_id, "provider_id": resolved.provider_id},
            )
            return self._result(
                resolved,
                success=False,
                voice_session_id=voice_session_id,
                error=str(exc) or "Voice transcription failed.",
            )

        await self._emit(
            ctx,
            VOICE_ADAPTIVE_FLOW_DECISION,
            "runtime",
            voice_session_id=voice_session_id,
            adaptive_phase_id="stt_transport",
            adaptive_decision="provider_transcription",
            adaptive_confidence=1,
            consent_checkpoint_id="cp0_capture_notice",
        )
        return self._result(
            resolved,
            voice_session_id=voice_session_id,
            provider_id=transcript.provider_id,
            text=transcript.text,
        )

    async def synthesize(
        self,
        ctx: VoiceRuntimeContext,
        voice_session_id: str,
        text: str,
        *,
        requested_provider_id: str | None = None,
        voice_id: str | None = None,
    ) -> VoiceOperationResult:
        resolved = await self._resolve(ctx, requested_provider_id)
        await self._emit_failover_if_needed(ctx, resolved, voice_session_id)

        try:
            synthesis = await resolved.adapter.synthesize(
                voice_session_id,
                text,
                voice_id=(voice_id or "").strip() or ctx.default_voice_id,
            )
        except (VoiceProviderError, aiohttp.ClientError, TimeoutError) as exc:
            logger.warning(
                "Voice synthesis failed: %s", exc,
                extra={"org_id": ctx.org_id, "session_id": ctx.session_id, "provider_id": resolved.provider_id},
            )
            return self._result(
                resolved,
                success=False,
                voice_session_id=voice_session_id,
                error=str(exc) or "Voice synthesis failed.",
            )

        return self._result(
            resolved,
            voice_session_id=voice_session_id,
            provider_id=synthesis.provider_id,
            audio_base64=synthesis.audio_base64,
            mime_type=synthesis.mime_type,
            requires_local_processing=synthesis.requires_local_processing,
        )
