# tests/test_voice_runtime.py
"""Tests for the voice runtime service and its trust events."""
import base64
from datetime import datetime, timezone

import pytest

from switchboard.core.bindings import (
    BillingSource,
    BindingSource,
    CredentialSource,
    ResolvedBinding,
)
from switchboard.core.health import HealthStatus
from switchboard.infra.audit_log import (
    VOICE_ADAPTIVE_FLOW_DECISION,
    VOICE_RUNTIME_FAILOVER,
    VOICE_SESSION_TRANSITION,
)
from switchboard.transport.normalization import normalize_error
from switchboard.voice.adapters import (
    BrowserVoiceAdapter,
    SynthesisResult,
    TranscriptionResult,
    VoiceProviderError,
    VoiceProviderHealth,
)
from switchboard.voice.runtime import (
    BROWSER_PROCESSING_REQUIRED,
    VoiceRuntime,
    VoiceRuntimeContext,
    decode_base64_audio,
)


def _binding() -> ResolvedBinding:
    return ResolvedBinding(
        provider_id="elevenlabs",
        profile_id="voice",
        secret="xi-0123456789",
        endpoint="https://api.elevenlabs.io/v1",
        priority=0,
        source=BindingSource.ORG_PROFILE,
        credential_source=CredentialSource.ORGANIZATION_AUTH_PROFILE,
        billing_source=BillingSource.BYOK,
        metadata={"default_voice_id": "voice_abc"},
    )


class ScriptedAdapter(BrowserVoiceAdapter):
    """Remote stand-in: healthy or not, optionally failing on speech calls."""

    provider_id = "elevenlabs"

    def __init__(self, status=HealthStatus.HEALTHY, fail_with=None):
        self.status = status
        self.fail_with = fail_with
        self.synthesized_with: list[str | None] = []
        self.transcribed: list[bytes] = []

    async def probe_health(self):
        return VoiceProviderHealth(
            provider_id=self.provider_id,
            status=self.status,
            checked_at=datetime.now(timezone.utc),
            reason=None if self.status is HealthStatus.HEALTHY else "elevenlabs_probe_http_503",
        )

    async def transcribe(self, voice_session_id, audio, *, mime_type="audio/webm", language=None):
        if self.fail_with:
            raise self.fail_with
        self.transcribed.append(audio)
        return TranscriptionResult(provider_id=self.provider_id, text="transcribed")

    async def synthesize(self, voice_session_id, text, *, voice_id=None):
        if self.fail_with:
            raise self.fail_with
        self.synthesized_with.append(voice_id)
        return SynthesisResult(provider_id=self.provider_id, mime_type="audio/mpeg", audio_base64="AAA=")


@pytest.fixture
def ctx(org_id, session_id):
    return VoiceRuntimeContext(org_id=org_id, session_id=session_id, actor_id="user_1", binding=_binding())


def _runtime(audit_sink, adapter):
    return VoiceRuntime(audit_sink, factories={"elevenlabs": lambda b: adapter}, probe_timeout=1.0)


class TestOpenSession:

    @pytest.mark.asyncio
    async def test_healthy_provider(self, audit_sink, ctx):
        runtime = _runtime(audit_sink, ScriptedAdapter())
        result = await runtime.open_session(ctx, requested_provider_id="elevenlabs", voice_session_id="vs_1")

        assert result.success is True
        assert result.provider_id == "elevenlabs"
        assert result.fallback_provider_id is None
        assert audit_sink.named(VOICE_RUNTIME_FAILOVER) == []
        (transition,) = audit_sink.named(VOICE_SESSION_TRANSITION)
        assert transition.payload["voice_state_to"] == "capturing"
        assert transition.schema_validation_status == "passed"

    @pytest.mark.asyncio
    async def test_failover_keeps_session_id_and_is_audited(self, audit_sink, ctx):
        runtime = _runtime(audit_sink, ScriptedAdapter(status=HealthStatus.DEGRADED))
        result = await runtime.open_session(ctx, requested_provider_id="elevenlabs", voice_session_id="vs_1")

        assert result.success is True
        assert result.voice_session_id == "vs_1"
        assert result.provider_id == "browser"
        assert result.fallback_provider_id == "browser"
        assert result.health.status is HealthStatus.DEGRADED

        (event,) = audit_sink.named(VOICE_RUNTIME_FAILOVER)
        assert event.schema_validation_status == "passed"
        assert event.payload["voice_runtime_provider"] == "elevenlabs"
        assert event.payload["voice_failover_provider"] == "browser"
        assert event.payload["voice_failover_reason"] == "elevenlabs_probe_http_503"
        assert event.payload["voice_provider_health_status"] == "degraded"
        assert event.payload["voice_session_id"] == "vs_1"

    @pytest.mark.asyncio
    async def test_missing_credential_failover(self, audit_sink, org_id, session_id):
        ctx = VoiceRuntimeContext(org_id=org_id, session_id=session_id, actor_id="user_1")
        runtime = VoiceRuntime(audit_sink)
        result = await runtime.open_session(ctx, requested_provider_id="elevenlabs")

        assert result.provider_id == "browser"
        assert result.voice_session_id.startswith(f"voice:{session_id}:")
        (event,) = audit_sink.named(VOICE_RUNTIME_FAILOVER)
        assert event.payload["voice_failover_reason"] == "missing_credential"

    @pytest.mark.asyncio
    async def test_browser_requested_has_no_failover(self, audit_sink, ctx):
        runtime = _runtime(audit_sink, ScriptedAdapter())
        result = await runtime.open_session(ctx, requested_provider_id="browser")
        assert result.provider_id == "browser"
        assert result.fallback_provider_id is None
        assert audit_sink.named(VOICE_RUNTIME_FAILOVER) == []


class TestCloseSession:

    @pytest.mark.asyncio
    async def test_close_emits_transition(self, audit_sink, ctx):
        runtime = _runtime(audit_sink, ScriptedAdapter())
        result = await runtime.close_session(ctx, "vs_1", active_provider_id="elevenlabs")

        assert result.success is True
        (transition,) = audit_sink.named(VOICE_SESSION_TRANSITION)
        assert transition.payload["voice_state_to"] == "closed"
        assert transition.payload["voice_transition_reason"] == "voice_session_close"


class TestTranscribe:

    @pytest.mark.asyncio
    async def test_remote_transcription(self, audit_sink, ctx):
        adapter = ScriptedAdapter()
        runtime = _runtime(audit_sink, adapter)
        audio = base64.b64encode(b"pcm").decode("ascii")

        result = await runtime.transcribe(ctx, "vs_1", f"data:audio/webm;base64,{audio}", requested_provider_id="elevenlabs")

        assert result.success is True
        assert result.text == "transcribed"
        assert adapter.transcribed == [b"pcm"]
        (decision,) = audit_sink.named(VOICE_ADAPTIVE_FLOW_DECISION)
        assert decision.schema_validation_status == "passed"

    @pytest.mark.asyncio
    async def test_browser_fallback_requires_local_processing(self, audit_sink, ctx):
        runtime = _runtime(audit_sink, ScriptedAdapter(status=HealthStatus.OFFLINE))
        result = await runtime.transcribe(ctx, "vs_1", b"pcm", requested_provider_id="elevenlabs")

        assert result.success is False
        assert result.requires_local_processing is True
        assert result.error == BROWSER_PROCESSING_REQUIRED
        assert result.voice_session_id == "vs_1"
        assert len(audit_sink.named(VOICE_RUNTIME_FAILOVER)) == 1

    @pytest.mark.asyncio
    async def test_remote_error_is_returned(self, audit_sink, ctx):
        error = VoiceProviderError(normalize_error("elevenlabs", "Invalid audio", 422))
        runtime = _runtime(audit_sink, ScriptedAdapter(fail_with=error))
        result = await runtime.transcribe(ctx, "vs_1", b"pcm", requested_provider_id="elevenlabs")

        assert result.success is False
        assert result.error == "Invalid audio"
        assert audit_sink.named(VOICE_ADAPTIVE_FLOW_DECISION) == []


class TestSynthesize:

    @pytest.mark.asyncio
    async def test_uses_binding_default_voice(self, audit_sink, ctx):
        adapter = ScriptedAdapter()
        runtime = _runtime(audit_sink, adapter)
        result = await runtime.synthesize(ctx, "vs_1", "Hello", requested_provider_id="elevenlabs")

        assert result.success is True
        assert result.audio_base64 == "AAA="
        assert adapter.synthesized_with == ["voice_abc"]

    @pytest.mark.asyncio
    async def test_recovers_without_restart(self, audit_sink, ctx):
        adapter = ScriptedAdapter(status=HealthStatus.DEGRADED)
        runtime = _runtime(audit_sink, adapter)

        first = await runtime.synthesize(ctx, "vs_1", "Hello", requested_provider_id="elevenlabs")
        assert first.provider_id == "browser"
        assert first.requires_local_processing is True

        adapter.status = HealthStatus.HEALTHY
        second = await runtime.synthesize(ctx, "vs_1", "Hello", requested_provider_id="elevenlabs")
        assert second.provider_id == "elevenlabs"
        assert second.fallback_provider_id is None
        assert len(audit_sink.named(VOICE_RUNTIME_FAILOVER)) == 1


class TestDecodeAudio:

    def test_raw_and_data_url(self):
        encoded = base64.b64encode(b"abc").decode("ascii")
        assert decode_base64_audio(encoded) == b"abc"
        assert decode_base64_audio(f"data:audio/wav;base64,{encoded}") == b"abc"
