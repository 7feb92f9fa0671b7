# switchboard/voice/adapters.py
"""
Voice runtime backends.

- ``BrowserVoiceAdapter``: the local fallback. Needs no credential, is always
  healthy, and hands speech work back to the client with a
  ``requires_local_processing`` marker instead of raising.
- ``ElevenLabsVoiceAdapter``: remote STT/TTS. Requires an API key at
  construction; a missing key is a programmer error and raises immediately.

Adapters never impose a probe timeout of their own.
"""
from __future__ import annotations

import base64
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import aiohttp

from switchboard.config import settings
from switchboard.core.health import HealthStatus, status_for_http, truncate_reason
from switchboard.infra.http_client import get_probe_session, get_voice_session
from switchboard.infra.logging_config import get_logger
from switchboard.transport.normalization import NormalizedError, normalize_error

logger = get_logger(__name__)

BROWSER_PROVIDER_ID = "browser"
ELEVENLABS_PROVIDER_ID = "elevenlabs"
ELEVENLABS_DEFAULT_BASE_URL = "https://api.elevenlabs.io/v1"


class VoiceAdapterConfigurationError(Exception):
    """Raised when a remote voice adapter is constructed without a credential."""


class VoiceProviderError(Exception):
    """Raised when a remote voice call fails. Carries the normalized error."""

    def __init__(self, error: NormalizedError):
        self.error = error
        super().__init__(error.message)


@dataclass(frozen=True)
class VoiceProviderHealth:
    provider_id: str
    status: HealthStatus
    checked_at: datetime
    reason: str | None = None
    fallback_provider_id: str | None = None
    latency_ms: int | None = None
    voice_count: int | None = None

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "reason": self.reason,
            "fallback_provider_id": self.fallback_provider_id,
            "latency_ms": self.latency_ms,
            "voice_count": self.voice_count,
        }


@dataclass(frozen=True)
class VoiceSessionHandle:
    voice_session_id: str
    provider_id: str
    voice_id: str | None = None


@dataclass(frozen=True)
class TranscriptionResult:
    provider_id: str
    text: str
    requires_local_processing: bool = False


@dataclass(frozen=True)
class SynthesisResult:
    provider_id: str
    mime_type: str | None = None
    audio_base64: str | None = None
    requires_local_processing: bool = False


class VoiceRuntimeAdapter(ABC):
    """Contract shared by every voice backend."""

    provider_id: str

    @abstractmethod
    async def probe_health(self) -> VoiceProviderHealth: ...

    @abstractmethod
    async def open_session(
        self,
        voice_session_id: str,
        *,
        org_id: str,
        session_id: str,
        voice_id: str | None = None,
    ) -> VoiceSessionHandle: ...

    @abstractmethod
    async def close_session(self, voice_session_id: str, reason: str) -> None: ...

    @abstractmethod
    async def transcribe(
        self,
        voice_session_id: str,
        audio: bytes,
        *,
        mime_type: str = "audio/webm",
        language: str | None = None,
    ) -> TranscriptionResult: ...

    @abstractmethod
    async def synthesize(
        self,
        voice_session_id: str,
        text: str,
        *,
        voice_id: str | None = None,
    ) -> SynthesisResult: ...


class BrowserVoiceAdapter(VoiceRuntimeAdapter):
    """Client-side speech. Always available."""

    provider_id = BROWSER_PROVIDER_ID

    async def probe_health(self) -> VoiceProviderHealth:
        return VoiceProviderHealth(
            provider_id=self.provider_id,
            status=HealthStatus.HEALTHY,
            checked_at=datetime.now(timezone.utc),
        )

    async def open_session(self, voice_session_id, *, org_id, session_id, voice_id=None):
        return VoiceSessionHandle(voice_session_id=voice_session_id, provider_id=self.provider_id, voice_id=voice_id)

    async def close_session(self, voice_session_id, reason):
        return None

    async def transcribe(self, voice_session_id, audio, *, mime_type="audio/webm", language=None):
        return TranscriptionResult(provider_id=self.provider_id, text="", requires_local_processing=True)

    async def synthesize(self, voice_session_id, text, *, voice_id=None):
        return SynthesisResult(provider_id=self.provider_id, requires_local_processing=True)


class ElevenLabsVoiceAdapter(VoiceRuntimeAdapter):
    """
    ElevenLabs REST API.

    probe:      GET  {base}/voices
    transcribe: POST {base}/speech-to-text   (multipart)
    synthesize: POST {base}/text-to-speech/{voice_id}
    """

    provider_id = ELEVENLABS_PROVIDER_ID

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str | None = None,
        default_voice_id: str | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_voice_session,
        probe_session_factory: Callable[[], aiohttp.ClientSession] = get_probe_session,
    ):
        if not api_key or not api_key.strip():
            raise VoiceAdapterConfigurationError("ElevenLabs adapter requires an API key")
        self._api_key = api_key.strip()
        self._base_url = (base_url or ELEVENLABS_DEFAULT_BASE_URL).rstrip("/")
        self._default_voice_id = default_voice_id or settings.elevenlabs_default_voice_id
        self._session_factory = session_factory
        self._probe_session_factory = probe_session_factory

    def _headers(self, accept: str = "application/json") -> dict[str, str]:
        return {"xi-api-key": self._api_key, "Accept": accept}

    async def _raise_for_status(self, resp: aiohttp.ClientResponse) -> None:
        if resp.status < 400:
            return
        try:
            payload = await resp.json(content_type=None)
        except ValueError:
            payload = await resp.text()
        raise VoiceProviderError(normalize_error(self.provider_id, payload or f"HTTP {resp.status}", resp.status))

    async def probe_health(self) -> VoiceProviderHealth:
        checked_at = datetime.now(timezone.utc)
        started = time.monotonic()
        try:
            session = self._probe_session_factory()
            async with session.get(f"{self._base_url}/voices", headers=self._headers()) as resp:
                latency_ms = int((time.monotonic() - started) * 1000)
                if resp.status >= 400:
                    logger.warning(
                        "ElevenLabs probe returned status %d", resp.status,
                        extra={"provider_id": self.provider_id},
                    )
                    return VoiceProviderHealth(
                        provider_id=self.provider_id,
                        status=status_for_http(resp.status),
                        checked_at=checked_at,
                        reason=f"elevenlabs_probe_http_{resp.status}",
                        latency_ms=latency_ms,
                    )
                payload = await resp.json(content_type=None)

        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            logger.warning(
                "ElevenLabs probe failed: %s", exc,
                extra={"provider_id": self.provider_id},
            )
            return VoiceProviderHealth(
                provider_id=self.provider_id,
                status=HealthStatus.DEGRADED,
                checked_at=checked_at,
                reason=truncate_reason(str(exc)) or "elevenlabs_probe_failed",
                latency_ms=int((time.monotonic() - started) * 1000),
            )

        voices = payload.get("voices") if isinstance(payload, dict) else None
        return VoiceProviderHealth(
            provider_id=self.provider_id,
            status=HealthStatus.HEALTHY,
            checked_at=checked_at,
            latency_ms=latency_ms,
            voice_count=len(voices) if isinstance(voices, list) else None,
        )

    async def open_session(self, voice_session_id, *, org_id, session_id, voice_id=None):
        # Stateless REST API: nothing to open remotely
        return VoiceSessionHandle(
            voice_session_id=voice_session_id,
            provider_id=self.provider_id,
            voice_id=voice_id or self._default_voice_id,
        )

    async def close_session(self, voice_session_id, reason):
        return None

    async def transcribe(self, voice_session_id, audio, *, mime_type="audio/webm", language=None):
        form = aiohttp.FormData()
        form.add_field("model_id", settings.elevenlabs_stt_model_id)
        if language:
            form.add_field("language_code", language)
        form.add_field("file", audio, filename="audio", content_type=mime_type)

        session = self._session_factory()
        async with session.post(
            f"{self._base_url}/speech-to-text",
            headers=self._headers(),
            data=form,
        ) as resp:
            await self._raise_for_status(resp)
            payload = await resp.json(content_type=None)

        text = payload.get("text") if isinstance(payload, dict) else None
        return TranscriptionResult(provider_id=self.provider_id, text=text if isinstance(text, str) else "")

    async def synthesize(self, voice_session_id, text, *, voice_id=None):
        voice = voice_id or self._default_voice_id
        if not voice:
            raise VoiceProviderError(
                normalize_error(self.provider_id, "No voice id configured for synthesis", 400)
            )

        session = self._session_factory()
        async with session.post(
            f"{self._base_url}/text-to-speech/{voice}",
            headers={**self._headers(accept="audio/mpeg"), "Content-Type": "application/json"},
            json={"text": text, "model_id": settings.elevenlabs_tts_model_id},
        ) as resp:
            await self._raise_for_status(resp)
            audio = await resp.read()
            mime_type = resp.headers.get("Content-Type", "audio/mpeg")

        return SynthesisResult(
            provider_id=self.provider_id,
            mime_type=mime_type,
            audio_base64=base64.b64encode(audio).decode("ascii"),
        )
