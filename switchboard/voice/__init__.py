# switchboard/voice/__init__.py
"""
Voice runtime -- STT/TTS backends with health-gated browser fallback.

Canonical imports:
    from switchboard.voice import VoiceRuntime, VoiceRuntimeContext
    from switchboard.voice.resolver import resolve_voice_adapter
"""
from switchboard.voice.adapters import (  # noqa: F401
    BrowserVoiceAdapter,
    ElevenLabsVoiceAdapter,
    VoiceAdapterConfigurationError,
    VoiceProviderError,
    VoiceProviderHealth,
    VoiceRuntimeAdapter,
)
from switchboard.voice.resolver import (  # noqa: F401
    ResolvedVoiceAdapter,
    normalize_voice_provider_id,
    resolve_voice_adapter,
)
from switchboard.voice.runtime import (  # noqa: F401
    VoiceOperationResult,
    VoiceRuntime,
    VoiceRuntimeContext,
)
