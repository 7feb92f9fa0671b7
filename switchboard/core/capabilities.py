# switchboard/core/capabilities.py
"""
Per-provider capability table and provider/model id helpers.

Adding a provider is a data change here, never a new branch in the
normalization or request-building code.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


DEFAULT_PROVIDER_ID = "openrouter"


class ProtocolFamily(str, Enum):
    CHAT_COMPLETIONS = "chat_completions"
    MESSAGE_BLOCKS = "message_blocks"


class AuthScheme(str, Enum):
    BEARER = "bearer"
    API_KEY_WITH_VERSION = "api_key_with_version"   # x-api-key plus API-version pin
    BEARER_WITH_VENDOR_HEADERS = "bearer_with_vendor_headers"


@dataclass(frozen=True)
class ProviderCapabilities:
    provider_id: str
    supports_tool_calling: bool
    max_tool_rounds: int
    requires_tool_call_id: bool
    protocol_family: ProtocolFamily
    supports_structured_output: bool
    retains_model_prefix: bool = False
    auth_scheme: AuthScheme = AuthScheme.BEARER


_CAPABILITIES: dict[str, ProviderCapabilities] = {
    "openrouter": ProviderCapabilities(
        provider_id="openrouter",
        supports_tool_calling=True,
        max_tool_rounds=5,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=True,
        retains_model_prefix=True,
        auth_scheme=AuthScheme.BEARER_WITH_VENDOR_HEADERS,
    ),
    "openai": ProviderCapabilities(
        provider_id="openai",
        supports_tool_calling=True,
        max_tool_rounds=5,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=True,
    ),
    "anthropic": ProviderCapabilities(
        provider_id="anthropic",
        supports_tool_calling=True,
        max_tool_rounds=5,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.MESSAGE_BLOCKS,
        supports_structured_output=False,
        auth_scheme=AuthScheme.API_KEY_WITH_VERSION,
    ),
    "gemini": ProviderCapabilities(
        provider_id="gemini",
        supports_tool_calling=True,
        max_tool_rounds=3,
        requires_tool_call_id=False,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=True,
    ),
    "grok": ProviderCapabilities(
        provider_id="grok",
        supports_tool_calling=True,
        max_tool_rounds=3,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=True,
    ),
    "mistral": ProviderCapabilities(
        provider_id="mistral",
        supports_tool_calling=True,
        max_tool_rounds=3,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=True,
    ),
    "kimi": ProviderCapabilities(
        provider_id="kimi",
        supports_tool_calling=True,
        max_tool_rounds=3,
        requires_tool_call_id=True,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=False,
    ),
    "elevenlabs": ProviderCapabilities(
        provider_id="elevenlabs",
        supports_tool_calling=False,
        max_tool_rounds=0,
        requires_tool_call_id=False,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=False,
    ),
    "openai_compatible": ProviderCapabilities(
        provider_id="openai_compatible",
        supports_tool_calling=True,
        max_tool_rounds=2,
        requires_tool_call_id=False,
        protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
        supports_structured_output=False,
    ),
}

# Free-form names seen in settings and model ids -> canonical provider id
_PROVIDER_ALIASES: dict[str, str] = {
    "openrouter": "openrouter",
    "open_router": "openrouter",
    "openai": "openai",
    "gpt": "openai",
    "anthropic": "anthropic",
    "claude": "anthropic",
    "gemini": "gemini",
    "google": "gemini",
    "google_ai": "gemini",
    "grok": "grok",
    "xai": "grok",
    "x_ai": "grok",
    "mistral": "mistral",
    "mistralai": "mistral",
    "kimi": "kimi",
    "moonshot": "kimi",
    "moonshotai": "kimi",
    "elevenlabs": "elevenlabs",
    "eleven_labs": "elevenlabs",
    "openai_compatible": "openai_compatible",
    "compatible": "openai_compatible",
    "local": "openai_compatible",
}


def _alias_key(token: str) -> str:
    return token.strip().lower().replace("-", "_").replace(" ", "_").replace(".", "_")


def detect_provider(token: str | None, fallback: str | None = None) -> str:
    """
    Resolve an alias or "<provider>/<model>" composite to a canonical id.

    Unresolved input returns ``fallback`` when it is itself resolvable,
    else the default provider.
    """
    if token and token.strip():
        key = _alias_key(token)
        if key in _PROVIDER_ALIASES:
            return _PROVIDER_ALIASES[key]
        if "/" in token:
            prefix = _alias_key(token.split("/", 1)[0])
            if prefix in _PROVIDER_ALIASES:
                return _PROVIDER_ALIASES[prefix]

    if fallback and _alias_key(fallback) in _PROVIDER_ALIASES:
        return _PROVIDER_ALIASES[_alias_key(fallback)]
    return DEFAULT_PROVIDER_ID


def get_capabilities(provider_id: str) -> ProviderCapabilities:
    """Capability record for a canonical id; unknown ids get the default provider's."""
    return _CAPABILITIES.get(provider_id) or _CAPABILITIES[DEFAULT_PROVIDER_ID]


def normalize_model_for_provider(provider_id: str, model: str) -> str:
    """
    Strip a redundant provider prefix from a composite model id.

    "openai/gpt-4o" -> "gpt-4o" for openai; kept as-is for the router,
    which needs the vendor prefix to route.
    """
    model = (model or "").strip()
    if "/" not in model:
        return model
    if get_capabilities(provider_id).retains_model_prefix:
        return model

    prefix, rest = model.split("/", 1)
    if _PROVIDER_ALIASES.get(_alias_key(prefix)) == provider_id and rest:
        return rest
    return model
