# switchboard/core/catalog.py
"""
Provider catalog: the closed set of upstream AI providers.

The catalog is an explicitly constructed, immutable value. It is built once
at startup (``build_default_catalog()``) and passed to whatever needs it;
there is no process-wide registry. Construction validates every descriptor
and raises ``CatalogRegistrationError`` on the first bad entry, so a broken
catalog never reaches request handling.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator


PROVIDER_IDS: tuple[str, ...] = (
    "openrouter",
    "openai",
    "anthropic",
    "gemini",
    "grok",
    "mistral",
    "kimi",
    "elevenlabs",
    "openai_compatible",
)

CAPABILITY_KEYS: tuple[str, ...] = ("text", "vision", "audio_in", "audio_out", "tools", "json")


class CatalogRegistrationError(Exception):
    """Raised when a provider descriptor is invalid or registered twice."""


class DiscoverySource(str, Enum):
    CATALOG = "catalog"
    PROVIDER_API = "provider_api"
    MANUAL = "manual"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one upstream provider."""
    provider_id: str
    label: str
    discovery_source: DiscoverySource
    supports_custom_endpoint: bool
    default_endpoint: str
    env_key_names: tuple[str, ...] = ()     # canonical name first, then aliases
    default_capabilities: dict[str, bool] = field(default_factory=dict)


def _capabilities(**enabled: bool) -> dict[str, bool]:
    return {key: bool(enabled.get(key, False)) for key in CAPABILITY_KEYS}


def validate_descriptor(descriptor: ProviderDescriptor) -> list[str]:
    """
    Validate a single descriptor.

    Returns list of error messages (empty = valid).
    """
    errors: list[str] = []

    provider_id = descriptor.provider_id
    if not isinstance(provider_id, str) or not provider_id.strip():
        errors.append("provider_id is required")
    elif provider_id not in PROVIDER_IDS:
        errors.append(f"Unknown provider id: {provider_id}")

    if not isinstance(descriptor.label, str) or not descriptor.label.strip():
        errors.append(f"{provider_id}: label is required")

    if not isinstance(descriptor.discovery_source, DiscoverySource):
        errors.append(f"{provider_id}: invalid discovery source {descriptor.discovery_source!r}")

    if not isinstance(descriptor.supports_custom_endpoint, bool):
        errors.append(f"{provider_id}: supports_custom_endpoint must be a boolean")

    if not isinstance(descriptor.default_endpoint, str) or not descriptor.default_endpoint.strip():
        errors.append(f"{provider_id}: default_endpoint is required")

    return errors


class ProviderCatalog:
    """Immutable, validated set of provider descriptors keyed by id."""

    def __init__(self, descriptors: Iterable[ProviderDescriptor]):
        entries: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            errors = validate_descriptor(descriptor)
            if errors:
                raise CatalogRegistrationError("; ".join(errors))
            if descriptor.provider_id in entries:
                raise CatalogRegistrationError(
                    f"Duplicate provider id: {descriptor.provider_id}"
                )
            entries[descriptor.provider_id] = descriptor
        self._entries = entries

    def get(self, provider_id: str | None) -> ProviderDescriptor | None:
        if not provider_id:
            return None
        return self._entries.get(provider_id)

    def require(self, provider_id: str) -> ProviderDescriptor:
        descriptor = self.get(provider_id)
        if descriptor is None:
            raise KeyError(f"Provider not in catalog: {provider_id}")
        return descriptor

    def ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._entries

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Built-in providers
# ---------------------------------------------------------------------------

_DEFAULT_DESCRIPTORS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        provider_id="openrouter",
        label="OpenRouter",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://openrouter.ai/api/v1",
        env_key_names=("OPENROUTER_API_KEY",),
        default_capabilities=_capabilities(text=True, vision=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="openai",
        label="OpenAI",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.openai.com/v1",
        env_key_names=("OPENAI_API_KEY",),
        default_capabilities=_capabilities(
            text=True, vision=True, audio_in=True, audio_out=True, tools=True, json=True
        ),
    ),
    ProviderDescriptor(
        provider_id="anthropic",
        label="Anthropic",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.anthropic.com/v1",
        env_key_names=("ANTHROPIC_API_KEY",),
        default_capabilities=_capabilities(text=True, vision=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="gemini",
        label="Google Gemini",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://generativelanguage.googleapis.com/v1beta/openai",
        env_key_names=("GEMINI_API_KEY", "GOOGLE_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY"),
        default_capabilities=_capabilities(text=True, vision=True, audio_in=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="grok",
        label="xAI Grok",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.x.ai/v1",
        env_key_names=("XAI_API_KEY", "GROK_API_KEY"),
        default_capabilities=_capabilities(text=True, vision=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="mistral",
        label="Mistral",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.mistral.ai/v1",
        env_key_names=("MISTRAL_API_KEY",),
        default_capabilities=_capabilities(text=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="kimi",
        label="Kimi (Moonshot)",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.moonshot.ai/v1",
        env_key_names=("KIMI_API_KEY",),
        default_capabilities=_capabilities(text=True, tools=True, json=True),
    ),
    ProviderDescriptor(
        provider_id="elevenlabs",
        label="ElevenLabs",
        discovery_source=DiscoverySource.MANUAL,
        supports_custom_endpoint=False,
        default_endpoint="https://api.elevenlabs.io/v1",
        env_key_names=("ELEVENLABS_API_KEY",),
        default_capabilities=_capabilities(audio_in=True, audio_out=True),
    ),
    ProviderDescriptor(
        provider_id="openai_compatible",
        label="OpenAI-compatible",
        discovery_source=DiscoverySource.MANUAL,
        supports_custom_endpoint=True,
        default_endpoint="http://localhost:8000/v1",
        env_key_names=("OPENAI_COMPATIBLE_API_KEY",),
        default_capabilities=_capabilities(text=True, tools=True),
    ),
)


def build_default_catalog() -> ProviderCatalog:
    """Build the catalog of built-in providers."""
    return ProviderCatalog(_DEFAULT_DESCRIPTORS)


def default_capabilities(provider_id: str, catalog: ProviderCatalog | None = None) -> dict[str, bool]:
    """Capability matrix for a newly created profile of ``provider_id``."""
    source = catalog or build_default_catalog()
    descriptor = source.get(provider_id)
    if descriptor is None or not descriptor.default_capabilities:
        return _capabilities(text=True)
    return dict(descriptor.default_capabilities)
