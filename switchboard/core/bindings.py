# switchboard/core/bindings.py
"""
Binding resolution: which credentialed provider instance serves a request.

Credential sources, in priority order:
1. Organization credential profiles (explicit priority, else list position)
2. The legacy single global key, mapped to the default provider
3. Platform environment keys, one per provider

``resolve_bindings`` is pure: it reads only its arguments, never ``settings``
or the process environment, and is safe to call concurrently.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from switchboard.core.catalog import ProviderCatalog
from switchboard.infra.logging_config import mask_secret


LEGACY_KEY_PRIORITY = 1000
ENV_KEY_PRIORITY_BASE = 10000

# Synthetic profile ids carry a ":" that sanitize_profile_id never emits
LEGACY_PROFILE_ID = "legacy:global_key"
ENV_PROFILE_ID = "env:platform"

# Environment endpoint for the OpenAI-compatible family
ENV_ENDPOINT_NAMES: dict[str, str] = {
    "openai_compatible": "OPENAI_COMPATIBLE_BASE_URL",
}

ROTATABLE_ERROR_CLASSES = frozenset({"auth", "rate_limit", "quota"})


class CredentialSource(str, Enum):
    PLATFORM_ENV = "platform_env"
    PLATFORM_VAULT = "platform_vault"
    ORGANIZATION_SETTING = "organization_setting"
    ORGANIZATION_AUTH_PROFILE = "organization_auth_profile"
    INTEGRATION_CONNECTION = "integration_connection"


class BillingSource(str, Enum):
    PLATFORM = "platform"
    BYOK = "byok"
    PRIVATE = "private"


class BindingSource(str, Enum):
    ORG_PROFILE = "org_profile"
    LEGACY_KEY = "legacy_key"
    PLATFORM_ENV = "platform_env"


_SOURCE_RANK = {
    BindingSource.ORG_PROFILE: 0,
    BindingSource.LEGACY_KEY: 1,
    BindingSource.PLATFORM_ENV: 2,
}


@dataclass(frozen=True)
class CredentialProfile:
    """A stored, provider-scoped secret plus its configuration."""
    profile_id: str
    provider_id: str
    label: str = ""
    endpoint_override: str | None = None
    credential_source: CredentialSource = CredentialSource.ORGANIZATION_AUTH_PROFILE
    billing_source: BillingSource = BillingSource.BYOK
    secret: str | None = field(default=None, repr=False)
    capabilities: dict[str, bool] = field(default_factory=dict)
    enabled: bool = True
    priority: int | None = None
    cooldown_until: datetime | None = None
    failure_count: int = 0
    last_failure_reason: str | None = None
    last_failure_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def in_cooldown(self, now: datetime) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now


@dataclass(frozen=True)
class FallbackMetadata:
    used_fallback: bool = False
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedBinding:
    """A (provider, credential, endpoint, priority) tuple ready to authenticate a request."""
    provider_id: str
    profile_id: str
    secret: str = field(repr=False)
    endpoint: str
    priority: int
    source: BindingSource
    credential_source: CredentialSource
    billing_source: BillingSource
    fallback: FallbackMetadata = field(default_factory=FallbackMetadata)
    capabilities: dict[str, bool] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


def _resolve_endpoint(
    catalog: ProviderCatalog,
    provider_id: str,
    override: str | None,
    env_endpoints: Mapping[str, str],
) -> tuple[str, list[str]]:
    """Explicit override, then environment default (compatible family), then catalog default."""
    if override and override.strip():
        return override.strip(), []

    descriptor = catalog.require(provider_id)
    env_endpoint = env_endpoints.get(provider_id) if descriptor.supports_custom_endpoint else None
    if env_endpoint and env_endpoint.strip():
        return env_endpoint.strip(), ["endpoint_from_environment"]

    return descriptor.default_endpoint, ["endpoint_from_catalog_default"]


def _make_binding(
    catalog: ProviderCatalog,
    *,
    provider_id: str,
    profile_id: str,
    secret: str,
    override: str | None,
    priority: int,
    source: BindingSource,
    credential_source: CredentialSource,
    billing_source: BillingSource,
    env_endpoints: Mapping[str, str],
    capabilities: dict[str, bool] | None = None,
    metadata: dict[str, Any] | None = None,
    extra_reasons: Iterable[str] = (),
) -> ResolvedBinding:
    endpoint, reasons = _resolve_endpoint(catalog, provider_id, override, env_endpoints)
    reasons = [*extra_reasons, *reasons]
    return ResolvedBinding(
        provider_id=provider_id,
        profile_id=profile_id,
        secret=secret,
        endpoint=endpoint,
        priority=priority,
        source=source,
        credential_source=credential_source,
        billing_source=billing_source,
        fallback=FallbackMetadata(used_fallback=bool(reasons), reasons=tuple(reasons)),
        capabilities=dict(capabilities or {}),
        metadata=dict(metadata or {}),
    )


def _sort_key(binding: ResolvedBinding) -> tuple:
    return (
        binding.priority,
        binding.provider_id,
        _SOURCE_RANK[binding.source],
        binding.profile_id,
    )


def resolve_bindings(
    catalog: ProviderCatalog,
    profiles: Iterable[CredentialProfile],
    *,
    legacy_key: str | None = None,
    env_keys: Mapping[str, str] | None = None,
    env_endpoints: Mapping[str, str] | None = None,
    target_provider: str | None = None,
    default_provider_id: str = "openrouter",
    now: datetime | None = None,
    default_billing_source: BillingSource = BillingSource.BYOK,
) -> list[ResolvedBinding]:
    """
    Resolve every usable binding, best first.

    Output is ordered by (priority, provider id, profile id) and holds at most
    one binding per (provider, profile). When an org profile and a fallback
    key share priority and provider, the org profile sorts first.
    """
    now = now or datetime.now(timezone.utc)
    env_keys = env_keys or {}
    env_endpoints = env_endpoints or {}

    candidates: list[ResolvedBinding] = []

    for index, profile in enumerate(profiles):
        if not profile.enabled:
            continue
        if not profile.secret or not profile.secret.strip():
            continue
        if profile.provider_id not in catalog:
            continue
        if profile.in_cooldown(now):
            continue
        priority = profile.priority if profile.priority is not None else index
        candidates.append(
            _make_binding(
                catalog,
                provider_id=profile.provider_id,
                profile_id=profile.profile_id,
                secret=profile.secret.strip(),
                override=profile.endpoint_override,
                priority=priority,
                source=BindingSource.ORG_PROFILE,
                credential_source=profile.credential_source,
                billing_source=profile.billing_source,
                env_endpoints=env_endpoints,
                capabilities=profile.capabilities,
                metadata=profile.metadata,
            )
        )

    if legacy_key and legacy_key.strip() and default_provider_id in catalog:
        candidates.append(
            _make_binding(
                catalog,
                provider_id=default_provider_id,
                profile_id=LEGACY_PROFILE_ID,
                secret=legacy_key.strip(),
                override=None,
                priority=LEGACY_KEY_PRIORITY,
                source=BindingSource.LEGACY_KEY,
                credential_source=CredentialSource.ORGANIZATION_SETTING,
                billing_source=default_billing_source,
                env_endpoints=env_endpoints,
                extra_reasons=("credential_from_legacy_key",),
            )
        )

    env_index = 0
    for provider_id, key in env_keys.items():
        if provider_id not in catalog or not key or not key.strip():
            continue
        candidates.append(
            _make_binding(
                catalog,
                provider_id=provider_id,
                profile_id=ENV_PROFILE_ID,
                secret=key.strip(),
                override=None,
                priority=ENV_KEY_PRIORITY_BASE + env_index,
                source=BindingSource.PLATFORM_ENV,
                credential_source=CredentialSource.PLATFORM_ENV,
                billing_source=BillingSource.PLATFORM,
                env_endpoints=env_endpoints,
                extra_reasons=("credential_from_platform_env",),
            )
        )
        env_index += 1

    # Dedupe by (provider, profile): lowest priority wins, earlier candidate on ties
    deduped: dict[tuple[str, str], ResolvedBinding] = {}
    for binding in candidates:
        key = (binding.provider_id, binding.profile_id)
        current = deduped.get(key)
        if current is None or binding.priority < current.priority:
            deduped[key] = binding

    result = sorted(deduped.values(), key=_sort_key)
    if target_provider:
        result = [b for b in result if b.provider_id == target_provider]
    return result


def resolve_first_binding(
    catalog: ProviderCatalog,
    profiles: Iterable[CredentialProfile],
    *,
    legacy_key: str | None = None,
    env_keys: Mapping[str, str] | None = None,
    env_endpoints: Mapping[str, str] | None = None,
    target_provider: str | None = None,
    default_provider_id: str = "openrouter",
    now: datetime | None = None,
    default_billing_source: BillingSource = BillingSource.BYOK,
) -> ResolvedBinding | None:
    """Best binding for the request, or None."""
    bindings = resolve_bindings(
        catalog,
        profiles,
        legacy_key=legacy_key,
        env_keys=env_keys,
        env_endpoints=env_endpoints,
        target_provider=target_provider,
        default_provider_id=default_provider_id,
        now=now,
        default_billing_source=default_billing_source,
    )
    return bindings[0] if bindings else None


def strip_secret(binding: ResolvedBinding) -> dict[str, Any]:
    """
    Client-safe projection of a binding.

    Every read path that returns binding data goes through here; the
    secret is replaced by its masked form.
    """
    data = {
        f.name: getattr(binding, f.name)
        for f in dataclasses.fields(binding)
        if f.name != "secret"
    }
    data["source"] = binding.source.value
    data["credential_source"] = binding.credential_source.value
    data["billing_source"] = binding.billing_source.value
    data["fallback"] = {
        "used_fallback": binding.fallback.used_fallback,
        "reasons": list(binding.fallback.reasons),
    }
    data["capabilities"] = dict(binding.capabilities)
    data["metadata"] = dict(binding.metadata)
    data["masked_secret"] = mask_secret(binding.secret)
    return data


# ---------------------------------------------------------------------------
# Environment collection (edge helpers, callers pass os.environ)
# ---------------------------------------------------------------------------

def collect_env_keys(environ: Mapping[str, str], catalog: ProviderCatalog) -> dict[str, str]:
    """One key per provider: the canonical variable, else the first set alias."""
    keys: dict[str, str] = {}
    for descriptor in catalog:
        for name in descriptor.env_key_names:
            value = (environ.get(name) or "").strip()
            if value:
                keys[descriptor.provider_id] = value
                break
    return keys


def collect_env_endpoints(environ: Mapping[str, str]) -> dict[str, str]:
    endpoints: dict[str, str] = {}
    for provider_id, name in ENV_ENDPOINT_NAMES.items():
        value = (environ.get(name) or "").strip()
        if value:
            endpoints[provider_id] = value
    return endpoints


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------

def cooldown_seconds_for(
    failure_count: int,
    *,
    base_seconds: int = 60,
    max_seconds: int = 3600,
) -> int:
    """Exponential cooldown: base * 2^(n-1), capped. Zero failures means no cooldown."""
    if failure_count <= 0:
        return 0
    exponent = min(failure_count - 1, 30)
    return min(base_seconds * (2 ** exponent), max_seconds)


def is_rotatable_error(error: Any) -> bool:
    """True when the failure should push the profile into cooldown."""
    error_class = getattr(error, "error_class", None)
    value = getattr(error_class, "value", error_class)
    return value in ROTATABLE_ERROR_CLASSES
