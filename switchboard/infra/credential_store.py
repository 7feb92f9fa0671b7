# switchboard/infra/credential_store.py
"""
Organization credential profiles.

Validates profile payloads, keeps secrets encrypted at rest (context-bound
Fernet, see ``crypto.py``) and applies the lifecycle rules around key
rotation, failure cooldowns and connection health.

Backward compatibility:
- If CREDENTIAL_ENCRYPTION_KEY is not set, secrets are held in process
  memory unencrypted so local development keeps working. Production
  refuses to start without the key (``Settings.validate_required_for_production``).

Mutations are last-write-wins per profile.
"""
from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

from switchboard.config import settings
from switchboard.core.bindings import (
    BindingSource,
    CredentialProfile,
    ResolvedBinding,
    cooldown_seconds_for,
    is_rotatable_error,
)
from switchboard.core.catalog import CAPABILITY_KEYS, ProviderCatalog, build_default_catalog, default_capabilities
from switchboard.infra.audit_log import audit_event
from switchboard.infra.crypto import CryptoNotConfiguredError, FernetCrypto, get_crypto
from switchboard.infra.logging_config import get_logger, mask_secret

logger = get_logger(__name__)


class CredentialValidationError(Exception):
    """Raised when a credential profile payload is invalid."""


class CredentialNotFoundError(Exception):
    """Raised when a profile does not exist for the organization."""


# Metadata is stored in clear; secrets belong in the profile secret.
_SECRET_FIELD_NAMES: set[str] = {
    "api_key", "apikey", "secret", "token", "access_token", "password", "key", "api_secret",
}

_PROFILE_ID_RE = re.compile(r"[^a-z0-9_-]+")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def sanitize_profile_id(raw: str | None, provider_id: str) -> str:
    """Lowercase slug; empty input becomes ``{provider}_default``."""
    value = _PROFILE_ID_RE.sub("_", (raw or "").strip().lower()).strip("_")
    return value or f"{provider_id}_default"


def validate_profile_payload(
    catalog: ProviderCatalog,
    profile: CredentialProfile,
    *,
    existing_secret: str | None = None,
) -> list[str]:
    """
    Validate a profile before it is stored.

    Returns list of error messages (empty = valid).
    """
    errors: list[str] = []

    descriptor = catalog.get(profile.provider_id)
    if descriptor is None:
        errors.append(f"Unknown provider: {profile.provider_id}")

    secret = profile.secret if profile.secret and profile.secret.strip() else existing_secret
    if profile.enabled and not secret:
        errors.append("An API key is required to enable this connection")

    unknown_caps = set(profile.capabilities) - set(CAPABILITY_KEYS)
    if unknown_caps:
        errors.append(f"Unknown capability keys: {sorted(unknown_caps)}")

    if profile.endpoint_override:
        parsed = urlparse(profile.endpoint_override.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"Invalid endpoint URL: {profile.endpoint_override}")

    if profile.priority is not None and profile.priority < 0:
        errors.append("priority must be >= 0")

    # SECURITY: secrets must never land in plaintext metadata
    leaked = {k for k in profile.metadata if k.lower() in _SECRET_FIELD_NAMES}
    if leaked:
        errors.append(f"Secret fields must not be stored in metadata: {sorted(leaked)}")

    return errors


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@dataclass
class _StoredProfile:
    profile: CredentialProfile          # secret always None here
    ciphertext: bytes | None = None
    plaintext: str | None = None        # only without an encryption key


class InMemoryCredentialStore:
    """
    Per-organization credential profiles held in memory.

    Profiles are returned in insertion order, which is also the default
    priority order for profiles without an explicit priority.
    """

    def __init__(
        self,
        catalog: ProviderCatalog | None = None,
        crypto: FernetCrypto | None = None,
    ) -> None:
        self._catalog = catalog or build_default_catalog()
        self._crypto = crypto
        self._crypto_checked = crypto is not None
        self._orgs: dict[str, dict[str, _StoredProfile]] = {}

    # -- crypto helpers ----------------------------------------------------

    def _get_crypto(self) -> FernetCrypto | None:
        if not self._crypto_checked:
            self._crypto_checked = True
            try:
                self._crypto = get_crypto()
            except CryptoNotConfiguredError:
                logger.info("CREDENTIAL_ENCRYPTION_KEY not set; profile secrets kept unencrypted in memory")
                self._crypto = None
        return self._crypto

    def _seal(self, org_id: str, profile: CredentialProfile, secret: str | None) -> _StoredProfile:
        stored = dataclasses.replace(profile, secret=None)
        if not secret:
            return _StoredProfile(profile=stored)
        crypto = self._get_crypto()
        if crypto is None:
            return _StoredProfile(profile=stored, plaintext=secret)
        ciphertext = crypto.encrypt_bound(
            {"secret": secret},
            org_id=org_id,
            provider_id=profile.provider_id,
            profile_id=profile.profile_id,
        )
        return _StoredProfile(profile=stored, ciphertext=ciphertext)

    def _unseal(self, org_id: str, stored: _StoredProfile) -> str | None:
        if stored.ciphertext is not None:
            data = self._get_crypto().decrypt_bound(
                stored.ciphertext,
                org_id=org_id,
                provider_id=stored.profile.provider_id,
                profile_id=stored.profile.profile_id,
            )
            return data.get("secret")
        return stored.plaintext

    def _require(self, org_id: str, profile_id: str) -> _StoredProfile:
        stored = self._orgs.get(org_id, {}).get(profile_id)
        if stored is None:
            raise CredentialNotFoundError(f"Profile '{profile_id}' not found for organization '{org_id}'")
        return stored

    def _replace(self, org_id: str, stored: _StoredProfile, **changes: Any) -> CredentialProfile:
        secret = self._unseal(org_id, stored)
        updated = dataclasses.replace(stored.profile, **changes)
        self._orgs[org_id][updated.profile_id] = dataclasses.replace(stored, profile=updated)
        return dataclasses.replace(updated, secret=secret)

    # -- reads -------------------------------------------------------------

    async def list_profiles(self, org_id: str) -> list[CredentialProfile]:
        """Decrypted profiles for binding resolution. Never return these to clients."""
        return [
            dataclasses.replace(stored.profile, secret=self._unseal(org_id, stored))
            for stored in self._orgs.get(org_id, {}).values()
        ]

    async def get_profile(self, org_id: str, profile_id: str) -> CredentialProfile:
        stored = self._require(org_id, profile_id)
        return dataclasses.replace(stored.profile, secret=self._unseal(org_id, stored))

    async def list_connections(self, org_id: str) -> list[dict[str, Any]]:
        """Client-safe projections: masked secret, no plaintext."""
        connections = []
        for stored in self._orgs.get(org_id, {}).values():
            profile = stored.profile
            secret = self._unseal(org_id, stored)
            descriptor = self._catalog.get(profile.provider_id)
            connections.append({
                "profile_id": profile.profile_id,
                "provider_id": profile.provider_id,
                "label": profile.label,
                "enabled": profile.enabled,
                "priority": profile.priority,
                "has_api_key": bool(secret),
                "masked_api_key": mask_secret(secret),
                "endpoint": profile.endpoint_override or (descriptor.default_endpoint if descriptor else None),
                "credential_source": profile.credential_source.value,
                "billing_source": profile.billing_source.value,
                "capabilities": dict(profile.capabilities),
                "cooldown_until": profile.cooldown_until.isoformat() if profile.cooldown_until else None,
                "failure_count": profile.failure_count,
                "last_failure_reason": profile.last_failure_reason,
                "connection_health": profile.metadata.get("connection_health"),
            })
        return connections

    # -- writes ------------------------------------------------------------

    async def upsert_profile(self, org_id: str, profile: CredentialProfile) -> CredentialProfile:
        """
        Create or update a profile.

        - profile id is sanitized (``{provider}_default`` when empty)
        - a new secret resets failure count, cooldown and health
        - a missing secret on update keeps the stored one
        - enabling without any secret is rejected
        - endpoint overrides only apply to providers that support them
        - new profiles without a priority go to the end of the list

        Raises:
            CredentialValidationError: With all accumulated errors
        """
        profiles = self._orgs.setdefault(org_id, {})
        profile_id = sanitize_profile_id(profile.profile_id, profile.provider_id)
        existing = profiles.get(profile_id)
        existing_secret = self._unseal(org_id, existing) if existing else None

        candidate = dataclasses.replace(profile, profile_id=profile_id)
        errors = validate_profile_payload(self._catalog, candidate, existing_secret=existing_secret)
        if existing is not None and existing.profile.provider_id != candidate.provider_id:
            errors.append(
                f"Profile '{profile_id}' belongs to provider '{existing.profile.provider_id}'"
            )
        if errors:
            raise CredentialValidationError("; ".join(errors))

        new_secret = candidate.secret.strip() if candidate.secret and candidate.secret.strip() else None
        rotated = new_secret is not None and new_secret != existing_secret
        secret = new_secret or existing_secret

        descriptor = self._catalog.require(candidate.provider_id)
        endpoint = candidate.endpoint_override.strip() if candidate.endpoint_override else None
        if endpoint and not descriptor.supports_custom_endpoint:
            logger.warning(
                "Ignoring endpoint override: provider does not support custom endpoints",
                extra={"org_id": org_id, "provider_id": candidate.provider_id},
            )
            endpoint = None

        if candidate.priority is not None:
            priority = candidate.priority
        elif existing is not None and existing.profile.priority is not None:
            priority = existing.profile.priority
        else:
            priority = len(profiles)

        metadata = {**(existing.profile.metadata if existing else {}), **candidate.metadata}
        changes: dict[str, Any] = {
            "endpoint_override": endpoint,
            "priority": priority,
            "capabilities": dict(candidate.capabilities) or default_capabilities(candidate.provider_id, self._catalog),
            "metadata": metadata,
        }

        if existing is None or rotated:
            metadata.pop("connection_health", None)
            changes.update(
                cooldown_until=None,
                failure_count=0,
                last_failure_reason=None,
                last_failure_at=None,
            )
        else:
            changes.update(
                cooldown_until=existing.profile.cooldown_until,
                failure_count=existing.profile.failure_count,
                last_failure_reason=existing.profile.last_failure_reason,
                last_failure_at=existing.profile.last_failure_at,
            )

        final = dataclasses.replace(candidate, **changes)
        profiles[profile_id] = self._seal(org_id, final, secret)

        audit_event(
            "credential.upsert",
            org_id=org_id,
            provider_id=final.provider_id,
            detail=f"profile_id={profile_id} rotated={rotated} enabled={final.enabled}",
        )
        return dataclasses.replace(final, secret=secret)

    async def revoke_profile(self, org_id: str, profile_id: str) -> None:
        stored = self._require(org_id, profile_id)
        del self._orgs[org_id][profile_id]
        audit_event(
            "credential.revoke",
            org_id=org_id,
            provider_id=stored.profile.provider_id,
            detail=f"profile_id={profile_id}",
        )

    async def record_failure(
        self,
        org_id: str,
        profile_id: str,
        reason: str,
        *,
        rotatable: bool = True,
        now: datetime | None = None,
    ) -> CredentialProfile:
        """Count a failure; rotatable failures also start an exponential cooldown."""
        now = now or datetime.now(timezone.utc)
        stored = self._require(org_id, profile_id)
        failure_count = stored.profile.failure_count + 1
        cooldown_until = stored.profile.cooldown_until
        if rotatable:
            seconds = cooldown_seconds_for(
                failure_count,
                base_seconds=settings.auth_profile_cooldown_base_seconds,
                max_seconds=settings.auth_profile_cooldown_max_seconds,
            )
            cooldown_until = now + timedelta(seconds=seconds)
            logger.warning(
                "Profile %s in cooldown for %ds after failure #%d: %s",
                profile_id, seconds, failure_count, reason,
                extra={"org_id": org_id, "provider_id": stored.profile.provider_id},
            )
        return self._replace(
            org_id,
            stored,
            failure_count=failure_count,
            cooldown_until=cooldown_until,
            last_failure_reason=reason,
            last_failure_at=now,
        )

    async def record_success(self, org_id: str, profile_id: str) -> CredentialProfile:
        stored = self._require(org_id, profile_id)
        return self._replace(
            org_id,
            stored,
            failure_count=0,
            cooldown_until=None,
            last_failure_reason=None,
        )

    async def record_health(self, org_id: str, profile_id: str, health: dict) -> CredentialProfile:
        stored = self._require(org_id, profile_id)
        metadata = {**stored.profile.metadata, "connection_health": dict(health)}
        return self._replace(org_id, stored, metadata=metadata)


async def report_binding_failure(
    store: InMemoryCredentialStore,
    org_id: str,
    binding: ResolvedBinding,
    error: Any,
) -> CredentialProfile | None:
    """
    Feed a provider error back into the profile's cooldown state.

    Only organization profiles are tracked; legacy and environment keys
    have no stored profile.
    """
    if binding.source is not BindingSource.ORG_PROFILE:
        return None
    return await store.record_failure(
        org_id,
        binding.profile_id,
        getattr(error, "message", str(error))[:180],
        rotatable=is_rotatable_error(error),
    )
