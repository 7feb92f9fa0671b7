# switchboard/admin/service.py
"""
Connection admin service: the single orchestration point for managing an
organization's AI provider connections.

Responsibilities:
    1. Validate requests (via Pydantic models)
    2. Persist through the credential store
    3. Run connection health probes under a caller-side deadline
    4. Return masked DTOs, never plaintext secrets

Transport layers stay thin: parse request, call service, map AdminError.
"""
from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timezone

from switchboard.admin.errors import NotFoundError, ValidationError
from switchboard.admin.models import (
    ConnectionProbeResult,
    ConnectionSummary,
    OkResponse,
    ProbeConnectionRequest,
    SaveConnectionRequest,
)
from switchboard.config import settings
from switchboard.core.bindings import CredentialProfile, CredentialSource, resolve_first_binding
from switchboard.core.catalog import ProviderCatalog, build_default_catalog
from switchboard.core.health import HealthStatus
from switchboard.infra.audit_log import audit_event
from switchboard.infra.credential_store import (
    CredentialNotFoundError,
    CredentialValidationError,
    InMemoryCredentialStore,
)
from switchboard.infra.logging_config import get_logger
from switchboard.infra.provider_probes import (
    ProviderProbeResult,
    probe_model_catalog,
    probe_text_generation,
)

logger = get_logger(__name__)


class ConnectionAdminService:
    """
    Orchestrates connection management for organizations.

    Stateless apart from its collaborators; safe to use as a singleton.
    """

    def __init__(
        self,
        store: InMemoryCredentialStore,
        catalog: ProviderCatalog | None = None,
        probe_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._catalog = catalog or build_default_catalog()
        self._probe_timeout = probe_timeout if probe_timeout is not None else settings.provider_probe_timeout_seconds

    async def list_connections(self, org_id: str) -> list[ConnectionSummary]:
        return [ConnectionSummary(**c) for c in await self._store.list_connections(org_id)]

    async def save_connection(self, org_id: str, req: SaveConnectionRequest) -> ConnectionSummary:
        """
        Create or update a connection.

        Raises:
            ValidationError: Store-level validation failed
        """
        metadata = {"default_voice_id": req.default_voice_id} if req.default_voice_id else {}
        profile = CredentialProfile(
            profile_id=req.profile_id or "",
            provider_id=req.provider_id,
            label=req.label,
            endpoint_override=req.base_url,
            credential_source=CredentialSource.ORGANIZATION_AUTH_PROFILE,
            billing_source=req.billing_source,
            secret=req.api_key,
            capabilities=dict(req.capabilities),
            enabled=req.enabled,
            priority=req.priority,
            metadata=metadata,
        )
        try:
            saved = await self._store.upsert_profile(org_id, profile)
        except CredentialValidationError as exc:
            raise ValidationError(str(exc))

        for connection in await self.list_connections(org_id):
            if connection.profile_id == saved.profile_id:
                return connection
        raise NotFoundError(f"Connection '{saved.profile_id}' not found after save")

    async def revoke_connection(self, org_id: str, profile_id: str) -> OkResponse:
        try:
            await self._store.revoke_profile(org_id, profile_id)
        except CredentialNotFoundError:
            raise NotFoundError(f"Connection '{profile_id}' not found")
        return OkResponse(org_id=org_id, profile_id=profile_id)

    async def probe_connection(self, org_id: str, req: ProbeConnectionRequest) -> ConnectionProbeResult:
        """
        Probe a stored connection and record the result as its health.

        The probe runs even for disabled or cooling-down profiles; that is
        how an operator checks a key before re-enabling it.
        """
        try:
            profile = await self._store.get_profile(org_id, req.profile_id)
        except CredentialNotFoundError:
            raise NotFoundError(f"Connection '{req.profile_id}' not found")

        binding = resolve_first_binding(
            self._catalog,
            [dataclasses.replace(profile, enabled=True, cooldown_until=None, priority=0)],
            target_provider=profile.provider_id,
        )
        if binding is None:
            raise ValidationError(f"Connection '{req.profile_id}' has no API key")

        if req.probe == "text":
            probe = probe_text_generation(binding, model_id=req.model_id)
        else:
            probe = probe_model_catalog(binding, sample_limit=settings.provider_probe_sample_limit)

        try:
            result = await asyncio.wait_for(probe, timeout=self._probe_timeout)
        except TimeoutError:
            result = ProviderProbeResult(
                success=False,
                status=HealthStatus.DEGRADED,
                checked_at=datetime.now(timezone.utc),
                reason="probe_timeout",
            )

        await self._store.record_health(org_id, profile.profile_id, result.to_health_metadata())
        if result.success:
            await self._store.record_success(org_id, profile.profile_id)

        audit_event(
            "credential.probe",
            org_id=org_id,
            provider_id=profile.provider_id,
            detail=f"profile_id={profile.profile_id} status={result.status.value}",
        )
        return ConnectionProbeResult(
            profile_id=profile.profile_id,
            provider_id=profile.provider_id,
            success=result.success,
            status=result.status.value,
            reason=result.reason,
            model_count=result.model_count,
            model_ids=list(result.model_ids),
            latency_ms=result.latency_ms,
        )
