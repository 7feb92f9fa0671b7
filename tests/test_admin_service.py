# tests/test_admin_service.py
"""Tests for the connection admin service."""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pydantic
import pytest

from switchboard.admin.errors import NotFoundError, ValidationError
from switchboard.admin.models import ProbeConnectionRequest, SaveConnectionRequest
from switchboard.admin.service import ConnectionAdminService
from switchboard.core.health import HealthStatus
from switchboard.infra.credential_store import InMemoryCredentialStore
from switchboard.infra.crypto import FernetCrypto
from switchboard.infra.provider_probes import ProviderProbeResult

PROBE_PATH = "switchboard.admin.service.probe_model_catalog"
TEXT_PROBE_PATH = "switchboard.admin.service.probe_text_generation"


def _probe_result(success=True, status=HealthStatus.HEALTHY, reason=None):
    return ProviderProbeResult(
        success=success,
        status=status,
        checked_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        reason=reason,
        model_count=2 if success else 0,
        model_ids=("gpt-4o", "gpt-4o-mini") if success else (),
        latency_ms=42,
    )


class TestRequestModels:

    def test_provider_normalized(self):
        req = SaveConnectionRequest(provider_id=" OpenAI ", api_key="sk")
        assert req.provider_id == "openai"

    def test_unknown_provider_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SaveConnectionRequest(provider_id="acme")

    def test_unknown_capability_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SaveConnectionRequest(provider_id="openai", capabilities={"teleport": True})

    def test_negative_priority_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SaveConnectionRequest(provider_id="openai", priority=-1)

    def test_probe_kind(self):
        assert ProbeConnectionRequest(profile_id="p").probe == "catalog"
        with pytest.raises(pydantic.ValidationError):
            ProbeConnectionRequest(profile_id="p", probe="ping")


class TestConnectionAdminService:

    def setup_method(self):
        self.store = InMemoryCredentialStore(crypto=FernetCrypto(FernetCrypto.generate_key()))
        self.service = ConnectionAdminService(self.store, probe_timeout=0.5)

    @pytest.mark.asyncio
    async def test_save_returns_masked_summary(self, org_id):
        summary = await self.service.save_connection(
            org_id,
            SaveConnectionRequest(provider_id="openai", profile_id="Primary", api_key="sk-abcdef123456"),
        )
        assert summary.profile_id == "primary"
        assert summary.masked_api_key == "sk-a••••3456"
        assert summary.has_api_key is True
        assert "sk-abcdef123456" not in summary.model_dump_json()

    @pytest.mark.asyncio
    async def test_save_default_voice_id_in_metadata(self, org_id):
        await self.service.save_connection(
            org_id,
            SaveConnectionRequest(provider_id="elevenlabs", api_key="xi-0123456789", default_voice_id="v1"),
        )
        (profile,) = await self.store.list_profiles(org_id)
        assert profile.profile_id == "elevenlabs_default"
        assert profile.metadata["default_voice_id"] == "v1"

    @pytest.mark.asyncio
    async def test_save_without_key_is_validation_error(self, org_id):
        with pytest.raises(ValidationError) as excinfo:
            await self.service.save_connection(org_id, SaveConnectionRequest(provider_id="openai"))
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_revoke(self, org_id):
        await self.service.save_connection(
            org_id, SaveConnectionRequest(provider_id="openai", profile_id="p", api_key="sk-abcdef123456")
        )
        response = await self.service.revoke_connection(org_id, "p")
        assert response.ok is True
        assert await self.service.list_connections(org_id) == []

        with pytest.raises(NotFoundError) as excinfo:
            await self.service.revoke_connection(org_id, "p")
        assert excinfo.value.status_code == 404

    @pytest.mark.asyncio
    async def test_probe_records_health(self, org_id):
        await self.service.save_connection(
            org_id, SaveConnectionRequest(provider_id="openai", profile_id="p", api_key="sk-abcdef123456")
        )
        with patch(PROBE_PATH, new=AsyncMock(return_value=_probe_result())) as probe:
            result = await self.service.probe_connection(org_id, ProbeConnectionRequest(profile_id="p"))

        binding = probe.call_args.args[0]
        assert binding.secret == "sk-abcdef123456"
        assert result.success is True
        assert result.model_ids == ["gpt-4o", "gpt-4o-mini"]
        (summary,) = await self.service.list_connections(org_id)
        assert summary.connection_health["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_probe_disabled_profile(self, org_id):
        await self.service.save_connection(
            org_id,
            SaveConnectionRequest(provider_id="openai", profile_id="p", api_key="sk-abcdef123456", enabled=False),
        )
        with patch(TEXT_PROBE_PATH, new=AsyncMock(return_value=_probe_result(False, HealthStatus.OFFLINE, "bad key"))):
            result = await self.service.probe_connection(
                org_id, ProbeConnectionRequest(profile_id="p", probe="text")
            )
        assert result.success is False
        assert result.status == "offline"
        assert result.reason == "bad key"

    @pytest.mark.asyncio
    async def test_probe_timeout(self, org_id):
        await self.service.save_connection(
            org_id, SaveConnectionRequest(provider_id="openai", profile_id="p", api_key="sk-abcdef123456")
        )
        self.service = ConnectionAdminService(self.store, probe_timeout=0.01)
        with patch(PROBE_PATH, new=AsyncMock(side_effect=_slow_probe)):
            result = await self.service.probe_connection(org_id, ProbeConnectionRequest(profile_id="p"))

        assert result.status == "degraded"
        assert result.reason == "probe_timeout"

    @pytest.mark.asyncio
    async def test_probe_unknown_profile(self, org_id):
        with pytest.raises(NotFoundError):
            await self.service.probe_connection(org_id, ProbeConnectionRequest(profile_id="missing"))


async def _slow_probe(*args, **kwargs):
    await asyncio.sleep(1.0)
    return _probe_result()
