# switchboard/admin/models.py
"""
Pydantic request/response models for managing AI provider connections.

Response models never carry a plaintext secret; the masked form is the
only representation that leaves the service.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from switchboard.core.bindings import BillingSource
from switchboard.core.catalog import CAPABILITY_KEYS, PROVIDER_IDS


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SaveConnectionRequest(BaseModel):
    """Create or update an organization's connection to a provider."""

    provider_id: str = Field(..., description="Canonical provider id")
    profile_id: str | None = Field(default=None, max_length=128)
    label: str = Field(default="", max_length=256)
    api_key: str | None = Field(default=None, description="New secret; omit to keep the stored one")
    enabled: bool = True
    priority: int | None = Field(default=None, ge=0)
    base_url: str | None = Field(default=None, max_length=512)
    billing_source: BillingSource = BillingSource.BYOK
    capabilities: dict[str, bool] = Field(default_factory=dict)
    default_voice_id: str | None = Field(default=None, max_length=128)

    @field_validator("provider_id")
    @classmethod
    def provider_must_be_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in PROVIDER_IDS:
            raise ValueError(f"provider_id must be one of {list(PROVIDER_IDS)}")
        return v

    @field_validator("capabilities")
    @classmethod
    def capabilities_must_be_known(cls, v: dict[str, bool]) -> dict[str, bool]:
        unknown = set(v) - set(CAPABILITY_KEYS)
        if unknown:
            raise ValueError(f"unknown capability keys: {sorted(unknown)}")
        return v


class ProbeConnectionRequest(BaseModel):
    """Run a health probe against a stored connection."""

    profile_id: str = Field(..., min_length=1)
    probe: str = Field(default="catalog", pattern="^(catalog|text)$")
    model_id: str | None = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class ConnectionSummary(BaseModel):
    """One stored connection, secret masked."""

    profile_id: str
    provider_id: str
    label: str
    enabled: bool
    priority: int | None = None
    has_api_key: bool
    masked_api_key: str | None = None
    endpoint: str | None = None
    credential_source: str
    billing_source: str
    capabilities: dict[str, bool] = Field(default_factory=dict)
    cooldown_until: str | None = None
    failure_count: int = 0
    last_failure_reason: str | None = None
    connection_health: dict[str, Any] | None = None


class ConnectionProbeResult(BaseModel):
    profile_id: str
    provider_id: str
    success: bool
    status: str
    reason: str | None = None
    model_count: int = 0
    model_ids: list[str] = Field(default_factory=list)
    latency_ms: int | None = None


class OkResponse(BaseModel):
    """Generic success response."""

    ok: bool = True
    org_id: str | None = None
    profile_id: str | None = None
