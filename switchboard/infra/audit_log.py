# switchboard/infra/audit_log.py
"""
Audit logging for provider runtime decisions.

Two layers:
- ``audit_event``: free-form administrative actions (credential upsert,
  revoke) logged at INFO to the dedicated "audit" logger.
- Trust events: structured, versioned payloads for voice failover,
  voice session transitions and tool guardrail decisions. They are
  validated against the taxonomy below and written to an ``AuditSink``.

Invalid trust events are still recorded, tagged with
``schema_validation_status="failed"``. Audit never drops a record.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

# Dedicated audit logger, separate from the app logger.
_audit_logger = logging.getLogger("audit")


TRUST_EVENT_TAXONOMY_VERSION = "2026-02-19.v3"

TRUST_EVENT_NAME_PATTERN = re.compile(
    r"^trust\.[a-z0-9_]+\.[a-z0-9_]+(?:\.[a-z0-9_]+)?\.v1$"
)

TRUST_EVENT_MODES = ("lifecycle", "setup", "agents", "admin", "runtime")
TRUST_EVENT_LEGACY_MODES = {"brain": "lifecycle"}
TRUST_ACTOR_TYPES = ("user", "agent", "admin", "system", "workflow")

TRUST_EVENT_BASE_REQUIRED_FIELDS = (
    "event_id",
    "event_version",
    "occurred_at",
    "org_id",
    "mode",
    "channel",
    "session_id",
    "actor_type",
    "actor_id",
)

VOICE_SESSION_TRANSITION = "trust.voice.session_transition.v1"
VOICE_ADAPTIVE_FLOW_DECISION = "trust.voice.adaptive_flow_decision.v1"
VOICE_RUNTIME_FAILOVER = "trust.voice.runtime_failover_triggered.v1"
GUARDRAIL_POLICY_EVALUATED = "trust.guardrail.policy_evaluated.v1"
GUARDRAIL_POLICY_BLOCKED = "trust.guardrail.policy_blocked.v1"
GUARDRAIL_POLICY_OVERRIDDEN = "trust.guardrail.policy_overridden.v1"

_VOICE_SESSION_FIELDS = (
    "voice_session_id",
    "voice_state_from",
    "voice_state_to",
    "voice_transition_reason",
    "voice_runtime_provider",
)
_VOICE_ADAPTIVE_FIELDS = (
    "voice_session_id",
    "adaptive_phase_id",
    "adaptive_decision",
    "adaptive_confidence",
    "consent_checkpoint_id",
)
_VOICE_FAILOVER_FIELDS = (
    "voice_session_id",
    "voice_runtime_provider",
    "voice_failover_provider",
    "voice_failover_reason",
    "voice_provider_health_status",
)
_GUARDRAIL_FIELDS = (
    "policy_type",
    "policy_id",
    "tool_name",
    "enforcement_decision",
    "override_source",
)


@dataclass(frozen=True)
class TrustEventSpec:
    allowed_modes: tuple[str, ...]
    required_fields: tuple[str, ...]


TRUST_EVENT_SPECS: dict[str, TrustEventSpec] = {
    VOICE_SESSION_TRANSITION: TrustEventSpec(("lifecycle",), _VOICE_SESSION_FIELDS),
    VOICE_ADAPTIVE_FLOW_DECISION: TrustEventSpec(("lifecycle", "runtime"), _VOICE_ADAPTIVE_FIELDS),
    VOICE_RUNTIME_FAILOVER: TrustEventSpec(("lifecycle", "runtime"), _VOICE_FAILOVER_FIELDS),
    GUARDRAIL_POLICY_EVALUATED: TrustEventSpec(("agents", "runtime"), _GUARDRAIL_FIELDS),
    GUARDRAIL_POLICY_BLOCKED: TrustEventSpec(("agents", "runtime"), _GUARDRAIL_FIELDS),
    GUARDRAIL_POLICY_OVERRIDDEN: TrustEventSpec(("agents", "runtime"), _GUARDRAIL_FIELDS),
}


def audit_event(
    action: str,
    *,
    org_id: str | None = None,
    provider_id: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an administrative audit event.

    Args:
        action: Action name (e.g., "credential.upsert", "credential.revoke")
        org_id: Organization affected (if applicable)
        provider_id: Provider affected (if applicable)
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "org_id": org_id or "",
        "provider_id": provider_id or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} org={org_id or '-'} provider={provider_id or '-'} {detail}",
        extra=record,
    )


# ---------------------------------------------------------------------------
# Trust events
# ---------------------------------------------------------------------------

def normalize_trust_event_mode(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    if value in TRUST_EVENT_MODES:
        return value
    return TRUST_EVENT_LEGACY_MODES.get(value)


def _has_value(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value == value and value not in (float("inf"), float("-inf"))
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return value is not None


def validate_trust_event_payload(event_name: str, payload: dict[str, Any]) -> list[str]:
    """
    Validate a trust event payload against the taxonomy.

    Returns:
        List of error messages (empty = valid)
    """
    errors: list[str] = []

    if not TRUST_EVENT_NAME_PATTERN.match(event_name or ""):
        errors.append(
            "event name must match trust.<surface>.<action>.v1 "
            "or trust.<surface>.<domain>.<action>.v1"
        )

    spec = TRUST_EVENT_SPECS.get(event_name)
    if spec is None:
        errors.append(f'event name "{event_name}" is not registered in trust taxonomy')

    raw_mode = payload.get("mode")
    mode = normalize_trust_event_mode(raw_mode)
    if mode is None:
        allowed = ", ".join([*TRUST_EVENT_MODES, *TRUST_EVENT_LEGACY_MODES])
        errors.append(f"mode must be one of: {allowed}")
    elif spec is not None and mode not in spec.allowed_modes:
        errors.append(
            f'mode "{raw_mode}" (normalized to "{mode}") is not allowed for event "{event_name}"'
        )

    actor_type = payload.get("actor_type")
    if _has_value(actor_type) and actor_type not in TRUST_ACTOR_TYPES:
        errors.append(f"actor_type must be one of: {', '.join(TRUST_ACTOR_TYPES)}")

    missing_base = [f for f in TRUST_EVENT_BASE_REQUIRED_FIELDS if not _has_value(payload.get(f))]
    if missing_base:
        errors.append(f"missing base fields: {', '.join(missing_base)}")

    if spec is not None:
        missing_extra = [f for f in spec.required_fields if not _has_value(payload.get(f))]
        if missing_extra:
            errors.append(f"missing event-specific fields: {', '.join(missing_extra)}")

    return errors


def build_trust_event(
    event_name: str,
    *,
    org_id: str,
    session_id: str,
    mode: str,
    channel: str,
    actor_id: str,
    actor_type: str = "system",
    occurred_at: datetime | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Assemble the base trust event payload plus event-specific fields."""
    occurred = occurred_at or datetime.now(timezone.utc)
    occurred_ms = int(occurred.timestamp() * 1000)
    payload: dict[str, Any] = {
        "event_id": f"{event_name}:{session_id}:{occurred_ms}",
        "event_version": TRUST_EVENT_TAXONOMY_VERSION,
        "occurred_at": occurred_ms,
        "org_id": org_id,
        "mode": mode,
        "channel": channel,
        "session_id": session_id,
        "actor_type": actor_type,
        "actor_id": actor_id,
    }
    payload.update(fields)
    return payload


class AuditSink(Protocol):
    """Destination for trust events."""

    async def record(self, event_name: str, payload: dict[str, Any]) -> None:
        ...


class LoggingAuditSink:
    """Writes trust events to the "audit" logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or _audit_logger

    async def record(self, event_name: str, payload: dict[str, Any]) -> None:
        errors = validate_trust_event_payload(event_name, payload)
        status = "failed" if errors else "passed"
        if errors:
            self._logger.warning(
                f"TRUST: {event_name} schema validation failed: {'; '.join(errors)}",
                extra={"trust_event": event_name, "schema_validation_status": status},
            )
        self._logger.info(
            f"TRUST: {event_name} org={payload.get('org_id', '-')} "
            f"session={payload.get('session_id', '-')}",
            extra={
                "trust_event": event_name,
                "schema_validation_status": status,
                "trust_payload": payload,
            },
        )


@dataclass(frozen=True)
class RecordedTrustEvent:
    event_name: str
    payload: dict[str, Any]
    schema_validation_status: str
    schema_validation_errors: tuple[str, ...] = ()


class MemoryAuditSink:
    """Keeps trust events in memory (tests, local runs)."""

    def __init__(self):
        self.events: list[RecordedTrustEvent] = []

    async def record(self, event_name: str, payload: dict[str, Any]) -> None:
        errors = validate_trust_event_payload(event_name, payload)
        self.events.append(
            RecordedTrustEvent(
                event_name=event_name,
                payload=dict(payload),
                schema_validation_status="failed" if errors else "passed",
                schema_validation_errors=tuple(errors),
            )
        )

    def named(self, event_name: str) -> list[RecordedTrustEvent]:
        return [e for e in self.events if e.event_name == event_name]
