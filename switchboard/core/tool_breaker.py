# switchboard/core/tool_breaker.py
"""
Per-session tool circuit breaker.

State is an explicit value: rehydrate it with ``ToolFailureState.from_persisted``
at turn start, pass it to ``execute_tool_calls``, and persist the patch from
``build_tool_error_state_patch`` afterwards. Nothing here is module-level
mutable state, so concurrent sessions never share counters.

Calls in one batch run strictly in request order: a failure earlier in the
batch can disable a tool requested later in the same batch.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from switchboard.core.ports import ApprovalPolicy, ToolRegistry
from switchboard.infra.audit_log import AuditSink, GUARDRAIL_POLICY_BLOCKED, build_trust_event
from switchboard.infra.logging_config import get_logger
from switchboard.infra.metrics import RuntimeMetrics
from switchboard.transport.normalization import (
    NormalizedToolCall,
    format_tool_error_message,
    format_tool_result_message,
)

logger = get_logger(__name__)

TOOL_DISABLE_THRESHOLD = 3
DEGRADED_TOOL_COUNT = 3
ESCALATION_THRESHOLD = 3

TOOL_CHANNEL = "tool_runtime"


class ToolCallStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    DISABLED = "disabled"
    PENDING_APPROVAL = "pending_approval"


class AutonomyLevel(str, Enum):
    SUPERVISED = "supervised"
    AUTONOMOUS = "autonomous"
    DRAFT_ONLY = "draft_only"


@dataclass(frozen=True)
class ToolFailureState:
    """Consecutive failure counts and the disabled set for one session."""
    failure_counts: Mapping[str, int] = field(default_factory=dict)
    disabled_tools: frozenset[str] = frozenset()

    @classmethod
    def from_persisted(cls, record: Optional[Mapping[str, Any]]) -> ToolFailureState:
        """Rehydrate from a persisted patch (or None for a fresh session)."""
        if not record:
            return cls()

        counts: dict[str, int] = {}
        raw_counts = record.get("failure_counts") or {}
        if isinstance(raw_counts, Mapping):
            for name, count in raw_counts.items():
                if isinstance(count, int) and not isinstance(count, bool) and count > 0:
                    counts[str(name)] = count

        disabled = {str(name) for name in record.get("disabled_tools") or () if name}
        disabled.update(name for name, count in counts.items() if count >= TOOL_DISABLE_THRESHOLD)
        return cls(failure_counts=counts, disabled_tools=frozenset(disabled))

    def is_disabled(self, tool_name: str) -> bool:
        return (
            tool_name in self.disabled_tools
            or self.failure_counts.get(tool_name, 0) >= TOOL_DISABLE_THRESHOLD
        )


@dataclass(frozen=True)
class ToolCallOutcome:
    tool_call_id: str
    tool_name: str
    status: ToolCallStatus
    result: Any = None
    error: str | None = None

    def to_message(self) -> dict[str, Any]:
        """Tool envelope to feed back to the model (chat-completions shape)."""
        if self.status is ToolCallStatus.SUCCESS:
            return format_tool_result_message(self.tool_call_id, self.tool_name, self.result)
        if self.status is ToolCallStatus.PENDING_APPROVAL:
            return format_tool_result_message(
                self.tool_call_id,
                self.tool_name,
                {"status": "pending_approval", "message": "Awaiting human approval."},
            )
        return format_tool_error_message(self.tool_call_id, self.tool_name, self.error or "Tool failed")


@dataclass(frozen=True)
class ToolBatchResult:
    outcomes: tuple[ToolCallOutcome, ...]
    state: ToolFailureState
    newly_disabled: tuple[str, ...] = ()

    def messages(self) -> list[dict[str, Any]]:
        return [o.to_message() for o in self.outcomes]


@dataclass(frozen=True)
class ToolErrorStatePatch:
    disabled_tools: list[str]
    failure_counts: dict[str, int]
    degraded: bool
    degraded_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "disabled_tools": list(self.disabled_tools),
            "failure_counts": dict(self.failure_counts),
            "degraded": self.degraded,
            "degraded_reason": self.degraded_reason,
        }


@dataclass(frozen=True)
class EscalationTrigger:
    reason: str
    urgency: str
    trigger_type: str


# ---------------------------------------------------------------------------
# Approval policy
# ---------------------------------------------------------------------------

def should_require_tool_approval(
    autonomy_level: str,
    tool_name: str,
    require_approval_for: Iterable[str] = (),
) -> bool:
    """
    supervised -> every call needs sign-off
    draft_only -> never (tools only draft)
    autonomous -> only tools on the override list
    """
    level = getattr(autonomy_level, "value", autonomy_level)
    if level == AutonomyLevel.SUPERVISED.value:
        return True
    if level == AutonomyLevel.DRAFT_ONLY.value:
        return False
    return tool_name in set(require_approval_for or ())


class DefaultApprovalPolicy:
    def requires_approval(
        self,
        autonomy_level: str,
        tool_name: str,
        require_approval_for: frozenset[str],
    ) -> bool:
        return should_require_tool_approval(autonomy_level, tool_name, require_approval_for)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def _parse_strict_arguments(arguments: str) -> dict | None:
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def disabled_tool_message(tool_name: str) -> str:
    return (
        f"The tool '{tool_name}' is temporarily unavailable after repeated failures. "
        "Continue without it."
    )


async def execute_tool_calls(
    tool_calls: Sequence[NormalizedToolCall],
    state: ToolFailureState,
    *,
    registry: ToolRegistry,
    autonomy_level: str = AutonomyLevel.AUTONOMOUS.value,
    require_approval_for: Iterable[str] = (),
    approval_policy: ApprovalPolicy | None = None,
    request_approval: Callable[[NormalizedToolCall, dict], Awaitable[None]] | None = None,
    on_tool_disabled: Callable[[str, int], Awaitable[None]] | None = None,
    context: Optional[dict] = None,
) -> ToolBatchResult:
    """
    Execute a batch of tool calls in order and return outcomes plus the
    updated state. The input state is not modified.
    """
    policy = approval_policy or DefaultApprovalPolicy()
    approval_set = frozenset(require_approval_for or ())
    counts: dict[str, int] = dict(state.failure_counts)
    disabled: set[str] = set(state.disabled_tools)
    newly_disabled: list[str] = []
    outcomes: list[ToolCallOutcome] = []

    async def record_failure(name: str) -> None:
        counts[name] = counts.get(name, 0) + 1
        if counts[name] >= TOOL_DISABLE_THRESHOLD and name not in disabled:
            disabled.add(name)
            newly_disabled.append(name)
            RuntimeMetrics.tool_disabled(name)
            logger.warning(
                "Tool %s disabled after %d consecutive failures", name, counts[name],
                extra=_log_extra(context),
            )
            if on_tool_disabled is not None:
                await on_tool_disabled(name, counts[name])

    for call in tool_calls:
        name = call.name

        if name in disabled or counts.get(name, 0) >= TOOL_DISABLE_THRESHOLD:
            outcomes.append(
                ToolCallOutcome(call.id, name, ToolCallStatus.DISABLED, error=disabled_tool_message(name))
            )
            continue

        arguments = _parse_strict_arguments(call.arguments)
        if arguments is None:
            outcomes.append(
                ToolCallOutcome(call.id, name, ToolCallStatus.ERROR, error="Invalid tool arguments: expected a JSON object")
            )
            await record_failure(name)
            continue

        if policy.requires_approval(autonomy_level, name, approval_set):
            if request_approval is not None:
                await request_approval(call, arguments)
            outcomes.append(ToolCallOutcome(call.id, name, ToolCallStatus.PENDING_APPROVAL))
            continue

        try:
            result = await registry.invoke(name, arguments, context)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc, extra=_log_extra(context))
            outcomes.append(ToolCallOutcome(call.id, name, ToolCallStatus.ERROR, error=str(exc) or type(exc).__name__))
            await record_failure(name)
            continue

        counts.pop(name, None)
        outcomes.append(ToolCallOutcome(call.id, name, ToolCallStatus.SUCCESS, result=result))

    for outcome in outcomes:
        RuntimeMetrics.tool_call_result(outcome.status.value)

    return ToolBatchResult(
        outcomes=tuple(outcomes),
        state=ToolFailureState(failure_counts=counts, disabled_tools=frozenset(disabled)),
        newly_disabled=tuple(newly_disabled),
    )


def _log_extra(context: Optional[dict]) -> dict:
    if not context:
        return {}
    return {k: context[k] for k in ("org_id", "session_id") if context.get(k)}


def build_tool_error_state_patch(state: ToolFailureState) -> ToolErrorStatePatch:
    """Persistable view of the breaker state after a batch."""
    disabled = sorted(
        set(state.disabled_tools)
        | {name for name, count in state.failure_counts.items() if count >= TOOL_DISABLE_THRESHOLD}
    )
    degraded = len(disabled) >= DEGRADED_TOOL_COUNT
    return ToolErrorStatePatch(
        disabled_tools=disabled,
        failure_counts={name: count for name, count in sorted(state.failure_counts.items()) if count > 0},
        degraded=degraded,
        degraded_reason=(
            f"{len(disabled)} tools disabled due to repeated failures: {', '.join(disabled)}"
            if degraded else None
        ),
    )


def check_tool_failure_escalation(
    disabled_count: int,
    threshold: int = ESCALATION_THRESHOLD,
) -> EscalationTrigger | None:
    """Escalate to a human once too many tools are disabled."""
    if disabled_count < threshold:
        return None
    return EscalationTrigger(
        reason=(
            f"{disabled_count} tools disabled due to repeated failures; "
            "agent capabilities severely limited"
        ),
        urgency="high",
        trigger_type="tool_failure",
    )


async def emit_tool_disabled_event(
    sink: AuditSink,
    *,
    org_id: str,
    session_id: str,
    tool_name: str,
    failure_count: int,
    actor_id: str = "tool_breaker",
) -> dict[str, Any]:
    """Record the disablement as a guardrail trust event."""
    payload = build_trust_event(
        GUARDRAIL_POLICY_BLOCKED,
        org_id=org_id,
        session_id=session_id,
        mode="runtime",
        channel=TOOL_CHANNEL,
        actor_id=actor_id,
        policy_type="tool_circuit_breaker",
        policy_id=f"tool_failure_threshold_{TOOL_DISABLE_THRESHOLD}",
        tool_name=tool_name,
        enforcement_decision="disabled",
        override_source="none",
        failure_count=failure_count,
    )
    await sink.record(GUARDRAIL_POLICY_BLOCKED, payload)
    return payload
