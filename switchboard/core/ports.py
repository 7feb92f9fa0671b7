# switchboard/core/ports.py
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from switchboard.core.bindings import CredentialProfile


# ============================================================================
# Collaborator protocols
# ============================================================================

class ToolRegistry(Protocol):
    def has(self, name: str) -> bool: ...
    async def invoke(self, name: str, arguments: dict, context: Optional[dict] = None) -> Any: ...


class ApprovalPolicy(Protocol):
    def requires_approval(
        self,
        autonomy_level: str,
        tool_name: str,
        require_approval_for: frozenset[str],
    ) -> bool: ...


class ToolFailureStateStore(Protocol):
    async def load(self, session_id: str) -> Optional[dict]: ...
    async def save(self, session_id: str, patch: dict) -> None: ...


class CredentialStore(Protocol):
    async def list_profiles(self, org_id: str) -> list[CredentialProfile]: ...
    async def upsert_profile(self, org_id: str, profile: CredentialProfile) -> CredentialProfile: ...
    async def revoke_profile(self, org_id: str, profile_id: str) -> None: ...
    async def record_failure(self, org_id: str, profile_id: str, reason: str, *, rotatable: bool) -> CredentialProfile: ...
    async def record_success(self, org_id: str, profile_id: str) -> CredentialProfile: ...
    async def record_health(self, org_id: str, profile_id: str, health: dict) -> CredentialProfile: ...


# ============================================================================
# Simple implementations
# ============================================================================

ToolCallable = Callable[..., Union[Any, Awaitable[Any]]]


class DictToolRegistry:
    """
    Tool registry backed by a ``{name: callable}`` mapping.

    Callables receive the parsed arguments as keyword arguments, plus
    ``context`` when their signature accepts it. Sync and async callables
    are both supported.
    """

    def __init__(self, tools: Mapping[str, ToolCallable] | None = None):
        self._tools: dict[str, ToolCallable] = dict(tools or {})

    def register(self, name: str, fn: ToolCallable) -> None:
        self._tools[name] = fn

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    async def invoke(self, name: str, arguments: dict, context: Optional[dict] = None) -> Any:
        fn = self._tools.get(name)
        if fn is None:
            raise LookupError(f"Unknown tool: {name}")

        kwargs = dict(arguments)
        if context is not None and "context" in inspect.signature(fn).parameters:
            kwargs["context"] = context

        result = fn(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
