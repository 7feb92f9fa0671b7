# switchboard/transport/client.py
"""
Completion calls over resolved bindings.

``send_completion`` performs one upstream request and returns either a
``NormalizedCompletion`` or a ``NormalizedError``; it does not raise for
provider or transport failures.

``complete_with_rotation`` walks the ordered bindings: rotatable failures
(auth, rate limit, quota) put the org profile into cooldown and move on to
the next binding; retryable failures also move on; anything else stops.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence, Union

import aiohttp

from switchboard.core.bindings import BindingSource, ResolvedBinding, is_rotatable_error
from switchboard.infra.credential_store import InMemoryCredentialStore, report_binding_failure
from switchboard.infra.http_client import get_default_session
from switchboard.infra.logging_config import get_logger
from switchboard.transport.normalization import (
    NormalizedCompletion,
    NormalizedError,
    normalize_completion,
    normalize_error,
)
from switchboard.transport.requests import build_completion_request

logger = get_logger(__name__)

CompletionResponse = Union[NormalizedCompletion, NormalizedError]


@dataclass(frozen=True)
class CompletionAttempt:
    provider_id: str
    profile_id: str
    error: NormalizedError | None = None


@dataclass(frozen=True)
class CompletionOutcome:
    completion: NormalizedCompletion | None
    error: NormalizedError | None
    binding: ResolvedBinding | None
    attempts: tuple[CompletionAttempt, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.completion is not None

    @property
    def fallback_reason(self) -> str | None:
        return "auth_profile_rotation" if len(self.attempts) > 1 and self.success else None


async def send_completion(
    binding: ResolvedBinding,
    model: str,
    messages: list[dict[str, Any]],
    *,
    tools: list[dict[str, Any]] | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> CompletionResponse:
    request = build_completion_request(
        binding,
        model,
        messages,
        tools=tools,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    try:
        session = get_default_session()
        async with session.post(request.url, headers=request.headers, json=request.body) as resp:
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                payload = await resp.text()
            if resp.status >= 400:
                return normalize_error(binding.provider_id, payload or f"HTTP {resp.status}", resp.status)
    except TimeoutError as exc:
        return normalize_error(binding.provider_id, f"Request timeout: {exc}")
    except aiohttp.ClientError as exc:
        return normalize_error(binding.provider_id, f"Network error: {exc}")

    return normalize_completion(binding.provider_id, payload)


async def complete_with_rotation(
    bindings: Sequence[ResolvedBinding],
    model: str,
    messages: list[dict[str, Any]],
    *,
    tools: list[dict[str, Any]] | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    store: InMemoryCredentialStore | None = None,
    org_id: str | None = None,
) -> CompletionOutcome:
    """Try bindings in order until one succeeds or a failure is final."""
    attempts: list[CompletionAttempt] = []
    last_error: NormalizedError | None = None

    for binding in bindings:
        response = await send_completion(
            binding,
            model,
            messages,
            tools=tools,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        if isinstance(response, NormalizedCompletion):
            attempts.append(CompletionAttempt(binding.provider_id, binding.profile_id))
            if store is not None and org_id and binding.source is BindingSource.ORG_PROFILE:
                await store.record_success(org_id, binding.profile_id)
            return CompletionOutcome(completion=response, error=None, binding=binding, attempts=tuple(attempts))

        attempts.append(CompletionAttempt(binding.provider_id, binding.profile_id, error=response))
        last_error = response
        logger.warning(
            "Completion failed on profile %s (%s): %s",
            binding.profile_id, response.error_class.value, response.message[:200],
            extra={"provider_id": binding.provider_id, "org_id": org_id} if org_id else {"provider_id": binding.provider_id},
        )

        rotatable = is_rotatable_error(response)
        if store is not None and org_id and rotatable:
            await report_binding_failure(store, org_id, binding, response)
        if not (rotatable or response.retryable):
            break

    return CompletionOutcome(completion=None, error=last_error, binding=None, attempts=tuple(attempts))
