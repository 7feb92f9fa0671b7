# switchboard/infra/provider_probes.py
"""
Provider health probes over the shared aiohttp probe session.

- ``probe_model_catalog``: GET ``{endpoint}/models`` (read-only)
- ``probe_text_generation``: a tiny completion round trip

Neither probe applies its own timeout. The caller wraps the call in
``asyncio.wait_for`` with a deadline shorter than the operation the probe
guards (``settings.provider_probe_timeout_seconds`` by default). Transport
failures come back as a degraded result instead of raising.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import aiohttp

from switchboard.core.bindings import ResolvedBinding
from switchboard.core.health import HealthStatus, status_for_http, truncate_reason
from switchboard.infra.http_client import get_probe_session
from switchboard.infra.logging_config import get_logger
from switchboard.infra.metrics import RuntimeMetrics
from switchboard.transport.normalization import extract_error_message, normalize_completion
from switchboard.transport.requests import build_auth_headers, build_completion_request

logger = get_logger(__name__)

MAX_SAMPLE_LIMIT = 25
TEXT_PROBE_PROMPT = "Reply with the single word OK."

# Used when the catalog probe yields no model id
DEFAULT_TEXT_PROBE_MODELS: dict[str, str] = {
    "openrouter": "openai/gpt-4o-mini",
    "openai": "gpt-4o-mini",
    "openai_compatible": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "gemini": "gemini-2.0-flash",
    "grok": "grok-2-latest",
    "mistral": "mistral-small-latest",
    "kimi": "moonshot-v1-8k",
}


@dataclass(frozen=True)
class ProviderProbeResult:
    success: bool
    status: HealthStatus
    checked_at: datetime
    reason: str | None = None
    model_count: int = 0
    model_ids: tuple[str, ...] = ()
    model_id: str | None = None
    output_characters: int | None = None
    latency_ms: int | None = None

    def to_health_metadata(self) -> dict[str, Any]:
        """Connection health record as stored on the credential profile."""
        return {
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "reason": self.reason,
            "model_count": self.model_count,
            "latency_ms": self.latency_ms,
        }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _normalize_model_id(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if value.startswith("models/"):
        return value[len("models/"):].strip() or value
    return value


def extract_model_ids(payload: Any) -> list[str]:
    """Model ids from ``data``, ``models`` or ``items`` arrays, deduped in order."""
    if not isinstance(payload, dict):
        return []

    candidates: list[Any] = []
    for key in ("data", "models", "items"):
        if isinstance(payload.get(key), list):
            candidates.extend(payload[key])

    seen: dict[str, None] = {}
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        for key in ("id", "model", "name", "model_id"):
            model_id = _normalize_model_id(candidate.get(key))
            if model_id:
                seen.setdefault(model_id, None)
                break
    return list(seen)


def extract_error_reason(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    message = extract_error_message(payload)
    return truncate_reason(message) if message and message != str(payload) else None


def build_catalog_request(binding: ResolvedBinding) -> tuple[str, dict[str, str]]:
    base = binding.endpoint.rstrip("/")
    if binding.provider_id == "gemini":
        return f"{base}/models?key={quote(binding.secret, safe='')}", {"Accept": "application/json"}

    headers = build_auth_headers(binding.provider_id, binding.secret)
    headers.pop("Content-Type", None)
    headers["Accept"] = "application/json"
    return f"{base}/models", headers


async def _read_error_payload(resp: aiohttp.ClientResponse) -> Any:
    text = await resp.text()
    try:
        return json.loads(text)
    except ValueError:
        return None


async def probe_model_catalog(binding: ResolvedBinding, sample_limit: int = 8) -> ProviderProbeResult:
    """Read-only probe of the provider's model listing."""
    checked_at = datetime.now(timezone.utc)

    if binding.provider_id == "elevenlabs":
        return ProviderProbeResult(
            success=False,
            status=HealthStatus.OFFLINE,
            checked_at=checked_at,
            reason="provider_does_not_expose_model_catalog",
        )

    sample_limit = max(1, min(sample_limit, MAX_SAMPLE_LIMIT))
    url, headers = build_catalog_request(binding)
    started = time.monotonic()

    try:
        session = get_probe_session()
        with RuntimeMetrics.probe_latency(binding.provider_id, "catalog"):
            async with session.get(url, headers=headers) as resp:
                if resp.status >= 400:
                    payload = await _read_error_payload(resp)
                    logger.warning(
                        "Catalog probe returned status %d",
                        resp.status,
                        extra={"provider_id": binding.provider_id},
                    )
                    return ProviderProbeResult(
                        success=False,
                        status=status_for_http(resp.status),
                        checked_at=checked_at,
                        reason=extract_error_reason(payload) or f"provider_probe_http_{resp.status}",
                        latency_ms=_elapsed_ms(started),
                    )

                payload = await resp.json(content_type=None)

    except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
        logger.warning(
            "Catalog probe failed: %s", exc,
            extra={"provider_id": binding.provider_id},
        )
        return ProviderProbeResult(
            success=False,
            status=HealthStatus.DEGRADED,
            checked_at=checked_at,
            reason=truncate_reason(str(exc)) or "provider_probe_failed",
            latency_ms=_elapsed_ms(started),
        )

    model_ids = extract_model_ids(payload)
    return ProviderProbeResult(
        success=True,
        status=HealthStatus.HEALTHY,
        checked_at=checked_at,
        model_count=len(model_ids),
        model_ids=tuple(model_ids[:sample_limit]),
        latency_ms=_elapsed_ms(started),
    )


async def probe_text_generation(
    binding: ResolvedBinding,
    model_id: str | None = None,
    prompt: str | None = None,
) -> ProviderProbeResult:
    """
    Small completion round trip through the request builder and the
    normalization adapter.

    The model is the explicit ``model_id``, else the first catalog model,
    else the provider's default probe model.
    """
    checked_at = datetime.now(timezone.utc)

    if binding.provider_id == "elevenlabs":
        return ProviderProbeResult(
            success=False,
            status=HealthStatus.OFFLINE,
            checked_at=checked_at,
            reason="provider_does_not_support_text_generation",
        )

    catalog = await probe_model_catalog(binding, sample_limit=8)
    model = (
        _normalize_model_id(model_id)
        or (catalog.model_ids[0] if catalog.model_ids else None)
        or DEFAULT_TEXT_PROBE_MODELS.get(binding.provider_id)
    )
    if not model:
        return ProviderProbeResult(
            success=False,
            status=catalog.status,
            checked_at=checked_at,
            reason=catalog.reason or "no_text_probe_model_available",
            model_count=catalog.model_count,
            model_ids=catalog.model_ids,
            latency_ms=catalog.latency_ms,
        )

    request = build_completion_request(
        binding,
        model,
        [{"role": "user", "content": (prompt or "").strip() or TEXT_PROBE_PROMPT}],
        temperature=0,
        max_tokens=24,
    )
    started = time.monotonic()

    try:
        session = get_probe_session()
        with RuntimeMetrics.probe_latency(binding.provider_id, "text"):
            async with session.post(request.url, headers=request.headers, json=request.body) as resp:
                if resp.status >= 400:
                    payload = await _read_error_payload(resp)
                    return ProviderProbeResult(
                        success=False,
                        status=status_for_http(resp.status),
                        checked_at=checked_at,
                        reason=extract_error_reason(payload) or f"provider_text_probe_http_{resp.status}",
                        model_id=model,
                        model_count=catalog.model_count,
                        model_ids=catalog.model_ids,
                        latency_ms=_elapsed_ms(started),
                    )

                payload = await resp.json(content_type=None)

    except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
        logger.warning(
            "Text probe failed: %s", exc,
            extra={"provider_id": binding.provider_id},
        )
        return ProviderProbeResult(
            success=False,
            status=HealthStatus.DEGRADED,
            checked_at=checked_at,
            reason=truncate_reason(str(exc)) or "provider_text_probe_failed",
            model_id=model,
            model_count=catalog.model_count,
            model_ids=catalog.model_ids,
            latency_ms=_elapsed_ms(started),
        )

    completion = normalize_completion(binding.provider_id, payload)
    return ProviderProbeResult(
        success=True,
        status=HealthStatus.HEALTHY,
        checked_at=checked_at,
        model_id=model,
        model_count=catalog.model_count,
        model_ids=catalog.model_ids,
        output_characters=len(completion.content or ""),
        latency_ms=_elapsed_ms(started),
    )
