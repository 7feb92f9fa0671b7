# switchboard/transport/requests.py
"""
Request-building edge: canonical (chat-completions shaped) messages in,
provider wire request out.

Translation to the message-blocks family happens here and nowhere else.
Tool results stay in chat-completions shape everywhere upstream of this
module.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from switchboard.config import settings
from switchboard.core.bindings import ResolvedBinding
from switchboard.core.capabilities import (
    AuthScheme,
    ProtocolFamily,
    get_capabilities,
    normalize_model_for_provider,
)
from switchboard.infra.logging_config import get_logger
from switchboard.infra.metrics import RuntimeMetrics

logger = get_logger(__name__)

# Message-blocks endpoints reject requests without an explicit max_tokens
DEFAULT_MESSAGE_BLOCKS_MAX_TOKENS = 1024


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any] = field(default_factory=dict)


def build_auth_headers(provider_id: str, secret: str) -> dict[str, str]:
    """
    Authentication headers for the provider's ``auth_scheme``.

    - API_KEY_WITH_VERSION: ``x-api-key`` plus the API-version pin
    - BEARER_WITH_VENDOR_HEADERS: bearer plus the vendor attribution headers
    - BEARER: bearer only
    """
    scheme = get_capabilities(provider_id).auth_scheme
    headers = {"Content-Type": "application/json"}
    if scheme is AuthScheme.API_KEY_WITH_VERSION:
        headers["x-api-key"] = secret
        headers["anthropic-version"] = settings.anthropic_api_version
        return headers

    headers["Authorization"] = f"Bearer {secret}"
    if scheme is AuthScheme.BEARER_WITH_VENDOR_HEADERS:
        headers["HTTP-Referer"] = settings.openrouter_site_url
        headers["X-Title"] = settings.openrouter_app_name
    return headers


# ---------------------------------------------------------------------------
# Message-blocks translation
# ---------------------------------------------------------------------------

def _parse_arguments(arguments: Any) -> Any:
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str) and arguments.strip():
        try:
            return json.loads(arguments)
        except ValueError:
            return {}
    return {}


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


def _to_message_blocks(messages: list[dict[str, Any]]) -> tuple[str | None, list[dict[str, Any]]]:
    """Lift system messages out and convert tool traffic into typed blocks."""
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for message in messages:
        role = message.get("role")
        content = message.get("content")

        if role == "system":
            text = _text_of(content)
            if text:
                system_parts.append(text)
            continue

        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.get("tool_call_id") or "",
                "content": content if isinstance(content, str) else json.dumps(content),
            }
            # Consecutive tool results share one user turn
            if converted and converted[-1]["role"] == "user" and all(
                b.get("type") == "tool_result" for b in converted[-1]["content"]
            ):
                converted[-1]["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        blocks: list[dict[str, Any]] = []
        text = _text_of(content)
        if text:
            blocks.append({"type": "text", "text": text})

        if role == "assistant":
            for i, call in enumerate(message.get("tool_calls") or []):
                fn = call.get("function") or {}
                blocks.append({
                    "type": "tool_use",
                    "id": call.get("id") or f"tool_call_{i + 1}",
                    "name": fn.get("name") or call.get("name") or f"tool_{i + 1}",
                    "input": _parse_arguments(fn.get("arguments", call.get("arguments"))),
                })

        converted.append({"role": "assistant" if role == "assistant" else "user", "content": blocks})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


def _to_message_block_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted = []
    for tool in tools:
        fn = tool.get("function") if isinstance(tool.get("function"), dict) else tool
        converted.append({
            "name": fn.get("name"),
            "description": fn.get("description", ""),
            "input_schema": fn.get("parameters") or {"type": "object", "properties": {}},
        })
    return converted


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

def build_completion_request(
    binding: ResolvedBinding,
    model: str,
    messages: list[dict[str, Any]],
    *,
    tools: list[dict[str, Any]] | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    stream: bool = False,
) -> ProviderRequest:
    """Build the upstream completion request for a resolved binding."""
    caps = get_capabilities(binding.provider_id)
    model_id = normalize_model_for_provider(binding.provider_id, model)
    endpoint = binding.endpoint.rstrip("/")
    headers = build_auth_headers(binding.provider_id, binding.secret)

    if tools and not caps.supports_tool_calling:
        logger.debug(
            "Dropping %d tool schemas: provider does not support tool calling",
            len(tools),
            extra={"provider_id": binding.provider_id},
        )
        tools = None

    if caps.protocol_family is ProtocolFamily.MESSAGE_BLOCKS:
        system, converted = _to_message_blocks(messages)
        body: dict[str, Any] = {
            "model": model_id,
            "messages": converted,
            "max_tokens": max_tokens or DEFAULT_MESSAGE_BLOCKS_MAX_TOKENS,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = _to_message_block_tools(tools)
        url = f"{endpoint}/messages"
    else:
        body = {"model": model_id, "messages": list(messages)}
        if tools:
            body["tools"] = tools
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        url = f"{endpoint}/chat/completions"

    if temperature is not None:
        body["temperature"] = temperature
    if stream:
        body["stream"] = True

    RuntimeMetrics.provider_request(binding.provider_id, binding.source.value)
    return ProviderRequest(url=url, headers=headers, body=body)
