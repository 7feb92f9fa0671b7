# switchboard/transport/normalization.py
"""
Converters from provider wire shapes into the canonical completion and
error forms. These are pure converters: no I/O, no settings, and they never
raise for a degraded provider. Callers decide retry and fallback from the
returned ``NormalizedError``.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from switchboard.core.capabilities import ProtocolFamily, get_capabilities


class ErrorClass(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SAFETY = "safety"
    UNKNOWN = "unknown"


_RETRYABLE: dict[ErrorClass, bool] = {
    ErrorClass.AUTH: False,
    ErrorClass.INVALID_REQUEST: False,
    ErrorClass.QUOTA: False,
    ErrorClass.SAFETY: False,
    ErrorClass.RATE_LIMIT: True,
    ErrorClass.PROVIDER_UNAVAILABLE: True,
    ErrorClass.TIMEOUT: True,
    ErrorClass.NETWORK: True,
    ErrorClass.UNKNOWN: True,
}

_QUOTA_WORDS = ("quota", "credit", "billing")
_TIMEOUT_WORDS = ("timeout", "timed out", "deadline exceeded")
_NETWORK_WORDS = (
    "network",
    "econnreset",
    "econnrefused",
    "enotfound",
    "socket hang up",
    "connection reset",
    "connection refused",
    "cannot connect",
    "fetch failed",
)
_SAFETY_WORDS = ("safety", "content policy", "content_filter", "moderation", "blocked")

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class NormalizedToolCall:
    id: str
    name: str
    arguments: str      # always valid JSON text


@dataclass(frozen=True)
class NormalizedChoice:
    content: str | None
    tool_calls: tuple[NormalizedToolCall, ...] = ()
    finish_reason: str | None = None


@dataclass(frozen=True)
class NormalizedUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class StructuredOutput:
    format: str         # "object" | "code_block"
    value: Any


@dataclass(frozen=True)
class NormalizedCompletion:
    provider_id: str
    choices: tuple[NormalizedChoice, ...]
    usage: NormalizedUsage
    structured_output: StructuredOutput | None = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def content(self) -> str | None:
        return self.choices[0].content if self.choices else None

    @property
    def tool_calls(self) -> tuple[NormalizedToolCall, ...]:
        return self.choices[0].tool_calls if self.choices else ()


@dataclass(frozen=True)
class NormalizedError:
    provider_id: str
    message: str
    status_code: int | None
    code: str | None
    error_class: ErrorClass
    retryable: bool


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------

def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _normalize_arguments(raw: Any) -> str:
    """Argument payload as JSON text; "{}" when absent or unparseable."""
    if raw is None:
        return "{}"
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return "{}"
        try:
            json.loads(text)
        except ValueError:
            return "{}"
        return text
    try:
        return json.dumps(raw)
    except (TypeError, ValueError):
        return "{}"


def _normalize_usage(raw_usage: Any) -> NormalizedUsage:
    if not isinstance(raw_usage, dict):
        return NormalizedUsage()

    prompt = _as_int(raw_usage.get("prompt_tokens"))
    if prompt is None:
        prompt = _as_int(raw_usage.get("input_tokens")) or 0
    completion = _as_int(raw_usage.get("completion_tokens"))
    if completion is None:
        completion = _as_int(raw_usage.get("output_tokens")) or 0
    total = _as_int(raw_usage.get("total_tokens"))
    if total is None:
        total = prompt + completion

    return NormalizedUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _chat_tool_calls(raw_calls: Any) -> tuple[NormalizedToolCall, ...]:
    if not isinstance(raw_calls, list):
        return ()
    calls = []
    for i, raw in enumerate(raw_calls):
        if not isinstance(raw, dict):
            continue
        fn = raw.get("function") if isinstance(raw.get("function"), dict) else {}
        call_id = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else f"tool_call_{i + 1}"
        name = fn.get("name") or raw.get("name")
        if not isinstance(name, str) or not name:
            name = f"tool_{i + 1}"
        arguments = fn.get("arguments", raw.get("arguments"))
        calls.append(NormalizedToolCall(id=call_id, name=name, arguments=_normalize_arguments(arguments)))
    return tuple(calls)


def _chat_choices(raw: dict) -> tuple[NormalizedChoice, ...]:
    raw_choices = raw.get("choices")
    if not isinstance(raw_choices, list) or not raw_choices:
        output_text = raw.get("output_text")
        if isinstance(output_text, str):
            return (NormalizedChoice(content=output_text),)
        return ()

    choices = []
    for raw_choice in raw_choices:
        if not isinstance(raw_choice, dict):
            continue
        message = raw_choice.get("message") if isinstance(raw_choice.get("message"), dict) else {}
        content = message.get("content")
        choices.append(
            NormalizedChoice(
                content=content if isinstance(content, str) else None,
                tool_calls=_chat_tool_calls(message.get("tool_calls")),
                finish_reason=raw_choice.get("finish_reason"),
            )
        )
    return tuple(choices)


def _message_block_choices(raw: dict) -> tuple[NormalizedChoice, ...]:
    blocks = raw.get("content")
    if not isinstance(blocks, list):
        return ()

    texts: list[str] = []
    calls: list[NormalizedToolCall] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text" and isinstance(block.get("text"), str):
            texts.append(block["text"])
        elif kind == "tool_use":
            i = len(calls)
            call_id = block.get("id") if isinstance(block.get("id"), str) and block.get("id") else f"tool_call_{i + 1}"
            name = block.get("name") if isinstance(block.get("name"), str) and block.get("name") else f"tool_{i + 1}"
            calls.append(NormalizedToolCall(id=call_id, name=name, arguments=_normalize_arguments(block.get("input"))))

    return (
        NormalizedChoice(
            content="".join(texts) if texts else None,
            tool_calls=tuple(calls),
            finish_reason=raw.get("stop_reason"),
        ),
    )


def _structured_output(content: str | None) -> StructuredOutput | None:
    if not content or not content.strip():
        return None

    try:
        value = json.loads(content)
    except ValueError:
        value = None
    else:
        if isinstance(value, (dict, list)):
            return StructuredOutput(format="object", value=value)

    match = _CODE_BLOCK_RE.search(content)
    if match:
        try:
            return StructuredOutput(format="code_block", value=json.loads(match.group(1).strip()))
        except ValueError:
            return None
    return None


def normalize_completion(provider_id: str, raw: Any) -> NormalizedCompletion:
    """Convert a provider response body into a ``NormalizedCompletion``."""
    body = raw if isinstance(raw, dict) else {}
    family = get_capabilities(provider_id).protocol_family

    if family is ProtocolFamily.MESSAGE_BLOCKS:
        choices = _message_block_choices(body)
    else:
        choices = _chat_choices(body)

    content = choices[0].content if choices else None
    return NormalizedCompletion(
        provider_id=provider_id,
        choices=choices,
        usage=_normalize_usage(body.get("usage")),
        structured_output=_structured_output(content),
        raw=raw,
    )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def extract_error_message(raw_error: Any) -> str:
    """Best-effort message from an exception, string or provider error body."""
    if raw_error is None:
        return ""
    if isinstance(raw_error, BaseException):
        return str(raw_error) or type(raw_error).__name__
    if isinstance(raw_error, str):
        return raw_error
    if isinstance(raw_error, dict):
        if isinstance(raw_error.get("message"), str):
            return raw_error["message"]
        inner = raw_error.get("error")
        if isinstance(inner, str):
            return inner
        if isinstance(inner, dict) and isinstance(inner.get("message"), str):
            return inner["message"]
    return str(raw_error)


def _extract_error_code(raw_error: Any) -> str | None:
    if isinstance(raw_error, dict):
        inner = raw_error.get("error")
        for source in (inner if isinstance(inner, dict) else {}, raw_error):
            for key in ("code", "type"):
                value = source.get(key)
                if isinstance(value, (str, int)) and not isinstance(value, bool):
                    return str(value)
    code = getattr(raw_error, "code", None)
    if isinstance(code, str):
        return code
    return None


def _classify(status_code: int | None, message: str) -> ErrorClass:
    lowered = message.lower()

    if status_code is not None:
        if status_code in (401, 403):
            return ErrorClass.AUTH
        if status_code == 429:
            if any(word in lowered for word in _QUOTA_WORDS):
                return ErrorClass.QUOTA
            return ErrorClass.RATE_LIMIT
        if status_code in (400, 404, 409, 422):
            return ErrorClass.INVALID_REQUEST
        if status_code >= 500:
            return ErrorClass.PROVIDER_UNAVAILABLE
        return ErrorClass.UNKNOWN

    if any(word in lowered for word in _TIMEOUT_WORDS):
        return ErrorClass.TIMEOUT
    if any(word in lowered for word in _NETWORK_WORDS):
        return ErrorClass.NETWORK
    if any(word in lowered for word in _SAFETY_WORDS):
        return ErrorClass.SAFETY
    return ErrorClass.UNKNOWN


def normalize_error(provider_id: str, raw_error: Any, status_code: int | None = None) -> NormalizedError:
    """
    Classify a provider failure.

    The status code decides when present; message keywords are only
    consulted without one. Retryability is fixed per class.
    """
    message = extract_error_message(raw_error)
    if status_code is None and isinstance(raw_error, dict):
        status_code = _as_int(raw_error.get("status") or raw_error.get("status_code"))
    error_class = _classify(status_code, message)
    return NormalizedError(
        provider_id=provider_id,
        message=message,
        status_code=status_code,
        code=_extract_error_code(raw_error),
        error_class=error_class,
        retryable=_RETRYABLE[error_class],
    )


# ---------------------------------------------------------------------------
# Tool result envelopes (chat-completions shape)
# ---------------------------------------------------------------------------

def format_tool_result_message(tool_call_id: str, tool_name: str, result: Any) -> dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": json.dumps(result, default=str),
    }


def format_tool_error_message(tool_call_id: str, tool_name: str, error: str) -> dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": json.dumps({"error": error}),
    }
