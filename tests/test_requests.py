# tests/test_requests.py
"""Tests for the provider request builder."""
from unittest.mock import patch

from switchboard.core.bindings import (
    BillingSource,
    BindingSource,
    CredentialSource,
    ResolvedBinding,
)
from switchboard.core.capabilities import AuthScheme, ProtocolFamily, ProviderCapabilities
from switchboard.infra.metrics import get_metrics_collector
from switchboard.transport.requests import (
    DEFAULT_MESSAGE_BLOCKS_MAX_TOKENS,
    build_auth_headers,
    build_completion_request,
)


def _binding(provider_id: str, endpoint: str) -> ResolvedBinding:
    return ResolvedBinding(
        provider_id=provider_id,
        profile_id="primary",
        secret="sk-test-0123456789",
        endpoint=endpoint,
        priority=0,
        source=BindingSource.ORG_PROFILE,
        credential_source=CredentialSource.ORGANIZATION_AUTH_PROFILE,
        billing_source=BillingSource.BYOK,
    )


TOOLS = [{
    "type": "function",
    "function": {
        "name": "lookup",
        "description": "Find a record",
        "parameters": {"type": "object", "properties": {"q": {"type": "string"}}},
    },
}]


class TestAuthHeaders:

    def test_bearer_default(self):
        headers = build_auth_headers("mistral", "key")
        assert headers["Authorization"] == "Bearer key"
        assert headers["Content-Type"] == "application/json"

    def test_anthropic_dual_header(self):
        headers = build_auth_headers("anthropic", "key")
        assert headers["x-api-key"] == "key"
        assert headers["anthropic-version"]
        assert "Authorization" not in headers

    def test_openrouter_vendor_headers(self):
        headers = build_auth_headers("openrouter", "key")
        assert headers["Authorization"] == "Bearer key"
        assert "HTTP-Referer" in headers
        assert "X-Title" in headers

    def test_headers_follow_capability_table(self):
        table = {
            "openai": ProviderCapabilities(
                provider_id="openai",
                supports_tool_calling=True,
                max_tool_rounds=5,
                requires_tool_call_id=True,
                protocol_family=ProtocolFamily.CHAT_COMPLETIONS,
                supports_structured_output=True,
                auth_scheme=AuthScheme.API_KEY_WITH_VERSION,
            ),
        }
        with patch.dict("switchboard.core.capabilities._CAPABILITIES", table):
            headers = build_auth_headers("openai", "key")
        assert headers["x-api-key"] == "key"
        assert "Authorization" not in headers


class TestChatCompletionsRequest:

    def setup_method(self):
        get_metrics_collector().reset()

    def test_body_and_url(self):
        request = build_completion_request(
            _binding("openai", "https://api.openai.com/v1/"),
            "openai/gpt-4o",
            [{"role": "user", "content": "hi"}],
            tools=TOOLS,
            temperature=0.2,
            max_tokens=50,
            stream=True,
        )
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.body == {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "hi"}],
            "tools": TOOLS,
            "max_tokens": 50,
            "temperature": 0.2,
            "stream": True,
        }

    def test_router_keeps_model_prefix(self):
        request = build_completion_request(
            _binding("openrouter", "https://openrouter.ai/api/v1"),
            "openai/gpt-4o",
            [{"role": "user", "content": "hi"}],
        )
        assert request.body["model"] == "openai/gpt-4o"
        assert "max_tokens" not in request.body

    def test_tools_dropped_without_tool_calling(self):
        request = build_completion_request(
            _binding("elevenlabs", "https://api.elevenlabs.io/v1"),
            "model",
            [{"role": "user", "content": "hi"}],
            tools=TOOLS,
        )
        assert "tools" not in request.body

    def test_counts_provider_request(self):
        build_completion_request(
            _binding("openai", "https://api.openai.com/v1"),
            "gpt-4o",
            [{"role": "user", "content": "hi"}],
        )
        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["provider_requests_total{provider=openai,source=org_profile}"] == 1


class TestMessageBlocksRequest:

    def test_translation(self):
        messages = [
            {"role": "system", "content": "Be brief."},
            {"role": "system", "content": "Use tools."},
            {"role": "user", "content": "Weather?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [
                    {"id": "call_1", "function": {"name": "weather", "arguments": '{"city": "Haifa"}'}},
                    {"id": "call_2", "function": {"name": "time", "arguments": "{}"}},
                ],
            },
            {"role": "tool", "tool_call_id": "call_1", "name": "weather", "content": '{"temp": 25}'},
            {"role": "tool", "tool_call_id": "call_2", "name": "time", "content": '"12:00"'},
        ]
        request = build_completion_request(
            _binding("anthropic", "https://api.anthropic.com/v1"),
            "anthropic/claude-3-5-haiku-latest",
            messages,
            tools=TOOLS,
        )
        body = request.body

        assert request.url == "https://api.anthropic.com/v1/messages"
        assert body["model"] == "claude-3-5-haiku-latest"
        assert body["system"] == "Be brief.\n\nUse tools."
        assert body["max_tokens"] == DEFAULT_MESSAGE_BLOCKS_MAX_TOKENS
        assert body["tools"] == [{
            "name": "lookup",
            "description": "Find a record",
            "input_schema": {"type": "object", "properties": {"q": {"type": "string"}}},
        }]

        user, assistant, results = body["messages"]
        assert user == {"role": "user", "content": [{"type": "text", "text": "Weather?"}]}
        assert assistant["role"] == "assistant"
        assert assistant["content"][0] == {
            "type": "tool_use", "id": "call_1", "name": "weather", "input": {"city": "Haifa"},
        }
        assert results["role"] == "user"
        assert [b["tool_use_id"] for b in results["content"]] == ["call_1", "call_2"]
        assert all(b["type"] == "tool_result" for b in results["content"])
