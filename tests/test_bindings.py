# tests/test_bindings.py
"""Tests for credential binding resolution."""
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from switchboard.core.bindings import (
    ENV_KEY_PRIORITY_BASE,
    ENV_PROFILE_ID,
    LEGACY_KEY_PRIORITY,
    LEGACY_PROFILE_ID,
    BillingSource,
    BindingSource,
    CredentialProfile,
    collect_env_endpoints,
    collect_env_keys,
    cooldown_seconds_for,
    is_rotatable_error,
    resolve_bindings,
    resolve_first_binding,
    strip_secret,
)
from switchboard.infra.credential_store import sanitize_profile_id
from switchboard.transport.normalization import normalize_error

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _profile(profile_id: str, provider_id: str = "openai", **kwargs) -> CredentialProfile:
    kwargs.setdefault("secret", f"sk-{profile_id}-0123456789")
    return CredentialProfile(profile_id=profile_id, provider_id=provider_id, **kwargs)


def _order(bindings):
    return [(b.provider_id, b.profile_id, b.priority) for b in bindings]


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

class TestResolveOrdering:

    def test_profiles_then_env_key(self, catalog):
        """Two openai profiles at 5 and 2 plus an env key resolve as 2, 5, env."""
        profiles = [
            _profile("primary", priority=5),
            _profile("backup", priority=2),
        ]
        result = resolve_bindings(
            catalog, profiles, env_keys={"openai": "sk-env-0123456789"}, now=NOW
        )
        assert _order(result) == [
            ("openai", "backup", 2),
            ("openai", "primary", 5),
            ("openai", ENV_PROFILE_ID, ENV_KEY_PRIORITY_BASE),
        ]

    def test_list_index_is_default_priority(self, catalog):
        profiles = [_profile("a", "anthropic"), _profile("b", "mistral")]
        result = resolve_bindings(catalog, profiles, now=NOW)
        assert _order(result) == [("anthropic", "a", 0), ("mistral", "b", 1)]

    def test_legacy_key_sits_between_profiles_and_env(self, catalog):
        result = resolve_bindings(
            catalog,
            [_profile("p", "anthropic")],
            legacy_key="sk-or-legacy-123456",
            env_keys={"mistral": "mk-0123456789"},
            now=NOW,
        )
        assert _order(result) == [
            ("anthropic", "p", 0),
            ("openrouter", LEGACY_PROFILE_ID, LEGACY_KEY_PRIORITY),
            ("mistral", ENV_PROFILE_ID, ENV_KEY_PRIORITY_BASE),
        ]
        assert result[1].source == BindingSource.LEGACY_KEY

    def test_env_keys_assigned_sequentially(self, catalog):
        result = resolve_bindings(
            catalog,
            [],
            env_keys={"openai": "sk-1111111111", "gemini": "g-2222222222"},
            now=NOW,
        )
        assert [b.priority for b in result] == [ENV_KEY_PRIORITY_BASE, ENV_KEY_PRIORITY_BASE + 1]
        assert all(b.billing_source == BillingSource.PLATFORM for b in result)

    def test_org_profile_wins_priority_tie_with_env_key(self, catalog):
        profiles = [_profile("zzz_last", priority=ENV_KEY_PRIORITY_BASE)]
        result = resolve_bindings(
            catalog, profiles, env_keys={"openai": "sk-env-0123456789"}, now=NOW
        )
        assert result[0].source == BindingSource.ORG_PROFILE
        assert result[1].source == BindingSource.PLATFORM_ENV

    def test_output_sorted_and_unique_for_many_inputs(self, catalog):
        providers = ["openai", "anthropic", "mistral"]
        for priorities in itertools.product([None, 0, 3, 7], repeat=3):
            profiles = [
                _profile(f"p{i}", providers[i], priority=priority)
                for i, priority in enumerate(priorities)
            ]
            profiles.append(_profile("p0", "openai", priority=9))
            result = resolve_bindings(
                catalog,
                profiles,
                legacy_key="sk-legacy-0123456789",
                env_keys={"anthropic": "ak-0123456789", "kimi": "km-0123456789"},
                now=NOW,
            )
            keys = [(b.priority, b.provider_id, b.profile_id) for b in result]
            assert keys == sorted(keys)
            pairs = [(b.provider_id, b.profile_id) for b in result]
            assert len(pairs) == len(set(pairs))

    def test_org_profile_named_like_platform_key_keeps_both(self, catalog):
        profiles = [
            _profile("platform_env", secret="sk-org-0123456789", priority=3),
            _profile("legacy_api_key", "openrouter", secret="sk-org2-0123456789", priority=4),
        ]
        result = resolve_bindings(
            catalog,
            profiles,
            legacy_key="sk-legacy-0123456789",
            env_keys={"openai": "sk-env-0123456789"},
            now=NOW,
        )
        assert [(b.profile_id, b.source) for b in result] == [
            ("platform_env", BindingSource.ORG_PROFILE),
            ("legacy_api_key", BindingSource.ORG_PROFILE),
            (LEGACY_PROFILE_ID, BindingSource.LEGACY_KEY),
            (ENV_PROFILE_ID, BindingSource.PLATFORM_ENV),
        ]

    def test_sanitized_ids_never_collide_with_fallback_ids(self):
        for raw in (ENV_PROFILE_ID, LEGACY_PROFILE_ID):
            assert sanitize_profile_id(raw, "openai") != raw

    def test_duplicate_profile_keeps_lowest_priority(self, catalog):
        profiles = [_profile("dup", priority=8), _profile("dup", priority=3)]
        result = resolve_bindings(catalog, profiles, now=NOW)
        assert _order(result) == [("openai", "dup", 3)]


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

class TestResolveFiltering:

    def test_skips_disabled_blank_unknown_and_cooling(self, catalog):
        profiles = [
            _profile("off", enabled=False),
            _profile("blank", secret="   "),
            _profile("nokey", secret=None),
            _profile("unknown", "acme"),
            _profile("cooling", cooldown_until=NOW + timedelta(minutes=5)),
            _profile("ok"),
        ]
        result = resolve_bindings(catalog, profiles, now=NOW)
        assert [b.profile_id for b in result] == ["ok"]

    def test_expired_cooldown_is_eligible(self, catalog):
        profiles = [_profile("recovered", cooldown_until=NOW - timedelta(seconds=1))]
        assert len(resolve_bindings(catalog, profiles, now=NOW)) == 1

    def test_target_provider_filter(self, catalog):
        profiles = [_profile("a", "anthropic"), _profile("o", "openai")]
        result = resolve_bindings(catalog, profiles, target_provider="openai", now=NOW)
        assert [b.profile_id for b in result] == ["o"]

    def test_first_binding(self, catalog):
        profiles = [_profile("a", "anthropic"), _profile("o", "openai")]
        first = resolve_first_binding(catalog, profiles, target_provider="openai", now=NOW)
        assert first.profile_id == "o"
        assert resolve_first_binding(catalog, profiles, target_provider="gemini", now=NOW) is None

    def test_first_binding_forwards_fallback_keys(self, catalog):
        first = resolve_first_binding(
            catalog, [], legacy_key="sk-legacy-0123456789", default_provider_id="mistral", now=NOW
        )
        assert (first.provider_id, first.profile_id) == ("mistral", LEGACY_PROFILE_ID)

    def test_secret_is_trimmed(self, catalog):
        result = resolve_bindings(catalog, [_profile("p", secret="  sk-padded-key  ")], now=NOW)
        assert result[0].secret == "sk-padded-key"


# ---------------------------------------------------------------------------
# Endpoint resolution
# ---------------------------------------------------------------------------

class TestEndpointResolution:

    def test_explicit_override_has_no_fallback(self, catalog):
        profile = _profile(
            "local", "openai_compatible", endpoint_override="http://gpu-box:9000/v1"
        )
        binding = resolve_bindings(
            catalog, [profile], env_endpoints={"openai_compatible": "http://env:1/v1"}, now=NOW
        )[0]
        assert binding.endpoint == "http://gpu-box:9000/v1"
        assert binding.fallback.used_fallback is False
        assert binding.fallback.reasons == ()

    def test_environment_endpoint_for_compatible_family(self, catalog):
        binding = resolve_bindings(
            catalog,
            [_profile("local", "openai_compatible")],
            env_endpoints={"openai_compatible": "http://env:1/v1"},
            now=NOW,
        )[0]
        assert binding.endpoint == "http://env:1/v1"
        assert binding.fallback.reasons == ("endpoint_from_environment",)

    def test_environment_endpoint_ignored_for_other_providers(self, catalog):
        binding = resolve_bindings(
            catalog,
            [_profile("p", "openai")],
            env_endpoints={"openai": "http://ignored/v1"},
            now=NOW,
        )[0]
        assert binding.endpoint == "https://api.openai.com/v1"
        assert binding.fallback.reasons == ("endpoint_from_catalog_default",)

    def test_env_key_reasons(self, catalog):
        binding = resolve_bindings(catalog, [], env_keys={"kimi": "km-0123456789"}, now=NOW)[0]
        assert binding.fallback.used_fallback is True
        assert binding.fallback.reasons == (
            "credential_from_platform_env",
            "endpoint_from_catalog_default",
        )


# ---------------------------------------------------------------------------
# Secret projection
# ---------------------------------------------------------------------------

class TestStripSecret:

    def test_secret_removed(self, catalog):
        binding = resolve_bindings(catalog, [_profile("p", secret="sk-abcdef123456")], now=NOW)[0]
        data = strip_secret(binding)
        assert "secret" not in data
        assert "sk-abcdef123456" not in str(data)
        assert data["masked_secret"] == "sk-a••••3456"
        assert data["source"] == "org_profile"
        assert data["fallback"]["reasons"] == ["endpoint_from_catalog_default"]

    def test_repr_hides_secret(self, catalog):
        profile = _profile("p", secret="sk-live-SECRET123")
        binding = resolve_bindings(catalog, [profile], now=NOW)[0]
        assert "sk-live-SECRET123" not in repr(binding)
        assert "sk-live-SECRET123" not in repr(profile)
        assert binding.secret == "sk-live-SECRET123"


# ---------------------------------------------------------------------------
# Environment collection and cooldown
# ---------------------------------------------------------------------------

class TestEnvironmentHelpers:

    def test_canonical_name_preferred(self, catalog):
        environ = {"GEMINI_API_KEY": "canonical", "GOOGLE_API_KEY": "alias"}
        assert collect_env_keys(environ, catalog) == {"gemini": "canonical"}

    def test_alias_used_when_canonical_missing(self, catalog):
        environ = {"GROK_API_KEY": "alias-key", "OPENAI_API_KEY": "   "}
        assert collect_env_keys(environ, catalog) == {"grok": "alias-key"}

    def test_collect_env_endpoints(self):
        environ = {"OPENAI_COMPATIBLE_BASE_URL": " http://llm:8080/v1 "}
        assert collect_env_endpoints(environ) == {"openai_compatible": "http://llm:8080/v1"}
        assert collect_env_endpoints({}) == {}


class TestCooldown:

    @pytest.mark.parametrize(
        "failures,expected",
        [(0, 0), (1, 60), (2, 120), (3, 240), (7, 3600), (50, 3600)],
    )
    def test_exponential_and_capped(self, failures, expected):
        assert cooldown_seconds_for(failures) == expected

    def test_rotatable_classes(self):
        assert is_rotatable_error(normalize_error("openai", "bad key", 401)) is True
        assert is_rotatable_error(normalize_error("openai", "slow down", 429)) is True
        assert is_rotatable_error(normalize_error("openai", "boom", 500)) is False
        assert is_rotatable_error("auth") is False
