# tests/test_catalog.py
"""Tests for the provider catalog."""
import dataclasses

import pytest

from switchboard.core.catalog import (
    CAPABILITY_KEYS,
    PROVIDER_IDS,
    CatalogRegistrationError,
    DiscoverySource,
    ProviderCatalog,
    ProviderDescriptor,
    build_default_catalog,
    default_capabilities,
    validate_descriptor,
)


def _descriptor(**overrides) -> ProviderDescriptor:
    values = dict(
        provider_id="openai",
        label="OpenAI",
        discovery_source=DiscoverySource.PROVIDER_API,
        supports_custom_endpoint=False,
        default_endpoint="https://api.openai.com/v1",
    )
    values.update(overrides)
    return ProviderDescriptor(**values)


# ---------------------------------------------------------------------------
# Descriptor validation
# ---------------------------------------------------------------------------

class TestValidateDescriptor:

    def test_valid_descriptor(self):
        assert validate_descriptor(_descriptor()) == []

    def test_unknown_provider_id(self):
        errors = validate_descriptor(_descriptor(provider_id="acme"))
        assert errors == ["Unknown provider id: acme"]

    def test_blank_provider_id(self):
        errors = validate_descriptor(_descriptor(provider_id="  "))
        assert "provider_id is required" in errors

    def test_blank_label(self):
        errors = validate_descriptor(_descriptor(label=""))
        assert any("label is required" in e for e in errors)

    def test_invalid_discovery_source(self):
        errors = validate_descriptor(_descriptor(discovery_source="scraped"))
        assert any("invalid discovery source" in e for e in errors)

    def test_non_boolean_custom_endpoint_flag(self):
        errors = validate_descriptor(_descriptor(supports_custom_endpoint="yes"))
        assert any("supports_custom_endpoint" in e for e in errors)

    def test_blank_default_endpoint(self):
        errors = validate_descriptor(_descriptor(default_endpoint=""))
        assert any("default_endpoint is required" in e for e in errors)


# ---------------------------------------------------------------------------
# Catalog construction
# ---------------------------------------------------------------------------

class TestProviderCatalog:

    def test_duplicate_id_is_fatal(self):
        with pytest.raises(CatalogRegistrationError, match="Duplicate provider id: openai"):
            ProviderCatalog([_descriptor(), _descriptor(label="Other")])

    def test_invalid_entry_is_fatal(self):
        with pytest.raises(CatalogRegistrationError, match="label is required"):
            ProviderCatalog([_descriptor(label="")])

    def test_lookup(self):
        catalog = ProviderCatalog([_descriptor()])
        assert "openai" in catalog
        assert "anthropic" not in catalog
        assert catalog.get("openai").label == "OpenAI"
        assert catalog.get("anthropic") is None
        assert catalog.get(None) is None
        assert len(catalog) == 1

    def test_require_unknown_raises(self):
        catalog = ProviderCatalog([_descriptor()])
        with pytest.raises(KeyError):
            catalog.require("mistral")

    def test_descriptors_are_frozen(self):
        descriptor = _descriptor()
        with pytest.raises(dataclasses.FrozenInstanceError):
            descriptor.label = "Changed"


class TestDefaultCatalog:

    def test_contains_every_provider(self):
        catalog = build_default_catalog()
        assert catalog.ids() == list(PROVIDER_IDS)

    def test_only_compatible_family_supports_custom_endpoint(self):
        catalog = build_default_catalog()
        custom = [d.provider_id for d in catalog if d.supports_custom_endpoint]
        assert custom == ["openai_compatible"]

    def test_alias_env_names(self):
        catalog = build_default_catalog()
        assert catalog.require("gemini").env_key_names[0] == "GEMINI_API_KEY"
        assert "GOOGLE_API_KEY" in catalog.require("gemini").env_key_names
        assert "GROK_API_KEY" in catalog.require("grok").env_key_names

    def test_default_capabilities_cover_every_key(self):
        caps = default_capabilities("elevenlabs")
        assert set(caps) == set(CAPABILITY_KEYS)
        assert caps["audio_out"] is True
        assert caps["text"] is False

    def test_default_capabilities_returns_copy(self, catalog):
        caps = default_capabilities("openai", catalog)
        caps["text"] = False
        assert default_capabilities("openai", catalog)["text"] is True
