# tests/test_crypto.py
"""Tests for Fernet encryption of credential profile secrets."""
import pytest

from switchboard.infra.crypto import (
    FernetCrypto,
    CryptoError,
    CryptoNotConfiguredError,
    CryptoContextMismatchError,
    get_crypto,
    reset_crypto,
)


# ---------------------------------------------------------------------------
# FernetCrypto: plain encrypt/decrypt
# ---------------------------------------------------------------------------

class TestFernetCrypto:
    """Test FernetCrypto encrypt/decrypt."""

    def setup_method(self):
        self.key = FernetCrypto.generate_key()
        self.crypto = FernetCrypto(self.key)

    def test_encrypt_decrypt(self):
        """Encrypted secrets decrypt to the original dict."""
        encrypted = self.crypto.encrypt({"secret": "sk-live-123"})
        assert isinstance(encrypted, bytes)
        assert b"sk-live-123" not in encrypted
        assert self.crypto.decrypt(encrypted) == {"secret": "sk-live-123"}

    def test_unicode_values(self):
        """Non-ASCII labels survive encryption."""
        original = {"secret": "k", "label": "מפתח ראשי"}
        assert self.crypto.decrypt(self.crypto.encrypt(original)) == original

    def test_wrong_key_fails(self):
        """Decrypting with a different key should raise CryptoError."""
        encrypted = self.crypto.encrypt({"secret": "x"})
        other = FernetCrypto(FernetCrypto.generate_key())
        with pytest.raises(CryptoError, match="invalid token"):
            other.decrypt(encrypted)

    def test_corrupted_data_fails(self):
        with pytest.raises(CryptoError, match="invalid token"):
            self.crypto.decrypt(b"not-a-fernet-token")

    def test_invalid_key_raises(self):
        with pytest.raises(CryptoError, match="Invalid Fernet key"):
            FernetCrypto("too-short")

    def test_generate_key_unique(self):
        keys = {FernetCrypto.generate_key() for _ in range(5)}
        assert len(keys) == 5

    def test_decrypt_memoryview(self):
        encrypted = self.crypto.encrypt({"secret": "value"})
        assert self.crypto.decrypt(memoryview(encrypted)) == {"secret": "value"}


# ---------------------------------------------------------------------------
# Context-bound encrypt/decrypt (anti-replay)
# ---------------------------------------------------------------------------

class TestContextBoundCrypto:
    """Ciphertext is bound to (org, provider, profile)."""

    def setup_method(self):
        self.crypto = FernetCrypto(FernetCrypto.generate_key())
        self.ctx = {"org_id": "org_1", "provider_id": "openai", "profile_id": "primary"}

    def test_bound_round_trip(self):
        encrypted = self.crypto.encrypt_bound({"secret": "sk"}, **self.ctx)
        assert self.crypto.decrypt_bound(encrypted, **self.ctx) == {"secret": "sk"}

    @pytest.mark.parametrize(
        "field,value",
        [("org_id", "org_2"), ("provider_id", "anthropic"), ("profile_id", "backup")],
    )
    def test_context_mismatch(self, field, value):
        encrypted = self.crypto.encrypt_bound({"secret": "sk"}, **self.ctx)
        with pytest.raises(CryptoContextMismatchError, match="context mismatch"):
            self.crypto.decrypt_bound(encrypted, **{**self.ctx, field: value})

    def test_plain_ciphertext_rejected_by_bound_decrypt(self):
        encrypted = self.crypto.encrypt({"secret": "sk"})
        with pytest.raises(CryptoContextMismatchError):
            self.crypto.decrypt_bound(encrypted, **self.ctx)


# ---------------------------------------------------------------------------
# get_crypto() singleton
# ---------------------------------------------------------------------------

class TestGetCrypto:

    def setup_method(self):
        reset_crypto()

    def teardown_method(self):
        reset_crypto()

    def test_not_configured_raises(self, monkeypatch):
        monkeypatch.setattr("switchboard.config.settings.credential_encryption_key", None)
        with pytest.raises(CryptoNotConfiguredError, match="CREDENTIAL_ENCRYPTION_KEY"):
            get_crypto()

    def test_configured_returns_singleton(self, monkeypatch):
        monkeypatch.setattr(
            "switchboard.config.settings.credential_encryption_key", FernetCrypto.generate_key()
        )
        crypto = get_crypto()
        assert isinstance(crypto, FernetCrypto)
        assert get_crypto() is crypto
