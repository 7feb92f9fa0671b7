# switchboard/infra/crypto.py
"""
Fernet symmetric encryption for credential profile secrets.

Used by the credential store to keep provider API keys encrypted at rest.
Key is loaded from CREDENTIAL_ENCRYPTION_KEY environment variable (Fernet key format).

Context binding (anti-replay):
    encrypt_bound / decrypt_bound embed (org_id, provider_id, profile_id)
    into the encrypted payload so ciphertext cannot be replayed under a
    different organization, provider or profile.

Usage:
    crypto = get_crypto()

    encrypted = crypto.encrypt_bound(
        {"secret": "sk-..."},
        org_id="org_1",
        provider_id="openai",
        profile_id="primary",
    )
    decrypted = crypto.decrypt_bound(
        encrypted, org_id="org_1", provider_id="openai", profile_id="primary"
    )

Key generation:
    python scripts/generate_encryption_key.py
"""
from __future__ import annotations

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from switchboard.infra.logging_config import get_logger

logger = get_logger(__name__)


# Internal keys for the context binding fields inside the encrypted blob
_CTX_ORG_KEY = "__ctx_org_id"
_CTX_PROVIDER_KEY = "__ctx_provider_id"
_CTX_PROFILE_KEY = "__ctx_profile_id"


class CryptoError(Exception):
    """Raised when encryption/decryption fails."""


class CryptoNotConfiguredError(CryptoError):
    """Raised when encryption key is not configured."""


class CryptoContextMismatchError(CryptoError):
    """Raised when decrypt context doesn't match the encrypted context."""


class FernetCrypto:
    """Fernet-based encryption for credential blobs."""

    def __init__(self, key: str):
        """
        Initialize with a Fernet key.

        Args:
            key: URL-safe base64-encoded 32-byte key (use generate_key() to create one)

        Raises:
            CryptoError: If the key is invalid
        """
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except Exception as exc:
            raise CryptoError(f"Invalid Fernet key: {exc}") from exc

    def encrypt(self, plaintext: dict[str, Any]) -> bytes:
        """Encrypt a JSON-serializable dict as a Fernet token."""
        try:
            json_bytes = json.dumps(plaintext, ensure_ascii=False).encode("utf-8")
            return self._fernet.encrypt(json_bytes)
        except Exception as exc:
            raise CryptoError(f"Encryption failed: {exc}") from exc

    def decrypt(self, ciphertext: bytes) -> dict[str, Any]:
        """Decrypt a Fernet token back to a dict."""
        try:
            if isinstance(ciphertext, memoryview):
                ciphertext = bytes(ciphertext)
            json_bytes = self._fernet.decrypt(ciphertext)
            return json.loads(json_bytes)
        except InvalidToken:
            raise CryptoError("Decryption failed: invalid token (wrong key or corrupted data)")
        except json.JSONDecodeError as exc:
            raise CryptoError(f"Decryption succeeded but JSON parsing failed: {exc}") from exc

    def encrypt_bound(
        self,
        plaintext: dict[str, Any],
        *,
        org_id: str,
        provider_id: str,
        profile_id: str,
    ) -> bytes:
        """
        Encrypt with embedded context binding.

        The context is stored inside the encrypted blob so it cannot be
        tampered with. On decrypt_bound, the context is verified and
        stripped from the returned dict.
        """
        bound = {
            _CTX_ORG_KEY: org_id,
            _CTX_PROVIDER_KEY: provider_id,
            _CTX_PROFILE_KEY: profile_id,
            **plaintext,
        }
        return self.encrypt(bound)

    def decrypt_bound(
        self,
        ciphertext: bytes,
        *,
        org_id: str,
        provider_id: str,
        profile_id: str,
    ) -> dict[str, Any]:
        """
        Decrypt and verify context binding.

        Raises:
            CryptoContextMismatchError: If context doesn't match
            CryptoError: If decryption fails
        """
        data = self.decrypt(ciphertext)

        stored_org = data.pop(_CTX_ORG_KEY, None)
        stored_provider = data.pop(_CTX_PROVIDER_KEY, None)
        stored_profile = data.pop(_CTX_PROFILE_KEY, None)

        if (stored_org, stored_provider, stored_profile) != (org_id, provider_id, profile_id):
            raise CryptoContextMismatchError(
                "Credential context mismatch: the ciphertext was encrypted "
                "for a different organization/provider/profile"
            )

        return data

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded Fernet key."""
        return Fernet.generate_key().decode("ascii")


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_crypto: FernetCrypto | None = None


def get_crypto() -> FernetCrypto:
    """
    Get the global FernetCrypto singleton.

    Lazily initialized from settings.credential_encryption_key.

    Raises:
        CryptoNotConfiguredError: If CREDENTIAL_ENCRYPTION_KEY is not set
    """
    global _crypto
    if _crypto is None:
        from switchboard.config import settings

        if not settings.credential_encryption_key:
            raise CryptoNotConfiguredError(
                "CREDENTIAL_ENCRYPTION_KEY is not configured. "
                "Generate a key using the provided script and set it in .env"
            )
        _crypto = FernetCrypto(settings.credential_encryption_key)
        logger.info("Fernet crypto initialized")

    return _crypto


def reset_crypto() -> None:
    """Reset the global crypto singleton (for testing)."""
    global _crypto
    _crypto = None
