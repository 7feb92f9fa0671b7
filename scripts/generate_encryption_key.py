#!/usr/bin/env python3
"""Generate a Fernet encryption key for CREDENTIAL_ENCRYPTION_KEY.

Usage:
    python scripts/generate_encryption_key.py

The output is a URL-safe base64-encoded 32-byte key suitable for
the CREDENTIAL_ENCRYPTION_KEY environment variable. Credential profile
secrets are encrypted with it before they reach the store.
"""
from cryptography.fernet import Fernet


def main() -> None:
    key = Fernet.generate_key().decode("ascii")
    print("# Add this to your .env file (credential profile secrets):")
    print(f"CREDENTIAL_ENCRYPTION_KEY={key}")


if __name__ == "__main__":
    main()
