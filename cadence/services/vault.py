"""
Credential Vault
AES-256-GCM encryption for user-supplied provider keys.

The key is derived from VAULT_SECRET with PBKDF2-HMAC-SHA512 and a fresh
random salt per encryption.

Token format: ``v1:<salt b64>:<nonce b64>:<ciphertext+tag b64>``
"""

import base64
import binascii
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cadence.core.config import get_settings
from cadence.core.errors import CredentialCorrupt, VaultMisconfigured

logger = logging.getLogger(__name__)

_PREFIX = "v1"
SALT_LENGTH = 32   # 256 bits
NONCE_LENGTH = 12  # 96 bits, the GCM standard
KEY_LENGTH = 32    # AES-256
TAG_LENGTH = 16

MIN_KEY_LENGTH = 10


class CredentialVault:
    """Encrypts, decrypts and fingerprints provider secrets."""

    def __init__(self, secret: str, iterations: int = 100000):
        if not secret:
            raise VaultMisconfigured("VAULT_SECRET is not configured")
        self._secret = secret.encode("utf-8")
        self.iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret and return an opaque token."""
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return ":".join([
            _PREFIX,
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(nonce).decode("ascii"),
            base64.b64encode(ciphertext).decode("ascii"),
        ])

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by ``encrypt``.

        Raises:
            CredentialCorrupt: malformed token or failed authentication
        """
        parts = (token or "").split(":")
        if len(parts) != 4 or parts[0] != _PREFIX:
            raise CredentialCorrupt("Invalid encrypted credential format")

        try:
            salt = base64.b64decode(parts[1], validate=True)
            nonce = base64.b64decode(parts[2], validate=True)
            ciphertext = base64.b64decode(parts[3], validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialCorrupt("Invalid encrypted credential encoding") from e

        if len(salt) != SALT_LENGTH or len(nonce) != NONCE_LENGTH or len(ciphertext) < TAG_LENGTH:
            raise CredentialCorrupt("Invalid encrypted credential length")

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            logger.error("[Vault] Credential failed integrity check")
            raise CredentialCorrupt("Credential failed integrity check") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialCorrupt("Credential is not valid UTF-8") from e

    @staticmethod
    def fingerprint(plaintext: str, chars: int = 4) -> str:
        """Last N characters for display, in ``...xxxx`` form."""
        if len(plaintext) <= chars:
            return "..." + plaintext
        return "..." + plaintext[-chars:]


def validate_key_format(provider: str, key: Optional[str]) -> bool:
    """Basic shape check before a key is stored."""
    trimmed = (key or "").strip()
    return len(trimmed) >= MIN_KEY_LENGTH


@lru_cache()
def get_vault() -> CredentialVault:
    """Process-wide vault built from settings."""
    settings = get_settings()
    return CredentialVault(settings.VAULT_SECRET, settings.VAULT_KDF_ITERATIONS)


__all__ = ["CredentialVault", "validate_key_format", "get_vault"]
