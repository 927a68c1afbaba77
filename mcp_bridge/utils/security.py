# mcp_bridge/utils/security.py
import base64
import binascii
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..settings import MIN_ENCRYPTION_SECRET_LENGTH

logger = logging.getLogger(__name__)

SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
DEFAULT_KDF_ITERATIONS = 100_000


def generate_encryption_secret() -> str:
    """Generates a random deployment secret suitable for ENCRYPTION_SECRET."""
    return secrets.token_urlsafe(48)


def generate_opaque_token(num_bytes: int = 32) -> str:
    """URL-safe random identifier used for bridge tokens, codes and states."""
    return secrets.token_urlsafe(num_bytes)


def redact(value: Optional[str], keep: int = 8) -> str:
    """Shortened form of an identifier that is safe to log."""
    if not value:
        return "None"
    return f"{value[:keep]}..."


class TokenCipher:
    """
    AES-256-GCM encryption keyed from a deployment secret.

    Every call to ``encrypt`` draws a fresh salt and IV, so the key is
    derived per record with PBKDF2-HMAC-SHA256. The serialized form is
    ``base64(salt || iv || tag || ciphertext)``.
    """

    def __init__(self, secret: Optional[str], iterations: int = DEFAULT_KDF_ITERATIONS):
        if not secret or len(secret) < MIN_ENCRYPTION_SECRET_LENGTH:
            logger.critical(
                "CRITICAL: ENCRYPTION_SECRET is missing or shorter than "
                f"{MIN_ENCRYPTION_SECRET_LENGTH} characters. Token encryption is unavailable."
            )
            raise ValueError(
                f"Encryption secret must be at least {MIN_ENCRYPTION_SECRET_LENGTH} characters."
            )
        self._secret = secret.encode("utf-8")
        self._iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, encrypted_data: str) -> Optional[str]:
        """
        Decrypt a value produced by ``encrypt``.

        Returns:
            The plaintext, or None when the data is malformed or fails the
            authentication tag check.
        """
        try:
            raw = base64.b64decode(encrypted_data.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError):
            logger.error("Decryption failed: stored value is not valid base64.")
            return None

        header_length = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(raw) < header_length:
            logger.error("Decryption failed: stored value is truncated.")
            return None

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH:header_length]
        ciphertext = raw[header_length:]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.error(
                "Decryption failed: authentication tag mismatch. "
                "The data was tampered with or the secret changed."
            )
            return None
        return plaintext.decode("utf-8")
