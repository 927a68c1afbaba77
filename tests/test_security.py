"""
Unit tests for the token cipher and identifier helpers.
"""

import base64

import pytest

from mcp_bridge.utils.security import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    TokenCipher,
    generate_encryption_secret,
    generate_opaque_token,
    redact,
)


class TestTokenCipher:
    """Tests for TokenCipher."""

    def test_round_trip(self, cipher):
        """Test that decrypt(encrypt(x)) returns x."""
        assert cipher.decrypt(cipher.encrypt("provider-access-token")) == "provider-access-token"

    def test_same_plaintext_encrypts_differently(self, cipher):
        """Test that every encryption uses a fresh salt and IV."""
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_serialized_layout(self, cipher):
        """Test that the output is base64(salt || iv || tag || ciphertext)."""
        raw = base64.b64decode(cipher.encrypt("abc"))
        assert len(raw) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + len("abc")

    def test_tampered_ciphertext_returns_none(self, cipher):
        """Test that flipping one ciphertext bit fails the tag check."""
        raw = bytearray(base64.b64decode(cipher.encrypt("secret-value")))
        raw[-1] ^= 0x01
        assert cipher.decrypt(base64.b64encode(bytes(raw)).decode("ascii")) is None

    def test_tampered_tag_returns_none(self, cipher):
        """Test that a modified authentication tag is rejected."""
        raw = bytearray(base64.b64decode(cipher.encrypt("secret-value")))
        raw[SALT_LENGTH + IV_LENGTH] ^= 0xFF
        assert cipher.decrypt(base64.b64encode(bytes(raw)).decode("ascii")) is None

    def test_wrong_secret_returns_none(self, cipher):
        """Test that a different deployment secret cannot decrypt."""
        other = TokenCipher("a-completely-different-secret-of-enough-length", iterations=1000)
        assert other.decrypt(cipher.encrypt("secret-value")) is None

    def test_garbage_input_returns_none(self, cipher):
        """Test that malformed and truncated inputs yield None instead of raising."""
        assert cipher.decrypt("not base64 !!") is None
        assert cipher.decrypt(base64.b64encode(b"short").decode("ascii")) is None

    @pytest.mark.parametrize("secret", [None, "", "x" * 31])
    def test_short_or_missing_secret_is_refused(self, secret):
        """Test that secrets under 32 characters are rejected."""
        with pytest.raises(ValueError):
            TokenCipher(secret)


class TestIdentifierHelpers:
    """Tests for random identifiers and redaction."""

    def test_generated_secret_is_strong_enough(self):
        assert len(generate_encryption_secret()) >= 32

    def test_opaque_tokens_are_unique(self):
        tokens = {generate_opaque_token() for _ in range(50)}
        assert len(tokens) == 50

    def test_redact_keeps_prefix_only(self):
        assert redact("abcdefghijklmnop") == "abcdefgh..."
        assert redact(None) == "None"
