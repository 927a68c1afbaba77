# mcp_bridge/oauth/pkce.py
import base64
import hashlib
import hmac
import secrets
from typing import Optional

# RFC 7636 specifies length between 43 and 128 characters
CODE_VERIFIER_LENGTH = 64
SUPPORTED_METHODS = ("S256",)


def generate_pkce_code_verifier(length: int = CODE_VERIFIER_LENGTH) -> str:
    """
    Generates a cryptographically random PKCE code verifier.
    (RFC 7636 - Section 4.1)
    """
    if not (43 <= length <= 128):
        raise ValueError("PKCE code verifier length must be between 43 and 128 characters.")
    # token_urlsafe yields ~4/3 characters per byte
    return secrets.token_urlsafe(length)[:length]


def generate_pkce_code_challenge(code_verifier: str, method: str = "S256") -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding. (RFC 7636 - Section 4.2)"""
    if method != "S256":
        raise ValueError(f"Unsupported PKCE code challenge method: {method}. Only 'S256' is supported.")
    hashed_verifier = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(hashed_verifier).rstrip(b"=").decode("ascii")


def verify_pkce_code_verifier(code_verifier: Optional[str], code_challenge: str, method: str = "S256") -> bool:
    """True only if the verifier hashes to exactly the stored challenge."""
    if not code_verifier:
        return False
    try:
        computed = generate_pkce_code_challenge(code_verifier, method)
    except (ValueError, UnicodeEncodeError):
        return False
    return hmac.compare_digest(computed.encode("ascii"), code_challenge.encode("utf-8"))
