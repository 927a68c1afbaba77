# mcp_bridge/utils/__init__.py

"""
Utility module initialization file.

Exposes the token cipher and random identifier helpers.
"""

from .security import TokenCipher, generate_encryption_secret, generate_opaque_token, redact

__all__ = ["TokenCipher", "generate_encryption_secret", "generate_opaque_token", "redact"]
