# mcp_bridge/__init__.py
"""OAuth bridge and session-scoped MCP gateway for a single OAuth 2.0 provider API."""

__version__ = "0.1.0"
