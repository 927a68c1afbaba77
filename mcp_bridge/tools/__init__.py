# mcp_bridge/tools/__init__.py
"""Read-only provider tools exposed to MCP clients."""

from .provider_tools import PROVIDER_TOOL_NAMES, register_provider_tools, run_tool

__all__ = ["PROVIDER_TOOL_NAMES", "register_provider_tools", "run_tool"]
