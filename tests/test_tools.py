"""
Tests for the provider tool helpers.
"""

import logging

import pytest
from fastmcp.exceptions import ToolError

from mcp_bridge.provider import (
    CredentialNotFoundError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from mcp_bridge.tools.provider_tools import (
    _date_range_params,
    categorize_error,
    run_tool,
    ymd_to_unix,
)


class TestRunTool:
    """Tests for the tool wrapper."""

    async def test_returns_result_and_logs_success(self, caplog):
        async def call():
            return {"ok": True}

        with caplog.at_level(logging.INFO, logger="mcp_bridge.tools.provider_tools"):
            assert await run_tool("get_user_goals", call) == {"ok": True}

        assert "tool_analytics tool=get_user_goals" in caplog.text
        assert "success=True" in caplog.text

    async def test_provider_error_becomes_tool_error(self, caplog):
        async def call():
            raise ProviderRejectedError(601)

        with caplog.at_level(logging.INFO, logger="mcp_bridge.tools.provider_tools"):
            with pytest.raises(ToolError, match="Too Many Requests"):
                await run_tool("get_measures", call)

        assert "error_category=rate_limit" in caplog.text

    async def test_validation_error_becomes_tool_error(self):
        async def call():
            raise ValueError("startdate must be a date in YYYY-MM-DD format.")

        with pytest.raises(ToolError, match="YYYY-MM-DD"):
            await run_tool("get_measures", call)

    async def test_unexpected_errors_propagate(self):
        async def call():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await run_tool("get_activity", call)

    @pytest.mark.parametrize("error,category", [
        (CredentialNotFoundError(), "auth"),
        (ProviderRejectedError(601), "rate_limit"),
        (ProviderRejectedError(503), "provider"),
        (ProviderUnavailableError("down"), "network"),
        (ValueError("bad"), "validation"),
        (RuntimeError("?"), "unknown"),
    ])
    def test_categorize_error(self, error, category):
        assert categorize_error(error) == category


class TestDateHelpers:
    """Tests for date parameter handling."""

    def test_ymd_to_unix_is_midnight_utc(self):
        assert ymd_to_unix("2024-01-01", "startdate") == 1704067200

    @pytest.mark.parametrize("value", ["2024/01/01", "01-01-2024", "yesterday", "2024-02-30"])
    def test_ymd_to_unix_rejects_bad_dates(self, value):
        with pytest.raises(ValueError, match="startdate"):
            ymd_to_unix(value, "startdate")

    def test_lastupdate_takes_precedence(self):
        assert _date_range_params("2024-01-01", "2024-01-07", 1700000000) == {"lastupdate": 1700000000}

    def test_date_range(self):
        assert _date_range_params("2024-01-01", "2024-01-07", None) == {
            "startdateymd": "2024-01-01",
            "enddateymd": "2024-01-07",
        }

    @pytest.mark.parametrize("start,end", [(None, None), ("2024-01-01", None), (None, "2024-01-07")])
    def test_incomplete_range_is_rejected(self, start, end):
        with pytest.raises(ValueError):
            _date_range_params(start, end, None)
