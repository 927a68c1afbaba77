# mcp_bridge/tools/provider_tools.py
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from ..provider import (
    CredentialNotFoundError,
    ProviderApiClient,
    ProviderError,
    ProviderRejectedError,
    ProviderUnavailableError,
    ReauthenticationRequiredError,
)

logger = logging.getLogger(__name__)

RATE_LIMITED_STATUS = 601

PROVIDER_TOOL_NAMES = (
    "get_user_devices",
    "get_user_goals",
    "get_sleep_summary",
    "get_measures",
    "get_activity",
)


def categorize_error(error: Exception) -> str:
    if isinstance(error, (CredentialNotFoundError, ReauthenticationRequiredError)):
        return "auth"
    if isinstance(error, ProviderRejectedError):
        return "rate_limit" if error.status == RATE_LIMITED_STATUS else "provider"
    if isinstance(error, ProviderUnavailableError):
        return "network"
    if isinstance(error, ValueError):
        return "validation"
    return "unknown"


async def run_tool(tool_name: str, call: Callable[[], Awaitable[Any]]) -> Any:
    """
    Run one tool body and log its name, duration and outcome.

    Nothing about the arguments or the payload is logged. Provider and
    argument failures reach the MCP client as a ToolError carrying only
    the user-safe message.
    """
    started = time.perf_counter()
    try:
        result = await call()
    except (ProviderError, ValueError) as e:
        duration_ms = round((time.perf_counter() - started) * 1000)
        logger.info(
            f"tool_analytics tool={tool_name} duration_ms={duration_ms} success=False "
            f"error_category={categorize_error(e)}"
        )
        message = e.message if isinstance(e, ProviderError) else str(e)
        raise ToolError(message) from e

    duration_ms = round((time.perf_counter() - started) * 1000)
    logger.info(f"tool_analytics tool={tool_name} duration_ms={duration_ms} success=True")
    return result


def ymd_to_unix(value: str, field_name: str) -> int:
    """'YYYY-MM-DD' -> unix seconds at midnight UTC."""
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"{field_name} must be a date in YYYY-MM-DD format.")
    return int(parsed.timestamp())


def _date_range_params(
    startdateymd: Optional[str],
    enddateymd: Optional[str],
    lastupdate: Optional[int],
) -> Dict[str, Any]:
    if lastupdate is not None:
        return {"lastupdate": lastupdate}
    if startdateymd and enddateymd:
        return {"startdateymd": startdateymd, "enddateymd": enddateymd}
    raise ValueError("Either lastupdate or both startdateymd and enddateymd are required.")


def register_provider_tools(mcp: FastMCP, api_client: ProviderApiClient, bridge_token: str) -> None:
    """
    Register the read-only provider tools on a per-session server.

    Every tool closes over ``bridge_token``; the session's server instance
    is the only holder of that binding.
    """

    async def call_provider(path: str, action: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = await api_client.request(bridge_token, path, action, params)
        return body if isinstance(body, dict) else {"result": body}

    @mcp.tool(
        name="get_user_devices",
        description="List the devices linked to the user's account (scales, watches, sleep analyzers) "
                    "with battery level and last sync time.",
    )
    async def get_user_devices() -> Dict[str, Any]:
        return await run_tool(
            "get_user_devices",
            lambda: call_provider("/v2/user", "getdevice"),
        )

    @mcp.tool(
        name="get_user_goals",
        description="Get the user's goals for steps, sleep duration and weight.",
    )
    async def get_user_goals() -> Dict[str, Any]:
        return await run_tool(
            "get_user_goals",
            lambda: call_provider("/v2/user", "getgoals"),
        )

    @mcp.tool(
        name="get_sleep_summary",
        description="Get aggregated nightly sleep summaries (duration, stages, heart rate, breathing, score) "
                    "for a date range given as startdateymd/enddateymd (YYYY-MM-DD), or for everything "
                    "updated after the unix timestamp lastupdate.",
    )
    async def get_sleep_summary(
        startdateymd: Optional[str] = None,
        enddateymd: Optional[str] = None,
        lastupdate: Optional[int] = None,
        data_fields: Optional[str] = None,
    ) -> Dict[str, Any]:
        async def call():
            params = _date_range_params(startdateymd, enddateymd, lastupdate)
            params["data_fields"] = data_fields
            return await call_provider("/v2/sleep", "getsummary", params)

        return await run_tool("get_sleep_summary", call)

    @mcp.tool(
        name="get_measures",
        description="Get body measures such as weight, fat mass, blood pressure, heart rate and temperature. "
                    "Filter by a single meastype id or a comma-separated meastypes list, and by "
                    "startdate/enddate (YYYY-MM-DD) or the unix timestamp lastupdate. Use offset to page "
                    "when the previous response had more=1.",
    )
    async def get_measures(
        meastype: Optional[int] = None,
        meastypes: Optional[str] = None,
        startdate: Optional[str] = None,
        enddate: Optional[str] = None,
        lastupdate: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Dict[str, Any]:
        async def call():
            params = {
                "meastype": meastype,
                "meastypes": meastypes,
                "startdate": ymd_to_unix(startdate, "startdate") if startdate else None,
                "enddate": ymd_to_unix(enddate, "enddate") if enddate else None,
                "lastupdate": lastupdate,
                "offset": offset,
            }
            return await call_provider("/measure", "getmeas", params)

        return await run_tool("get_measures", call)

    @mcp.tool(
        name="get_activity",
        description="Get daily aggregated activity (steps, distance, elevation, calories, activity durations) "
                    "for a date range given as startdateymd/enddateymd (YYYY-MM-DD), or for everything "
                    "updated after the unix timestamp lastupdate.",
    )
    async def get_activity(
        startdateymd: Optional[str] = None,
        enddateymd: Optional[str] = None,
        lastupdate: Optional[int] = None,
        offset: Optional[int] = None,
        data_fields: Optional[str] = None,
    ) -> Dict[str, Any]:
        async def call():
            params = _date_range_params(startdateymd, enddateymd, lastupdate)
            params["offset"] = offset
            params["data_fields"] = data_fields
            return await call_provider("/v2/measure", "getactivity", params)

        return await run_tool("get_activity", call)

    logger.debug(f"Registered {len(PROVIDER_TOOL_NAMES)} provider tools on '{mcp.name}'.")
