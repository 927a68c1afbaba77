# mcp_bridge/provider/errors.py
from typing import Optional

# Status codes the provider API is known to return, with user-safe messages
PROVIDER_STATUS_MESSAGES = {
    100: "The hash is missing, invalid, or does not match the provided email",
    247: "The userid is either absent or invalid",
    250: "The provided userid and/or Oauth credentials do not match",
    286: "No such subscription was found",
    293: "The callback URL is either absent or incorrect",
    294: "No such subscription could be deleted",
    304: "The comment is either invalid or larger than 255 characters",
    305: "Too many notifications are already set",
    328: "The user is deactivated",
    342: "The signature (using Oauth) is invalid",
    343: "Wrong Notification Callback Url doesn't exist",
    401: "The access token is invalid or expired",
    503: "Invalid params",
    601: "Too Many Requests",
    2554: "Unknown action",
    2555: "An unknown error occurred",
}

INVALID_TOKEN_STATUS = 401


def describe_provider_status(status: int) -> str:
    return PROVIDER_STATUS_MESSAGES.get(status, f"Provider API error: {status}")


class ProviderError(Exception):
    """Base class for failures talking to the upstream provider."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderUnavailableError(ProviderError):
    """Network failure, non-2xx HTTP status or unparseable payload from the provider."""


class ProviderRejectedError(ProviderError):
    """The provider answered with a non-zero ``status`` field."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message or describe_provider_status(status))


class CredentialNotFoundError(ProviderError):
    """No usable credential exists for the bridge token (absent, expired or undecryptable)."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class ReauthenticationRequiredError(ProviderError):
    """The provider refused the refresh grant; the user has to authorize again."""

    def __init__(self, message: str = "Provider authorization expired. Re-authentication required."):
        super().__init__(message)
