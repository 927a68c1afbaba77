# mcp_bridge/oauth/errors.py
from fastapi import HTTPException, status
from typing import Dict, Optional


class OAuthError(HTTPException):
    """Base class for OAuth 2.1 errors. Rendered as a flat ``{error, error_description}`` body."""

    def __init__(
        self,
        status_code: int,
        error: str,
        error_description: str | None = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.error = error
        self.error_description = error_description

        detail = {"error": error}
        if error_description:
            detail["error_description"] = error_description

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def to_body(self) -> Dict[str, str]:
        return dict(self.detail)


class InvalidRequestError(OAuthError):
    """
    The request is missing a required parameter, includes an
    unsupported parameter value (other than grant type),
    repeats a parameter, or is otherwise malformed.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_request",
            error_description=error_description,
        )


class InvalidClientError(OAuthError):
    """
    Client authentication failed (e.g., unknown client).
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = "Client authentication failed."):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="invalid_client",
            error_description=error_description,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidClientMetadataError(OAuthError):
    """
    The value of one of the client metadata fields is invalid.
    (RFC 7591 - Section 3.2.2)
    """

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_client_metadata",
            error_description=error_description,
        )


class InvalidGrantError(OAuthError):
    """
    The provided authorization grant is invalid, expired, revoked,
    does not match the redirection URI used in the authorization
    request, or was issued to another client.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = "Invalid authorization grant."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_grant",
            error_description=error_description,
        )


class UnsupportedGrantTypeError(OAuthError):
    """(RFC 6749 - Section 5.2)"""

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="unsupported_grant_type",
            error_description=error_description,
        )


class UnsupportedResponseTypeError(OAuthError):
    """(RFC 6749 - Section 4.1.2.1)"""

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="unsupported_response_type",
            error_description=error_description,
        )


class InvalidTokenError(OAuthError):
    """
    The access token provided is expired, revoked, malformed, or
    invalid for other reasons.
    (RFC 6750 - Section 3.1)
    """

    def __init__(self, error_description: str | None = "The access token is invalid.", realm: str = "mcp_bridge"):
        www_authenticate = f'Bearer realm="{realm}", error="invalid_token"'
        if error_description:
            www_authenticate += f', error_description="{error_description}"'
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="invalid_token",
            error_description=error_description,
            headers={"WWW-Authenticate": www_authenticate},
        )


class ServerError(OAuthError):
    """
    The authorization server encountered an unexpected
    condition that prevented it from fulfilling the request.
    (RFC 6749 - Section 4.1.2.1)
    """

    def __init__(self, error_description: str | None = "The authorization server encountered an internal error."):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="server_error",
            error_description=error_description,
        )


class TemporarilyUnavailableError(OAuthError):
    """
    The authorization server is currently unable to handle the request due to a
    temporary overloading or maintenance of the server.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = "The authorization server is temporarily unavailable."):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="temporarily_unavailable",
            error_description=error_description,
        )
