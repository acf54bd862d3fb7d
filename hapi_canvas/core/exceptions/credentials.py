"""
Credential Exceptions

Errors raised around the OAuth credential held by the token manager.
"""

from hapi_canvas.core.config.constants import ErrorKind
from hapi_canvas.core.exceptions.base import CanvasClientError


class CredentialError(CanvasClientError):
    """Base exception for credential storage and lifecycle errors."""
    pass


class NotConnectedError(CredentialError):
    """
    Raised when a request needs a token but none is usable.

    Covers both "never connected" and "refresh failed"; ``details["state"]``
    tells the two apart.
    """

    kind = ErrorKind.NOT_CONNECTED

    def __init__(
        self, message: str = "Canvas not connected. Please connect your Canvas account.", **kwargs
    ):
        super().__init__(message, **kwargs)


class TokenRefreshError(CredentialError):
    """
    Raised internally when the refresh-token exchange fails.

    The token manager catches it, marks the credential invalid and reports
    no token to callers.
    """

    kind = ErrorKind.AUTHENTICATION


class CredentialStoreError(CredentialError):
    """Raised when the persistent credential store cannot be read or written."""
    pass
