"""
Error taxonomy for the authorization decision layer.
"""

from typing import Optional


class AuthorizationError(Exception):
    """Base class for every error raised by this package."""


class InvalidRequest(AuthorizationError):
    """The query itself is malformed (bad resource string, unknown relation, bad outcome)."""


class RemoteUnavailable(AuthorizationError):
    """
    Transport or timeout failure talking to the authorization service.

    The decision engine answers these from the fallback table.
    """

    def __init__(self, message: str, is_timeout: bool = False):
        super().__init__(message)
        self.is_timeout = is_timeout


class RemoteError(AuthorizationError):
    """Well-formed error response from the authorization service."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AuthorizationUnavailable(AuthorizationError):
    """The permission system could not produce a decision."""


class DecisionTimeout(AuthorizationUnavailable):
    """The caller's deadline for a decision passed before one was reached."""


class PermissionDenied(AuthorizationError):
    """The caller lacks the rights to grant a relation."""


class NotFound(AuthorizationError):
    """Unknown approval request id."""


class AlreadyResolved(AuthorizationError):
    """The approval request has already left the pending state."""

    def __init__(self, request_id: str, status: str):
        super().__init__(f"Approval request {request_id} is already {status}")
        self.request_id = request_id
        self.status = status


class CacheCorruption(AuthorizationError):
    """A cache entry did not have the expected shape."""
