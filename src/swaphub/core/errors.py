"""Error taxonomy shared by the server, the HTTP client and the event layer.

Each error carries a stable ``code`` that travels over the wire (HTTP
``detail`` or the ``error`` event) so a client can rebuild the same class.
"""

from __future__ import annotations


class SwapHubError(Exception):
    """Base class for all operation errors."""

    code = "SwapHubError"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SwapHubError):
    """Malformed or semantically invalid input. Not retryable as-is."""

    code = "ValidationError"
    status_code = 400


class AuthenticationError(SwapHubError):
    """Missing, invalid or expired credential."""

    code = "AuthenticationError"
    status_code = 401


class AuthorizationError(SwapHubError):
    """Caller lacks rights over the target entity."""

    code = "AuthorizationError"
    status_code = 403


class NotFoundError(SwapHubError):
    """Referenced id does not exist."""

    code = "NotFoundError"
    status_code = 404


class StateError(SwapHubError):
    """Operation invalid for the current lifecycle state.

    The caller should refresh its view and may retry.
    """

    code = "StateError"
    status_code = 409


ERRORS_BY_CODE: dict[str, type[SwapHubError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        AuthenticationError,
        AuthorizationError,
        NotFoundError,
        StateError,
    )
}

ERRORS_BY_STATUS: dict[int, type[SwapHubError]] = {
    cls.status_code: cls for cls in ERRORS_BY_CODE.values()
}


def error_from_code(code: str, message: str) -> SwapHubError:
    """Rebuild a taxonomy error from its wire code."""
    return ERRORS_BY_CODE.get(code, SwapHubError)(message)
