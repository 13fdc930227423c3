"""
Option Flow Exceptions

Exception hierarchy for the streaming client. Each exception maps to one
ErrorKind so the lifecycle manager can report it on its status without
inspecting exception types.
"""

from libs.option_flow.types import ErrorKind


class OptionFlowError(Exception):
    """Base exception for all option flow errors."""

    kind: ErrorKind | None = None


class InvalidEndpointError(OptionFlowError):
    """Raised when configuration does not produce a valid stream target."""

    kind = ErrorKind.INVALID_ENDPOINT


class NotAuthenticatedError(OptionFlowError):
    """Raised when an operation needs a credential and none is present."""

    kind = ErrorKind.NOT_AUTHENTICATED


class TransportFailureError(OptionFlowError):
    """Raised when the network transport fails (open, read, or ping)."""

    kind = ErrorKind.TRANSPORT_FAILURE


class AuthRejectedError(OptionFlowError):
    """Raised when the server rejects the credential (401 in-band or at handshake)."""

    kind = ErrorKind.AUTH_REJECTED


class DecodeNoiseError(OptionFlowError):
    """Raised when a frame cannot be decoded and is not an auth rejection."""

    kind = ErrorKind.DECODE_NOISE


class SessionExchangeError(OptionFlowError):
    """Raised when exchanging an identity token for a session fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransactionFetchError(OptionFlowError):
    """Raised when the trades of a bucket cannot be fetched or decoded."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
