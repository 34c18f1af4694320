"""Exception types for posqa-core.

This module defines the exception hierarchy used throughout the posqa harness.
All posqa exceptions inherit from PosqaError, allowing consumers to catch all
harness-specific errors with a single except clause.

Exception hierarchy:
    PosqaError (base)
    +-- ConfigurationError: Missing or invalid configuration (fatal)
    +-- ApiError: Failures talking to the POS backend
    |   +-- ApiTimeoutError: Request aborted after the configured timeout
    |   +-- ApiConnectionError: Server unreachable or refusing connections
    |   |   +-- DnsResolutionError: Host name could not be resolved
    |   +-- ApiHttpError: Non-success HTTP status
    |   +-- ApiResponseError: Body could not be parsed
    +-- ValidationFailed: Input validation produced errors
    +-- ConflictError: Data conflict that no strategy resolved
    +-- StoreError: Keyed store failures
    |   +-- StoreCorruptionError: Stored value could not be decoded
    +-- StateError: Test module state machine violations
    +-- InjectedFault: Failure raised by a fault-injection hook
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from posqa_core.validation import ValidationResult


class PosqaError(Exception):
    """Base exception for all posqa errors.

    This is the root of the posqa exception hierarchy. Catch this to handle
    any harness-specific error.
    """


class ConfigurationError(PosqaError):
    """Raised for missing or invalid configuration.

    Configuration errors are fatal: they are reported immediately and never
    retried.
    """


class ApiError(PosqaError):
    """Base class for errors raised while calling the POS backend API."""


class ApiTimeoutError(ApiError):
    """Raised when a request is aborted because it exceeded its timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Request timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ApiConnectionError(ApiError):
    """Raised when the server cannot be reached or refuses the connection."""


class DnsResolutionError(ApiConnectionError):
    """Raised when the API host name cannot be resolved."""


class ApiHttpError(ApiError):
    """Raised when the server answers with a non-success HTTP status.

    Attributes:
        status_code: The HTTP status code returned by the server.
    """

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP error! status: {status_code}")
        self.status_code = status_code


class ApiResponseError(ApiError):
    """Raised when a response body is not a JSON object."""


class ValidationFailed(PosqaError):
    """Raised when input validation fails.

    Attributes:
        result: The validation result carrying the individual issues.
    """

    def __init__(self, result: ValidationResult) -> None:
        fields = ", ".join(result.highlighted_fields)
        super().__init__(f"Validation failed for: {fields}")
        self.result = result


class ConflictError(PosqaError):
    """Raised when a data conflict cannot be resolved automatically."""


class StoreError(PosqaError):
    """Raised for keyed store failures."""


class StoreCorruptionError(StoreError):
    """Raised when a stored value cannot be decoded.

    Attributes:
        key: The store key holding the corrupted value.
    """

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Corrupted value under '{key}': {reason}")
        self.key = key


class StateError(PosqaError):
    """Raised for invalid state or state transition errors.

    This occurs when a test module is asked to start a category while
    another one is running, or when a finalized report is mutated.
    """


class InjectedFault(PosqaError):
    """Raised by a FaultInjector to simulate a failing dependency.

    Attributes:
        index: Attempt or item index the fault was injected at.
    """

    def __init__(self, index: int, what: str = "operation") -> None:
        super().__init__(f"Injected fault: {what} {index} failed")
        self.index = index


_USER_MESSAGES: tuple[tuple[type[BaseException], str], ...] = (
    (ConfigurationError, "The application is not configured correctly. Please contact support."),
    (ApiTimeoutError, "The request took too long. Please try again."),
    (DnsResolutionError, "Unable to reach the server. Please check your connection."),
    (ApiConnectionError, "The server is not responding. Please try again later."),
    (ApiHttpError, "The server returned an error. Please try again later."),
    (ApiResponseError, "The server sent an unexpected response. Please try again later."),
    (ValidationFailed, "Please correct the highlighted fields."),
    (ConflictError, "Your changes conflict with a newer version. Please review them."),
    (StoreCorruptionError, "Local data was damaged and has been reloaded."),
)

NETWORK_UNAVAILABLE_MESSAGE = (
    "Unable to connect to the server. Please check your internet connection."
)


def user_message(exc: BaseException) -> str:
    """Map an exception to the message shown to a POS user.

    Each error kind maps to a distinct string. Unknown errors fall back to a
    generic network message.

    Args:
        exc: The exception to describe.

    Returns:
        A user-facing message.
    """
    for exc_type, message in _USER_MESSAGES:
        if isinstance(exc, exc_type):
            return message
    return NETWORK_UNAVAILABLE_MESSAGE
