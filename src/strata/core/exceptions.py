"""Strata exception hierarchy.

Configuration errors are raised before any network activity and are never
retried. Dispatch errors describe one control-plane call and carry whether a
retry may succeed.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    THROTTLING = "throttling"
    TRANSIENT_NETWORK = "transient_network"
    SERVER = "server"
    VALIDATION = "validation"
    CLIENT = "client"
    MALFORMED_RESPONSE = "malformed_response"
    RETRY_EXHAUSTED = "retry_exhausted"
    RESOURCE_FAILED = "resource_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class StrataError(Exception):
    """Base exception for all Strata errors."""

    kind: ErrorKind = ErrorKind.CONFIGURATION


# ---------------------------------------------------------------------------
# Configuration (pre-flight, fatal)
# ---------------------------------------------------------------------------

class ConfigurationError(StrataError):
    """Invalid deployment unit or environment; fatal, never retried."""

    kind = ErrorKind.CONFIGURATION


class DanglingDependencyError(ConfigurationError):
    """A resource depends on an id that is not in the graph."""

    def __init__(self, logical_id: str, missing: list[str]) -> None:
        self.logical_id = logical_id
        self.missing = missing
        names = ", ".join(repr(m) for m in missing)
        super().__init__(f"Resource {logical_id!r} depends on {names} which does not exist")


class CircularDependencyError(ConfigurationError):
    """A dependency cycle was found while ordering resources."""

    def __init__(self, logical_id: str, cycle: list[str] | None = None) -> None:
        self.logical_id = logical_id
        self.cycle = cycle or [logical_id]
        super().__init__(
            f"Circular dependency detected at {logical_id!r}: {' -> '.join(self.cycle)}"
        )


class GraphFrozenError(ConfigurationError):
    """The graph was modified while a deployment attempt holds it."""


class UnresolvedReferenceError(ConfigurationError):
    """A Ref or Fn::GetAtt could not be resolved to a value."""

    def __init__(self, target: str, attribute: str | None = None) -> None:
        self.target = target
        self.attribute = attribute
        what = f"{target}.{attribute}" if attribute else target
        super().__init__(f"Cannot resolve reference to {what!r}")


class UnsupportedIntrinsicError(ConfigurationError):
    """A template value uses an intrinsic function that is not evaluated here."""

    def __init__(self, function: str) -> None:
        self.function = function
        super().__init__(f"Intrinsic function {function!r} is not supported")


class CredentialsNotFoundError(ConfigurationError):
    """No credential source yielded credentials."""


# ---------------------------------------------------------------------------
# Dispatch (per call)
# ---------------------------------------------------------------------------

class DispatchError(StrataError):
    """A control-plane call failed."""

    kind = ErrorKind.CLIENT
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class AuthenticationError(DispatchError):
    """Signature rejected or credentials expired."""

    kind = ErrorKind.AUTHENTICATION


class ThrottlingError(DispatchError):
    """The service asked the caller to slow down."""

    kind = ErrorKind.THROTTLING
    retryable = True


class TransientNetworkError(DispatchError):
    """Timeout, connection reset or other transport-level failure."""

    kind = ErrorKind.TRANSIENT_NETWORK
    retryable = True


class ServerError(DispatchError):
    """The service answered with a 5xx status."""

    kind = ErrorKind.SERVER
    retryable = True


class ValidationError(DispatchError):
    """The service rejected the payload shape."""

    kind = ErrorKind.VALIDATION


class ClientRequestError(DispatchError):
    """Any other 4xx response."""

    kind = ErrorKind.CLIENT


class MalformedResponseError(DispatchError):
    """A successful status carried a body that is not valid JSON."""

    kind = ErrorKind.MALFORMED_RESPONSE


class RetryExhaustedError(DispatchError):
    """All attempts failed with retryable errors."""

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(
        self, last_error: DispatchError, attempts: int, delays: list[float] | None = None
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        self.delays = delays or []
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
            error_code=last_error.error_code,
        )


class ResourceOperationError(DispatchError):
    """The control plane accepted the request but the resource operation failed."""

    kind = ErrorKind.RESOURCE_FAILED

    def __init__(
        self,
        message: str,
        *,
        request_token: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.request_token = request_token
        super().__init__(message, error_code=error_code)


class ProvisioningTimeoutError(ResourceOperationError):
    """A resource operation did not settle within the polling timeout."""

    kind = ErrorKind.TIMEOUT
