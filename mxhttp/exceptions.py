"""
Defines the error taxonomy of the HTTP engine.

Every failure is reported to the immediate caller as one of these types,
carrying the operation that failed and the wrapped cause.
"""

from typing import Optional


class MxHttpError(Exception):
    """Base exception for all errors raised or recorded by mxhttp."""

    def __init__(
        self,
        message: str,
        op: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.op = op
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        """The wrapped error, if any."""
        return self.__cause__

    def __str__(self) -> str:
        if self.op:
            return f"mxhttp [{self.op}]: {self.message}"
        return f"mxhttp: {self.message}"


class BuildError(MxHttpError):
    """Raised while constructing a request. Never triggers a retry."""


class InvalidURL(BuildError):
    """Raised when a request URL cannot be parsed or is not http(s)."""


class TransportError(MxHttpError):
    """Raised for connection, TLS, DNS and protocol failures."""


class CancellationError(MxHttpError):
    """Raised when a request context is cancelled or its deadline expires."""


class DecodeError(MxHttpError):
    """Raised when a response body does not match the requested shape."""


class StatusError(MxHttpError):
    """Recorded when a response status assertion fails."""

    def __init__(self, message: str, expected: str, actual: int, op: str = "Response.ensure_status"):
        super().__init__(message, op=op)
        self.expected = expected
        self.actual = actual


class NoCookie(MxHttpError):
    """Raised when a named cookie is not present."""


class HookError(MxHttpError):
    """Wraps a non-mxhttp exception raised by an interceptor."""


class ConfigurationError(MxHttpError):
    """Raised for invalid client options or configuration files."""
