"""Exception types for request errors.

This module defines the exception hierarchy raised or recorded by the
request object. Policy, state and protocol errors are raised directly from
the call that violated them. Transport errors and aborts never cross an
asynchronous boundary: they are recorded on the request and surfaced
through its state and events.
"""

from typing import Any


class XHRException(Exception):
    """Base class for all request errors.

    Attributes:
        message: Human-readable description.
        url: The URL involved, when known.
        context: Additional context (method, header, errno, ...).
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the error.
            url: The URL of the request that triggered this error.
            context: Optional dict of additional context.
        """
        self.message = message
        self.url = url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context.

        Returns:
            Formatted error message string.
        """
        parts = [self.message]
        if self.url:
            parts.append(f"URL: {self.url}")

        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")

        return "\n".join(parts)


# =============================================================================
# Raised from the offending call
# =============================================================================


class PolicyError(XHRException):
    """A method or header is not permitted."""


class SecurityError(PolicyError):
    """Raised by ``open()`` for a forbidden request method."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(
            "SecurityError: Request method not allowed",
            context={"method": method},
        )


class InvalidStateError(XHRException):
    """The call is not valid in the current readiness state."""

    def __init__(self, message: str) -> None:
        super().__init__(f"INVALID_STATE_ERR: {message}")


class ProtocolError(XHRException):
    """The URL scheme or method cannot be served by any transport."""


# =============================================================================
# Recorded on the request
# =============================================================================


class TransportError(XHRException):
    """A transfer failed after it started.

    Attributes:
        status: Status reported on the request (0 unless a transport sets it).
    """

    default_status = 0

    def __init__(
        self,
        message: str,
        url: str | None = None,
        context: dict[str, Any] | None = None,
        status: int | None = None,
    ) -> None:
        self.status = self.default_status if status is None else status
        super().__init__(message, url, context)


class SyncBridgeError(TransportError):
    """The synchronous bridge worker failed or produced no usable result."""

    default_status = 503


class RedirectLoopError(TransportError):
    """More redirect hops than allowed."""

    def __init__(self, url: str, max_redirects: int) -> None:
        self.max_redirects = max_redirects
        super().__init__(
            f"Exceeded {max_redirects} redirects",
            url=url,
            context={"max_redirects": max_redirects},
        )


class AbortError(XHRException):
    """The transfer was cancelled by ``abort()``."""

    def __init__(self, url: str | None = None) -> None:
        super().__init__("The request was aborted", url=url)
