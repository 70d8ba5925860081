"""Exception hierarchy shared across request construction, execution, and download.

A guarded call spans node selection, the HTTP exchange, response validation,
and (for artefacts) writing the body to disk.  This module groups the failure
modes into a small hierarchy so caller code can react to high-level categories
(for example, configuration mistakes vs. exhausted retries) while still having
access to specialised subclasses when finer-grained handling is required.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "RestGuardError",
    "ConfigurationError",
    "ServiceNotFound",
    "NodeListEmpty",
    "MissingValidator",
    "TransportError",
    "DeadlineExceeded",
    "ValidationFailed",
    "RetryCallbackError",
    "InvalidResponse",
    "FileIOError",
]


class RestGuardError(RuntimeError):
    """Base exception for guarded request construction, execution, or download."""


class ConfigurationError(RestGuardError):
    """Raised when configuration files or values are invalid."""


class ServiceNotFound(RestGuardError):
    """Raised when a ticket or lookup references a service that is not registered."""


class NodeListEmpty(RestGuardError):
    """Raised when a service has no (enabled) nodes to send a request to."""


class MissingValidator(RestGuardError):
    """Raised when a service is executed without a response validator."""


class TransportError(RestGuardError):
    """Raised when the HTTP exchange fails below the application layer.

    The originating :mod:`httpx` exception is available as ``__cause__``.
    """


class DeadlineExceeded(TransportError):
    """Raised when the total time budget of a bounded execution runs out.

    Unlike a plain :class:`TransportError` this failure is terminal and is
    never retried.
    """


class ValidationFailed(RestGuardError):
    """Raised when a received response is rejected by the service validator.

    Validators may raise a subclass of this exception to attach their own
    application error; it replaces the generic failure in the surfaced result.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryCallbackError(RestGuardError):
    """Raised when a custom retry node selector fails."""


class InvalidResponse(RestGuardError):
    """Raised when a download receives no response or an unexpected status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FileIOError(RestGuardError):
    """Raised when an artefact file cannot be created, written, or closed."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
