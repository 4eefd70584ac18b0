"""Typed exceptions for the plancal package.

Each exception carries enough context for the caller to decide what to do
(fallback, rollback, message to the user) without parsing the message text.
"""

from __future__ import annotations


class PlancalError(RuntimeError):
    """Base class for every error raised by plancal."""


class TransportError(PlancalError):
    """Raised when an HTTP request fails or returns a non-2xx status.

    ``status`` is ``None`` for connection-level failures (timeouts, DNS, ...).
    """

    def __init__(self, message: str, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def is_transient(self) -> bool:
        return self.status is None or self.status >= 500


class PlannerDecodeError(PlancalError):
    """Raised when a planner payload does not match the planner record schema."""

    def __init__(self, message: str, payload=None) -> None:
        super().__init__(message)
        self.payload = payload


class NotAuthenticatedError(PlancalError):
    """Raised when an endpoint needs the user identity and none is set."""


class MoveRejectedError(PlancalError):
    """Raised when a requested move cannot go ahead (unknown ids or a broken rule)."""

    def __init__(self, message: str, violation=None) -> None:
        super().__init__(message)
        self.violation = violation
