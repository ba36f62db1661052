"""Error types raised by the capture layer."""

from __future__ import annotations


class CaptureError(Exception):
    """Base class for capture query failures."""


class NotFoundError(CaptureError, LookupError):
    """No collected item matched the lookup."""


class NotTrackedError(NotFoundError):
    """The page was never tracked by the collector (or was already untracked)."""


class PageClosedError(CaptureError):
    """The selected page is missing or has been closed."""


class PageError(Exception):
    """Uncaught page error delivered without an exception object."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
