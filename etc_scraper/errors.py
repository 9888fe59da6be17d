"""Typed failures surfaced by a scrape session.

Every failure a caller can see is one of these. ``kind`` is a stable tag for
branching and serialization; ``phase`` names the lifecycle step that failed.
"""

from __future__ import annotations

from typing import Optional


class ScrapeError(Exception):
    """Base class for all scrape failures."""

    kind = "error"

    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"[{self.phase}] {self.message}"
        return self.message


class ProtocolConnectionError(ScrapeError):
    """The remote-debugging connection is unreachable or dropped."""

    kind = "connection"


class AuthenticationError(ScrapeError):
    """Credentials rejected or the post-login marker never appeared."""

    kind = "authentication"


class ElementNotFoundError(ScrapeError):
    """An expected interactive element was absent after a bounded wait."""

    kind = "not_found"


class ScrapeTimeoutError(ScrapeError):
    """A bounded wait (results, export, session deadline) expired."""

    kind = "timeout"


class DialogTimeoutError(ScrapeTimeoutError):
    """A native dialog was not resolved within the grace period."""


class DownloadTimeoutError(ScrapeError):
    """No stable downloaded file appeared within the window."""

    kind = "download_timeout"


class ArtifactIOError(ScrapeError):
    """Renaming or reading the downloaded file failed."""

    kind = "io"


class InvalidStateError(ScrapeError):
    """A session operation was invoked out of order."""

    kind = "invalid_state"
