"""Exception hierarchy shared by all providers."""

from __future__ import annotations

from typing import Iterable, Optional


class MediagenError(Exception):
    """Base class for every error raised by mediagen."""


class ConfigurationError(MediagenError):
    """Missing credential or unreadable prompt file. Fatal for the run."""


class MissingParameterError(MediagenError):
    """A category requires an input the user did not supply.

    Raised by the request builder before anything is sent. ``missing`` holds
    the option names, ``example`` a command line that would have worked.
    """

    def __init__(self, missing: Iterable[str], category: str, example: str = ""):
        self.missing = tuple(missing)
        self.category = category
        self.example = example
        super().__init__(f"{category} models require: {', '.join(self.missing)}")


class UpstreamError(MediagenError):
    """The provider rejected the request or reported a failed job."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail=None):
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class PollTimeoutError(UpstreamError):
    """Polling hit its attempt ceiling without a terminal state."""

    def __init__(self, attempts: int, interval: float):
        self.attempts = attempts
        self.interval = interval
        super().__init__(f"Polling timeout: no result after {attempts} attempts ({attempts * interval:.0f}s)")


class DownloadError(MediagenError):
    """One media URL could not be fetched or written."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download {url}: {reason}")
