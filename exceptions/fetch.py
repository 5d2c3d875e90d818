"""
Fetch Exception Classes for Fleet Watchdog

Raised inside the resilient fetch layer. They never escape
``ResilientFetch.fetch``; the fetcher converts them into a logged
failure and a ``None`` result.
"""

from __future__ import annotations

from typing import Any, Optional

from config.constants import ErrorCodes
from exceptions.base import WatchdogException


class FetchException(WatchdogException):
    """Base class for outbound request failures."""

    default_error_code = ErrorCodes.FETCH_ERROR

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if url:
            self.details["url"] = url


class InvalidTargetURLError(FetchException):
    """
    Invalid Target URL

    The URL is empty, has no scheme or host, or cannot be parsed.
    """

    default_error_code = ErrorCodes.INVALID_TARGET_URL

    def __init__(
        self,
        url: Optional[str],
        reason: str = "unparseable",
        **kwargs: Any
    ) -> None:
        super().__init__(f"Invalid target URL: {url!r} ({reason})", url=url, **kwargs)
        self.details["reason"] = reason


class BypassUnavailableError(FetchException):
    """An edge-blocked request needed the bypass relay but none is configured."""

    default_error_code = ErrorCodes.BYPASS_UNAVAILABLE

    def __init__(self, url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__("Bypass relay URL is not configured", url=url, **kwargs)
