"""
Constants Module for Fleet Watchdog

Contains constant values, enumerations and message templates
used throughout the application.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final, FrozenSet, Tuple


class AlertChannel(str, Enum):
    """
    Alert Channel Enumeration

    Each channel maps onto one configured Telegram chat.
    """

    UPDATES = "updates"
    HTTP_FAILURES = "http_failures"
    ERRORS = "errors"

    @property
    def settings_field(self) -> str:
        """Name of the TelegramSettings field holding this channel."""
        return f"{self.value}_channel"


class TimeIntervals(IntEnum):
    """Common time intervals in seconds."""

    SECONDS_2 = 2
    SECONDS_5 = 5
    SECONDS_10 = 10
    SECONDS_30 = 30
    SECONDS_35 = 35
    SECONDS_55 = 55
    MINUTE_1 = 60
    MINUTES_2 = 120
    MINUTES_5 = 300
    MINUTES_7 = 420
    MINUTES_10 = 600
    HOUR_1 = 3600
    DAY_1 = 86400


class HTTPMethods(str, Enum):
    """HTTP methods accepted by the outbound layer."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"


class StatusCodes:
    """
    HTTP Status Code Categories

    Groups the codes the retry engine and restart checks care about.
    """

    # Restart webhooks report success with one of these
    RESTART_OK: Final[FrozenSet[int]] = frozenset({200, 201})

    # Blocked by edge protection, retried once through the bypass relay
    EDGE_BLOCKED: Final[FrozenSet[int]] = frozenset({403, 495})

    RATE_LIMITED: Final[int] = 429

    # Transient server-side failures
    SERVER_ERROR: Final[FrozenSet[int]] = frozenset({408, 500, 502, 503, 504})

    @classmethod
    def is_success(cls, code: int) -> bool:
        """2xx and 3xx both count as a successful fetch."""
        return 200 <= code < 400

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get description for common status codes."""
        descriptions = {
            200: "OK",
            201: "Created",
            400: "Bad Request",
            403: "Forbidden",
            404: "Not Found",
            408: "Request Timeout",
            429: "Too Many Requests",
            495: "SSL Certificate Error",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout"
        }
        return descriptions.get(code, f"HTTP {code}")


class NetworkErrorCodes:
    """Low-level error codes treated as network failures."""

    RETRYABLE: Final[FrozenSet[str]] = frozenset({
        "ETIMEDOUT",
        "ECONNABORTED",
        "ECONNREFUSED",
        "ECONNRESET",
        "ERR_NETWORK",
        "EHOSTUNREACH",
        "ENETUNREACH",
    })

    TIMEOUT: Final[FrozenSet[str]] = frozenset({"ETIMEDOUT", "ECONNABORTED"})


# Alerts whose text contains one of these are logged, never sent
SUPPRESSED_ALERT_SUBSTRINGS: Final[Tuple[str, ...]] = (
    "input_user_deactivated",
    "too many req",
    "could not find",
    "econnrefused",
    "connection refused",
)

# Content types returned as raw bytes by the bypass relay
BINARY_CONTENT_TYPES: Final[Tuple[str, ...]] = (
    "application/octet-stream",
    "application/pdf",
    "image/",
    "audio/",
    "video/",
)


class MessageTemplates:
    """Alert texts sent through the notification sink."""

    SOFT_ALERT: Final[str] = "{client_id} : not responding - {staleness}"
    CRITICAL_ALERT: Final[str] = "{client_id} : Not responding | url = {restart_url}"
    RESTARTED: Final[str] = "Restarted {target}"
    RESTART_FAILED: Final[str] = "Failed to Restart {target}"
    SERVICE_UNREACHABLE: Final[str] = "{url} NOT Reachable"
    SERVICE_RESTART_FAILED: Final[str] = "Cannot restart {url} server"
    REGISTRY_REFRESHED: Final[str] = "Refreshed Map :: {instance}"
    ATTEMPT_TIMEOUT: Final[str] = "{instance}: Timeout on attempt {attempt} for {url}"
    ATTEMPT_FAILED: Final[str] = "{instance}: Attempt {attempt} failed for {url}: {message}"
    RETRIES_EXHAUSTED: Final[str] = "{instance}: All {attempts} attempts failed for {url}: {message}"
    NOT_RETRYABLE: Final[str] = "{instance}: Request to {url} failed: {message}"
    BYPASS_FAILED: Final[str] = "{instance}: Bypass failed for {url}: {message}"


class ErrorCodes:
    """Application error codes."""

    # General errors (1xxx)
    UNKNOWN_ERROR: Final[int] = 1000
    VALIDATION_ERROR: Final[int] = 1001
    CONFIGURATION_ERROR: Final[int] = 1002
    INITIALIZATION_ERROR: Final[int] = 1003

    # Fetch errors (2xxx)
    FETCH_ERROR: Final[int] = 2000
    INVALID_TARGET_URL: Final[int] = 2001
    BYPASS_UNAVAILABLE: Final[int] = 2002

    # Registry errors (3xxx)
    REGISTRY_ERROR: Final[int] = 3000
    UNKNOWN_CLIENT: Final[int] = 3001
    INVALID_CLIENT_RECORD: Final[int] = 3002
