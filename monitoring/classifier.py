"""
============================================================================
FLEET WATCHDOG - FAILURE CLASSIFIER
============================================================================
Maps any exception raised by an outbound request onto a closed set of
failure kinds. The retry engine decides what to do purely from the kind:

    TIMEOUT       → retry
    NETWORK       → retry
    RATE_LIMITED  → retry, never alerted
    SERVER_ERROR  → retry (408 / 500 / 502 / 503 / 504)
    EDGE_BLOCKED  → one call through the bypass relay (403 / 495)
    OTHER         → reported once, not retried

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import errno
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from config.constants import (
    NetworkErrorCodes,
    StatusCodes,
    SUPPRESSED_ALERT_SUBSTRINGS,
)
from exceptions.base import WatchdogException
from utils.helpers import StringHelper


class ErrorKind(str, Enum):
    """Closed classification of request failures."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    EDGE_BLOCKED = "edge_blocked"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    OTHER = "other"


RETRYABLE_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
})


@dataclass(frozen=True)
class ClassifiedError:
    """Outcome of classifying one failed attempt."""

    kind: ErrorKind
    message: str
    status: Optional[int] = None

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def is_timeout(self) -> bool:
        return self.kind is ErrorKind.TIMEOUT


def kind_for_status(status: int) -> ErrorKind:
    """Classify an HTTP error status."""
    if status in StatusCodes.EDGE_BLOCKED:
        return ErrorKind.EDGE_BLOCKED
    if status == StatusCodes.RATE_LIMITED:
        return ErrorKind.RATE_LIMITED
    if status in StatusCodes.SERVER_ERROR:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.OTHER


def _errno_name(exc: BaseException) -> Optional[str]:
    """Symbolic errno of the exception or its cause, e.g. 'ECONNREFUSED'."""
    current: Optional[BaseException] = exc
    while current is not None:
        code = getattr(current, "errno", None)
        if isinstance(code, int) and code in errno.errorcode:
            return errno.errorcode[code]
        current = current.__cause__ or current.__context__
    return None


def extract_message(exc: BaseException) -> str:
    """
    Best human-readable description of a failure.

    For HTTP errors the response body is consulted first; APIs usually
    put the useful part in ``message``, ``error`` or ``description``.
    """
    if isinstance(exc, WatchdogException):
        return exc.message

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        detail = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("message", "error", "description"):
                if isinstance(body.get(key), str) and body[key]:
                    detail = body[key]
                    break
        if detail is None and response.text:
            detail = StringHelper.truncate(response.text.strip(), 200)
        status_line = f"HTTP {response.status_code} {StatusCodes.get_description(response.status_code)}"
        return f"{status_line}: {detail}" if detail else status_line

    text = str(exc).strip()
    return text or exc.__class__.__name__


def classify_error(exc: BaseException) -> ClassifiedError:
    """
    Classify an exception raised while performing a request.

    Status errors are classified by status code. Timeouts win over
    generic network errors because ``TimeoutError`` is an ``OSError``.
    """
    message = extract_message(exc)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ClassifiedError(kind_for_status(status), message, status)

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ClassifiedError(ErrorKind.TIMEOUT, message or "Request timed out")

    code = _errno_name(exc)
    if code in NetworkErrorCodes.TIMEOUT:
        return ClassifiedError(ErrorKind.TIMEOUT, message)

    if isinstance(exc, (httpx.TransportError, OSError)) and not isinstance(
        exc, (httpx.UnsupportedProtocol, httpx.TooManyRedirects)
    ):
        return ClassifiedError(ErrorKind.NETWORK, message)

    if code in NetworkErrorCodes.RETRYABLE:
        return ClassifiedError(ErrorKind.NETWORK, message)

    if "timeout" in message.lower():
        return ClassifiedError(ErrorKind.TIMEOUT, message)

    return ClassifiedError(ErrorKind.OTHER, message)


def is_suppressed(message: str, status: Optional[int] = None) -> bool:
    """
    True for failures that are logged but never alerted.

    Rate limiting and a few benign upstream conditions would otherwise
    flood the alert channels.
    """
    if status == StatusCodes.RATE_LIMITED:
        return True
    return StringHelper.contains_any(message, SUPPRESSED_ALERT_SUBSTRINGS)
