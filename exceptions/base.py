"""
Base Exception Classes for Fleet Watchdog

Every domain error carries a numeric code, structured details and, when
it wraps a foreign failure, the causing exception.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config.constants import ErrorCodes


class WatchdogException(Exception):
    """
    Root of the watchdog's exception hierarchy.

    Subclasses set ``default_error_code`` and, for errors the process
    cannot continue after, ``default_recoverable = False``.

    Attributes:
        message: Text shown in logs and API error bodies
        error_code: One of ``ErrorCodes``
        details: Extra context (field names, ids, URLs)
        cause: Wrapped exception, if any
        recoverable: Whether the watchdog can keep running
        timestamp: Creation time (UTC)
    """

    default_error_code: int = ErrorCodes.UNKNOWN_ERROR
    default_recoverable: bool = True

    def __init__(
        self,
        message: str = "Watchdog error",
        error_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details: Dict[str, Any] = dict(details or {})
        self.cause = cause
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form, e.g. for JSON logs."""
        return {
            "type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "cause": repr(self.cause) if self.cause is not None else None,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }

    def log_format(self) -> str:
        """One line: ``Name[code] message | details | cause``."""
        line = f"{type(self).__name__}[{self.error_code}] {self.message}"
        if self.details:
            line += f" | details={self.details}"
        if self.cause is not None:
            line += f" | cause={self.cause!r}"
        return line

    @classmethod
    def from_exception(
        cls,
        exception: BaseException,
        message: Optional[str] = None,
        **kwargs: Any
    ) -> "WatchdogException":
        """Wrap a foreign exception, keeping it as ``cause``."""
        text = message or str(exception) or type(exception).__name__
        return cls(text, cause=exception, **kwargs)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code})"


class ConfigurationError(WatchdogException):
    """Settings from the environment or .env cannot be used."""

    default_error_code = ErrorCodes.CONFIGURATION_ERROR
    default_recoverable = False

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        if config_key:
            self.details["config_key"] = config_key


class InitializationError(WatchdogException):
    """A component failed to start."""

    default_error_code = ErrorCodes.INITIALIZATION_ERROR
    default_recoverable = False

    def __init__(self, message: str, component: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        if component:
            self.details["component"] = component
