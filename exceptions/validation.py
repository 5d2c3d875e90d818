"""
Validation Exception Classes for Fleet Watchdog

Raised while checking inbound API input. The server turns them
into 400 responses using ``user_message``.
"""

from __future__ import annotations

from typing import Any, Optional

from config.constants import ErrorCodes
from exceptions.base import WatchdogException
from utils.helpers import StringHelper


class ValidationException(WatchdogException):
    """
    Base Validation Exception

    Parent class for all validation-related exceptions.
    """

    default_error_code = ErrorCodes.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if field:
            self.details["field"] = field

        if value is not None:
            self.details["value"] = self._sanitize_value(value)

    @staticmethod
    def _sanitize_value(value: Any) -> str:
        """Truncate long values before they reach the logs."""
        return StringHelper.truncate(str(value), 100)

    def user_message(self) -> str:
        return self.message


class MissingFieldError(ValidationException):
    """A required query parameter or body field is absent."""

    def __init__(self, field: str, **kwargs: Any) -> None:
        super().__init__(f"Missing required field: {field}", field=field, **kwargs)

    def user_message(self) -> str:
        return f"The {self.details['field']} parameter is required."


class InvalidFormatError(ValidationException):
    """
    Invalid Format Error

    Raised when a request body doesn't match the expected shape.
    """

    def __init__(
        self,
        message: str = "Invalid format",
        field: Optional[str] = None,
        expected_format: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field=field, **kwargs)

        if expected_format:
            self.details["expected_format"] = expected_format

    def user_message(self) -> str:
        field = self.details.get("field", "body")
        expected = self.details.get("expected_format")
        if expected:
            return f"The {field} must be {expected}."
        return self.message
