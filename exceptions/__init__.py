"""
Exceptions Package for Fleet Watchdog

Provides the exception hierarchy used throughout the application.
"""

from exceptions.base import (
    WatchdogException,
    ConfigurationError,
    InitializationError
)

from exceptions.fetch import (
    FetchException,
    InvalidTargetURLError,
    BypassUnavailableError
)

from exceptions.registry import (
    RegistryException,
    UnknownClientError,
    InvalidClientRecordError
)

from exceptions.validation import (
    ValidationException,
    MissingFieldError,
    InvalidFormatError
)

__all__ = [
    # Base exceptions
    "WatchdogException",
    "ConfigurationError",
    "InitializationError",

    # Fetch exceptions
    "FetchException",
    "InvalidTargetURLError",
    "BypassUnavailableError",

    # Registry exceptions
    "RegistryException",
    "UnknownClientError",
    "InvalidClientRecordError",

    # Validation exceptions
    "ValidationException",
    "MissingFieldError",
    "InvalidFormatError"
]
