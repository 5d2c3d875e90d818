"""
Registry Exception Classes for Fleet Watchdog
"""

from __future__ import annotations

from typing import Any, Optional

from config.constants import ErrorCodes
from exceptions.base import WatchdogException


class RegistryException(WatchdogException):
    """Base class for client registry errors."""

    default_error_code = ErrorCodes.REGISTRY_ERROR


class UnknownClientError(RegistryException):
    """
    Unknown Client

    Raised by ``ClientRegistry.require`` when no record exists for
    the id. Records are only created by a registry refresh.
    """

    default_error_code = ErrorCodes.UNKNOWN_CLIENT

    def __init__(self, client_id: str, **kwargs: Any) -> None:
        super().__init__(f"Unknown client: {client_id}", **kwargs)
        self.client_id = client_id
        self.details["client_id"] = client_id


class InvalidClientRecordError(RegistryException):
    """A registry payload entry could not be turned into a ClientRecord."""

    default_error_code = ErrorCodes.INVALID_CLIENT_RECORD

    def __init__(
        self,
        message: str,
        client_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if client_id:
            self.details["client_id"] = client_id
