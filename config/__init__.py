"""
Configuration Package for Fleet Watchdog

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the application
"""

from config.settings import (
    Settings,
    AuxiliaryService,
    ChannelConfig,
    FetchSettings,
    MonitoringSettings,
    SequencerSettings,
    RegistrySettings,
    TelegramSettings,
    LoggingSettings,
    get_settings
)

from config.constants import (
    AlertChannel,
    TimeIntervals,
    HTTPMethods,
    StatusCodes,
    NetworkErrorCodes,
    MessageTemplates,
    ErrorCodes,
    SUPPRESSED_ALERT_SUBSTRINGS,
    BINARY_CONTENT_TYPES
)

__all__ = [
    # Settings
    "Settings",
    "AuxiliaryService",
    "ChannelConfig",
    "FetchSettings",
    "MonitoringSettings",
    "SequencerSettings",
    "RegistrySettings",
    "TelegramSettings",
    "LoggingSettings",
    "get_settings",

    # Constants
    "AlertChannel",
    "TimeIntervals",
    "HTTPMethods",
    "StatusCodes",
    "NetworkErrorCodes",
    "MessageTemplates",
    "ErrorCodes",
    "SUPPRESSED_ALERT_SUBSTRINGS",
    "BINARY_CONTENT_TYPES"
]
