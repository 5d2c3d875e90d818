"""
Settings Module for Fleet Watchdog

Configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Each section reads its own environment prefix; ``Settings`` aggregates them.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class AuxiliaryService(BaseModel):
    """An external service supervised after every client sweep."""

    url: str
    deploy_key: Optional[str] = None


class ChannelConfig(BaseModel):
    """A Telegram chat plus the bot tokens allowed to post into it."""

    chat_id: str
    bot_tokens: List[str]

    @classmethod
    def parse(cls, raw: str) -> "ChannelConfig":
        """
        Parse ``"<chat_id>::<token1>,<token2>"``.

        A three-part ``"<chat_id>::<description>::<tokens>"`` string is
        accepted as well; the description is ignored.
        """
        parts = [part.strip() for part in raw.split("::")]
        if len(parts) == 2:
            chat_id, tokens = parts
        elif len(parts) == 3:
            chat_id, _, tokens = parts
        else:
            raise ValueError(
                "channel must look like '<chat_id>::<token1>,<token2>'"
            )

        bot_tokens = [t.strip() for t in tokens.split(",") if t.strip()]
        if not chat_id or not bot_tokens:
            raise ValueError("channel needs a chat id and at least one bot token")
        return cls(chat_id=chat_id, bot_tokens=bot_tokens)


class FetchSettings(BaseSettingsConfig):
    """
    Outbound HTTP Settings

    Retry, timeout escalation, backoff, and bypass relay configuration
    shared by every outbound call.
    """

    model_config = SettingsConfigDict(
        env_prefix="FETCH_",
        env_file=".env"
    )

    default_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Base per-attempt timeout in seconds"
    )
    timeout_increment: float = Field(
        default=5.0,
        ge=0,
        description="Seconds added to the timeout on every further attempt"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt"
    )
    backoff_base: float = Field(
        default=0.5,
        gt=0,
        description="Backoff delay of the first retry in seconds"
    )
    backoff_cap: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound of the exponential backoff in seconds"
    )
    backoff_jitter: float = Field(
        default=0.2,
        ge=0,
        le=1,
        description="Maximum random jitter as a fraction of the delay"
    )
    max_redirects: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Redirects followed per request"
    )
    bypass_url: Optional[str] = Field(
        default=None,
        description="Relay that re-issues edge-blocked requests server-side"
    )
    user_agent: str = Field(
        default="FleetWatchdog/1.0",
        description="User-Agent sent with every request"
    )

    @model_validator(mode="after")
    def validate_backoff(self) -> "FetchSettings":
        """The cap must not be below the first delay."""
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must be >= backoff_base")
        return self


class MonitoringSettings(BaseSettingsConfig):
    """
    Liveness Monitoring Settings

    Tick cadence, staleness thresholds, probe timeouts and the
    restart escalation policy.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env"
    )

    tick_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between watchdog ticks"
    )
    sweep_every_ticks: int = Field(
        default=4,
        ge=1,
        description="Run the liveness sweep on every Nth tick"
    )
    warn_after: float = Field(
        default=300.0,  # 5 minutes
        gt=0,
        description="Staleness in seconds before a soft alert"
    )
    critical_after: float = Field(
        default=420.0,  # 7 minutes
        gt=0,
        description="Staleness in seconds before the restart path"
    )
    probe_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Timeout of the direct reachability probe"
    )
    restart_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive probe failures tolerated before restart"
    )
    restart_sentinel: int = Field(
        default=-5,
        le=0,
        description="Downtime counter value written after a restart"
    )
    client_delay: float = Field(
        default=2.0,
        ge=0,
        description="Pause between clients during a sweep"
    )
    exit_path_hosts: List[str] = Field(
        default_factory=lambda: ["glitch"],
        description="Endpoint markers restarted through '<endpoint>/exit'"
    )
    auxiliary_services: List[AuxiliaryService] = Field(
        default_factory=list,
        description="JSON list of {url, deploy_key} checked after each sweep"
    )
    auxiliary_timeout: float = Field(
        default=55.0,
        gt=0,
        description="Timeout for auxiliary service probes and restarts"
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> "MonitoringSettings":
        """Critical staleness must come after the warning."""
        if self.critical_after < self.warn_after:
            raise ValueError("critical_after must be >= warn_after")
        return self


class SequencerSettings(BaseSettingsConfig):
    """Connection handshake pacing."""

    model_config = SettingsConfigDict(
        env_prefix="SEQUENCER_",
        env_file=".env"
    )

    connect_timeout: float = Field(default=10.0, gt=0)
    item_delay: float = Field(default=5.0, ge=0)
    followup_delay: float = Field(default=35.0, ge=0)


class RegistrySettings(BaseSettingsConfig):
    """Where the client set comes from and where call requests go."""

    model_config = SettingsConfigDict(
        env_prefix="REGISTRY_",
        env_file=".env"
    )

    source_url: Optional[str] = Field(
        default=None,
        description="Endpoint returning the JSON list of clients"
    )
    refresh_interval: int = Field(
        default=600,  # 10 minutes
        ge=30,
        description="Seconds between registry refreshes"
    )
    events_url: Optional[str] = Field(
        default=None,
        description="Target for forwarded call requests"
    )


class TelegramSettings(BaseSettingsConfig):
    """
    Telegram Notification Settings

    Each channel is ``"<chat_id>::<token1>,<token2>"``. Tokens are
    rotated on every send.
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEGRAM_",
        env_file=".env"
    )

    updates_channel: Optional[str] = Field(
        default=None,
        description="Liveness and restart notices"
    )
    http_failures_channel: Optional[str] = Field(
        default=None,
        description="Outbound request failure reports"
    )
    errors_channel: Optional[str] = Field(
        default=None,
        description="Unexpected internal errors"
    )
    send_timeout: float = Field(default=10.0, gt=0)
    queue_size: int = Field(default=10_000, ge=1)

    @field_validator("updates_channel", "http_failures_channel", "errors_channel")
    @classmethod
    def validate_channel(cls, v: Optional[str]) -> Optional[str]:
        """Reject malformed channel strings early."""
        if v is None or not v.strip():
            return None
        ChannelConfig.parse(v)
        return v.strip()

    def channel(self, name: str) -> Optional[ChannelConfig]:
        """Return the parsed channel for a field name, or None if unset."""
        raw = getattr(self, name, None)
        return ChannelConfig.parse(raw) if raw else None


class LoggingSettings(BaseSettingsConfig):
    """Loguru sink configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env"
    )

    level: LogLevel = Field(default=LogLevel.INFO)
    to_console: bool = Field(default=True)
    colorize: bool = Field(default=True)
    to_file: bool = Field(default=False)
    file_path: Path = Field(default=Path("logs/watchdog.log"))
    error_file_path: Optional[Path] = Field(default=Path("logs/errors.log"))
    rotation: str = Field(default="10 MB")
    retention: str = Field(default="30 days")
    serialize: bool = Field(default=False, description="Write JSON lines to the file sink")


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)

    app_name: str = Field(default="Fleet Watchdog")
    app_version: str = Field(default="1.0.0")
    instance_name: str = Field(
        default="watchdog",
        description="Prefix identifying this instance in failure alerts"
    )

    web_host: str = Field(default="0.0.0.0")
    web_port: int = Field(default=9000, ge=1, le=65535)

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    sequencer: SequencerSettings = Field(default_factory=SequencerSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.debug = False
        elif self.is_development and self.debug:
            self.logging.level = LogLevel.DEBUG
        return self

    def to_dict(self, *, exclude_secrets: bool = True) -> Dict[str, Any]:
        """Convert settings to dictionary, hiding channel tokens by default."""
        data = self.model_dump(mode="json")

        if exclude_secrets:
            for key in ("updates_channel", "http_failures_channel", "errors_channel"):
                raw = data["telegram"].get(key)
                if raw:
                    data["telegram"][key] = raw.split("::")[0] + "::***"

        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Cached so a single settings instance is used throughout the
    application lifecycle.
    """
    return Settings()
