from __future__ import annotations

import sys
from pathlib import Path

import pytest
from loguru import logger
from pydantic import ValidationError

from config.settings import (
    AuxiliaryService,
    FetchSettings,
    LoggingSettings,
    MonitoringSettings,
    Settings,
    TelegramSettings,
    get_settings,
)
from exceptions.base import ConfigurationError
from main import load_settings
from utils.logger import get_logger, log_execution_time, setup_logging


def test_defaults() -> None:
    monitoring = MonitoringSettings(_env_file=None)
    assert monitoring.tick_interval == 30
    assert monitoring.sweep_every_ticks == 4
    assert monitoring.warn_after == 300
    assert monitoring.critical_after == 420
    assert monitoring.restart_threshold == 5
    assert monitoring.restart_sentinel == -5

    fetch = FetchSettings(_env_file=None)
    assert fetch.default_timeout == 30
    assert fetch.timeout_increment == 5
    assert fetch.max_retries == 3


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONITOR_WARN_AFTER", "100")
    monkeypatch.setenv(
        "MONITOR_AUXILIARY_SERVICES",
        '[{"url": "https://aux.test", "deploy_key": "https://deploy.test/aux"}]',
    )
    monkeypatch.setenv("FETCH_BYPASS_URL", "https://relay.test/bypass")

    monitoring = MonitoringSettings(_env_file=None)
    assert monitoring.warn_after == 100
    assert monitoring.auxiliary_services == [
        AuxiliaryService(url="https://aux.test", deploy_key="https://deploy.test/aux")
    ]
    assert FetchSettings(_env_file=None).bypass_url == "https://relay.test/bypass"


def test_critical_must_follow_warning() -> None:
    with pytest.raises(ValidationError):
        MonitoringSettings(_env_file=None, warn_after=500, critical_after=400)


def test_backoff_cap_must_cover_base() -> None:
    with pytest.raises(ValidationError):
        FetchSettings(_env_file=None, backoff_base=10, backoff_cap=1)


def test_to_dict_hides_bot_tokens() -> None:
    settings = Settings(
        _env_file=None,
        telegram=TelegramSettings(_env_file=None, updates_channel="-100::secret-token"),
    )

    data = settings.to_dict()
    assert data["telegram"]["updates_channel"] == "-100::***"
    assert settings.to_dict(exclude_secrets=False)["telegram"]["updates_channel"] == "-100::secret-token"


def test_bad_channel_becomes_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_ERRORS_CHANNEL", "missing-separator")
    get_settings.cache_clear()
    try:
        with pytest.raises(ConfigurationError):
            load_settings()
    finally:
        get_settings.cache_clear()


def test_file_sinks_receive_component_name(tmp_path: Path) -> None:
    setup_logging(
        LoggingSettings(
            _env_file=None,
            to_console=False,
            to_file=True,
            file_path=tmp_path / "watchdog.log",
            error_file_path=tmp_path / "errors.log",
        )
    )
    try:
        get_logger("Probe").info("client reachable")
        get_logger("Probe").error("client unreachable")
    finally:
        # flushes the enqueued sinks
        logger.remove()
        logger.add(sys.stderr)

    main_log = (tmp_path / "watchdog.log").read_text()
    assert "Probe" in main_log
    assert "client reachable" in main_log
    error_log = (tmp_path / "errors.log").read_text()
    assert "client unreachable" in error_log
    assert "client reachable" not in error_log


def test_log_execution_time_only_wraps_coroutines() -> None:
    with pytest.raises(TypeError):
        log_execution_time(lambda: None)
