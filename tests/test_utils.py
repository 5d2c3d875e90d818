from __future__ import annotations

import pytest

from exceptions.fetch import InvalidTargetURLError
from utils.helpers import StringHelper, TimeHelper
from utils.validators import URLValidator


@pytest.mark.parametrize(
    "seconds, text",
    [
        (0, "0s"),
        (-5, "0s"),
        (45, "45s"),
        (360, "6m"),
        (3725, "1h 2m 5s"),
        (90000, "1d 1h"),
    ],
)
def test_human_readable_durations(seconds: float, text: str) -> None:
    assert TimeHelper.seconds_to_human_readable(seconds) == text


def test_epoch_to_iso() -> None:
    assert TimeHelper.epoch_to_iso(None) is None
    assert TimeHelper.epoch_to_iso(0) == "1970-01-01T00:00:00+00:00"


def test_truncate() -> None:
    assert StringHelper.truncate("short", 10) == "short"
    assert StringHelper.truncate("a" * 20, 10) == "aaaaaaa..."


@pytest.mark.parametrize(
    "url",
    ["http://localhost:8080", "https://10.0.0.5/health", "http://worker-3", " https://c1.test "],
)
def test_internal_hosts_are_valid(url: str) -> None:
    assert URLValidator.validate(url) == url.strip()


@pytest.mark.parametrize(
    "url, reason",
    [
        ("", "empty"),
        ("c1.test/health", "no_scheme"),
        ("https://", "no_host"),
        ("http://h:99999", "unparseable"),
        ("https://c1 .test/health", "malformed"),
        ("https://-worker-.test", "malformed"),
    ],
)
def test_invalid_urls(url: str, reason: str) -> None:
    with pytest.raises(InvalidTargetURLError) as info:
        URLValidator.validate(url)
    assert info.value.details["reason"] == reason


def test_join_and_host_matching() -> None:
    assert URLValidator.join("https://c1.test/", "/exit") == "https://c1.test/exit"
    assert URLValidator.host_matches("https://bot.GLITCH.me", ["glitch"])
    assert not URLValidator.host_matches("https://glitch-free.test.io/x", ["render"])
    assert not URLValidator.host_matches("not a url", ["glitch"])
