from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from config.constants import AlertChannel
from config.settings import (
    FetchSettings,
    MonitoringSettings,
    RegistrySettings,
    SequencerSettings,
    Settings,
    TelegramSettings,
)
from monitoring.context import WatchdogContext


class RecordingSink:
    """Stands in for AlertManager and keeps every alert it is given."""

    def __init__(self) -> None:
        self.alerts: List[Tuple[str, AlertChannel, Optional[int]]] = []

    async def enqueue_alert(
        self,
        text: str,
        channel: AlertChannel = AlertChannel.UPDATES,
        status: Optional[int] = None,
    ) -> bool:
        self.alerts.append((text, channel, status))
        return True

    def texts(self, channel: Optional[AlertChannel] = None) -> List[str]:
        return [text for text, ch, _ in self.alerts if channel is None or ch is channel]

    def get_stats(self) -> Dict[str, Any]:
        return {"queue_size": 0, "recorded": len(self.alerts)}

    async def stop(self) -> None:
        return None


class FakeSleep:
    """Records requested delays and returns at once."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class GatedSleep(FakeSleep):
    """Blocks every sleep until ``release()`` is called."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self.gate.wait()

    def release(self) -> None:
        self.gate.set()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _normalize(url: Any) -> str:
    return str(httpx.URL(str(url)).copy_with(query=None)).rstrip("/")


class Router:
    """
    Routes MockTransport requests by ``(method, url-without-query)``.

    A route value is either an ``httpx.Response`` factory or an exception
    instance to raise. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        url: str,
        status: int = 200,
        *,
        method: str = "GET",
        json: Any = None,
        text: Optional[str] = None,
        raises: Optional[Exception] = None,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if raises is not None:
                raise raises
            if json is not None:
                return httpx.Response(status, json=json)
            return httpx.Response(status, text=text or "")

        self.routes[(method, _normalize(url))] = handler

    def calls(self, url: str, method: Optional[str] = None) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if _normalize(r.url) == _normalize(url) and (method is None or r.method == method)
        ]

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _normalize(request.url))
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, text="no route")
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def fetch_settings() -> FetchSettings:
    return FetchSettings(_env_file=None, max_retries=0, bypass_url=None)


@pytest.fixture
def monitoring_settings() -> MonitoringSettings:
    return MonitoringSettings(_env_file=None)


@pytest.fixture
def sequencer_settings() -> SequencerSettings:
    return SequencerSettings(_env_file=None)


@pytest.fixture
def settings(fetch_settings: FetchSettings, monitoring_settings: MonitoringSettings) -> Settings:
    return Settings(
        _env_file=None,
        instance_name="test-watchdog",
        fetch=fetch_settings,
        monitoring=monitoring_settings,
        sequencer=SequencerSettings(_env_file=None),
        registry=RegistrySettings(
            _env_file=None,
            source_url="https://registry.test/maskedcls",
            events_url="https://events.test/call",
        ),
        telegram=TelegramSettings(_env_file=None),
    )


@pytest.fixture
def context(
    settings: Settings,
    router: Router,
    sink: RecordingSink,
    clock: FakeClock,
    fake_sleep: FakeSleep,
) -> WatchdogContext:
    return WatchdogContext(
        settings,
        alerts=sink,
        transport=router.transport(),
        clock=clock,
        sleep=fake_sleep,
    )
