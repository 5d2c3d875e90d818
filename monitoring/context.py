"""
============================================================================
FLEET WATCHDOG - WATCHDOG CONTEXT
============================================================================
Builds every core component once and wires them together. The inbound
API and the scheduler both receive this object; nothing else holds
global state.

    WatchdogContext
    ├── alerts     : AlertManager
    ├── fetcher    : ResilientFetch
    ├── registry   : ClientRegistry
    ├── sequencer  : ConnectionSequencer
    └── monitor    : LivenessMonitor

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set

import httpx
from aiogram import Bot

from config.constants import AlertChannel, HTTPMethods, MessageTemplates
from config.settings import Settings
from monitoring.alerts import AlertManager
from monitoring.fetch import FetchOptions, ResilientFetch, decode_body
from monitoring.monitor import LivenessMonitor
from monitoring.registry import ClientPayload, ClientRecord, ClientRegistry
from monitoring.sequencer import ConnectionSequencer
from utils.helpers import TimeHelper
from utils.logger import get_logger
from utils.validators import URLValidator


logger = get_logger("WatchdogContext")

SleepFunc = Callable[[float], Awaitable[Any]]


class WatchdogContext:
    """
    Holds the watchdog's components and the operations exposed to the
    inbound API and the scheduler.

    ``transport``, ``clock``, ``sleep`` and ``bot_factory`` exist so tests
    can run the whole stack without network access or real delays.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        alerts: Optional[AlertManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        sleep: SleepFunc = asyncio.sleep,
        bot_factory: Callable[..., Any] = Bot,
    ):
        self.settings = settings
        self._clock = clock

        self.alerts = alerts or AlertManager(settings.telegram, bot_factory=bot_factory)
        self.fetcher = ResilientFetch(
            settings.fetch,
            self.alerts,
            instance_name=settings.instance_name,
            transport=transport,
            sleep=sleep,
        )
        self.registry = ClientRegistry()
        self.sequencer = ConnectionSequencer(
            self.registry, self.fetcher, settings.sequencer, sleep=sleep
        )
        self.monitor = LivenessMonitor(
            self.registry,
            self.fetcher,
            self.alerts,
            settings.monitoring,
            clock=clock,
            sleep=sleep,
        )

        self._tick_count = 0
        self._background: Set[asyncio.Task] = set()
        self._started_at = clock()

    # ------------------------------------------------------------------
    # REGISTRY
    # ------------------------------------------------------------------

    def register_clients(self, payload: Iterable[ClientPayload]) -> int:
        """Full upsert of the client set."""
        return self.registry.upsert_all(payload)

    async def refresh_from_source(self) -> Optional[int]:
        """
        Pull the client list from the configured registry source.

        Returns the number of registered clients, or None when the
        source is not configured or did not return a JSON list.
        """
        source = self.settings.registry.source_url
        if not source:
            logger.warning("[Context] Registry source URL is not configured")
            return None

        response = await self.fetcher.fetch(source)
        if response is None:
            logger.error(f"[Context] ✗ Registry refresh from {source} failed")
            return None

        body = decode_body(response)
        if not isinstance(body, list):
            logger.error(
                f"[Context] ✗ Registry source returned {type(body).__name__}, expected a list"
            )
            return None

        count = self.register_clients(body)
        await self.alerts.enqueue_alert(
            MessageTemplates.REGISTRY_REFRESHED.format(instance=self.settings.instance_name),
            channel=AlertChannel.UPDATES,
        )
        return count

    def get_clients(self) -> List[ClientRecord]:
        return self.registry.all()

    def get_client(self, client_id: str) -> ClientRecord:
        """Raises ``UnknownClientError`` for unregistered ids."""
        return self.registry.require(client_id)

    # ------------------------------------------------------------------
    # CLIENT REPORTS
    # ------------------------------------------------------------------

    def report_heartbeat(self, client_id: str) -> bool:
        """Mark the client as seen now. False for unknown clients."""
        now = self._clock()
        return self.registry.update(client_id, lambda _: {"last_seen_at": now}) is not None

    async def report_active_process(self, client_id: str, process_id: str) -> bool:
        """
        A client says ``process_id`` is now its active process.

        The claim is checked against ``{endpoint}/getprocessid``; only a
        matching ``ProcessId`` resets the counter, marks the client seen
        and queues the connection handshake.
        """
        record = self.registry.get(client_id)
        if record is None:
            logger.warning(f"[Context] Process report from unknown client {client_id}")
            return False

        response = await self.fetcher.fetch(
            URLValidator.join(record.endpoint, "getprocessid"),
            FetchOptions(timeout=self.settings.sequencer.connect_timeout),
        )
        if response is None:
            return False

        body = decode_body(response)
        reported = body.get("ProcessId") if isinstance(body, dict) else None
        if reported is None or str(reported) != str(process_id):
            logger.warning(
                f"[Context] {client_id} claims process {process_id}, "
                f"endpoint reports {reported}"
            )
            return False

        now = self._clock()
        self.registry.update(
            client_id, lambda _: {"downtime_counter": 0, "last_seen_at": now}
        )
        self.sequencer.enqueue(client_id, str(process_id))
        logger.info(f"[Context] ✓ {client_id} activated process {process_id}")
        return True

    async def request_call(self, client_id: str, chat_id: str, call_type: str) -> bool:
        """Forward a call request to the events endpoint."""
        events_url = self.settings.registry.events_url
        if not events_url:
            logger.warning("[Context] Events URL is not configured, call request dropped")
            return False

        response = await self.fetcher.fetch(
            events_url,
            FetchOptions(
                method=HTTPMethods.POST.value,
                data={"chatId": chat_id, "profile": client_id, "type": call_type},
            ),
        )
        return response is not None

    # ------------------------------------------------------------------
    # TICK
    # ------------------------------------------------------------------

    async def tick(self) -> List[asyncio.Task]:
        """
        One watchdog tick.

        Starts a sequencer drain when work is queued and, on the 1st,
        (1+N)th, (1+2N)th ... tick, a liveness sweep. Both run in the
        background under their own guards; the started tasks are returned.
        """
        self._tick_count += 1
        started: List[asyncio.Task] = []

        if len(self.sequencer) and not self.sequencer.is_draining:
            started.append(self._spawn(self.sequencer.drain_tick(), "sequencer_drain"))

        every = self.settings.monitoring.sweep_every_ticks
        if (self._tick_count - 1) % every == 0:
            if self.monitor.is_sweeping:
                logger.warning(f"[Context] Tick {self._tick_count}: previous sweep still running")
            else:
                started.append(self._spawn(self.monitor.run_sweep(), "liveness_sweep"))

        return started

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(coro, name), name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _guarded(self, coro: Awaitable[Any], name: str) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[Context] Background task {name} failed")
            await self.alerts.enqueue_alert(
                f"{self.settings.instance_name}: {name} failed: {e!r}",
                channel=AlertChannel.ERRORS,
            )
            return None

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel background work started by ticks."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.sequencer.stop()
        logger.info("✓ WatchdogContext stopped")

    def get_stats(self) -> dict:
        uptime = self._clock() - self._started_at
        return {
            "uptime_seconds": round(uptime, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(uptime),
            "ticks": self._tick_count,
            "registry": self.registry.get_stats(),
            "sequencer": self.sequencer.get_stats(),
            "monitor": self.monitor.get_stats(),
            "fetch": self.fetcher.get_stats(),
            "alerts": self.alerts.get_stats(),
        }
