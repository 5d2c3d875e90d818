"""
============================================================================
FLEET WATCHDOG - CONNECTION SEQUENCER
============================================================================
Brings clients online one at a time. A verified "process active"
report enqueues ``(client_id, process_id)``; every watchdog tick calls
``drain_tick()`` which walks the queue in FIFO order:

    GET {endpoint}/tryToConnect/{process_id}
    ... followup_delay ...   GET {endpoint}/promote
    ... followup_delay ...   GET {endpoint}/markasread

The follow-ups run as background tasks so the drain only waits
``item_delay`` between clients. At most one drain runs at a time.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Set

from config.settings import SequencerSettings
from monitoring.fetch import FetchOptions, ResilientFetch
from monitoring.registry import ClientRegistry
from utils.logger import get_logger
from utils.validators import URLValidator


logger = get_logger("ConnectionSequencer")

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class ConnectionQueueEntry:
    client_id: str
    process_id: str


class ConnectionSequencer:
    """
    Single-draining FIFO of pending handshakes, at most one per client.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        fetcher: ResilientFetch,
        settings: SequencerSettings,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.settings = settings
        self._sleep = sleep

        # client_id → process_id; reassignment keeps the original position
        self._queue: "OrderedDict[str, str]" = OrderedDict()
        self._draining = False
        self._followups: Set[asyncio.Task] = set()

        self._handshakes_ok = 0
        self._handshakes_failed = 0

    # ------------------------------------------------------------------
    # QUEUE
    # ------------------------------------------------------------------

    def enqueue(self, client_id: str, process_id: str) -> None:
        """Queue a handshake; a second push for the same client overwrites in place."""
        if client_id in self._queue:
            logger.debug(
                f"[Sequencer] {client_id} already queued, process id "
                f"{self._queue[client_id]} → {process_id}"
            )
        self._queue[client_id] = process_id

    @property
    def pending(self) -> List[ConnectionQueueEntry]:
        return [ConnectionQueueEntry(cid, pid) for cid, pid in self._queue.items()]

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def followup_tasks(self) -> Set[asyncio.Task]:
        return set(self._followups)

    def __len__(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # DRAIN
    # ------------------------------------------------------------------

    async def drain_tick(self) -> int:
        """
        Process the queue until it is empty.

        No-op while another drain is running or the queue is empty.
        Returns the number of entries taken off the queue.
        """
        if self._draining or not self._queue:
            return 0

        self._draining = True
        processed = 0
        logger.info(f"[Sequencer] Draining {len(self._queue)} pending connection(s)")
        try:
            while self._queue:
                client_id, process_id = self._queue.popitem(last=False)
                processed += 1
                try:
                    await self._handshake(ConnectionQueueEntry(client_id, process_id))
                except Exception:
                    self._handshakes_failed += 1
                    logger.exception(f"[Sequencer] Handshake for {client_id} crashed")

                if self._queue:
                    await self._sleep(self.settings.item_delay)
        finally:
            self._draining = False

        return processed

    async def _handshake(self, entry: ConnectionQueueEntry) -> None:
        record = self.registry.get(entry.client_id)
        if record is None:
            logger.warning(f"[Sequencer] {entry.client_id} is no longer registered, skipping")
            return

        url = URLValidator.join(record.endpoint, f"tryToConnect/{entry.process_id}")
        response = await self.fetcher.fetch(
            url, FetchOptions(timeout=self.settings.connect_timeout)
        )
        if response is None:
            self._handshakes_failed += 1
            logger.warning(
                f"[Sequencer] ✗ {entry.client_id} did not accept process {entry.process_id}"
            )
        else:
            self._handshakes_ok += 1
            logger.info(
                f"[Sequencer] ✓ {entry.client_id} connected with process {entry.process_id}"
            )

        # Follow-ups are sent whatever the connect outcome
        task = asyncio.create_task(
            self._run_followups(entry.client_id, record.endpoint),
            name=f"followups:{entry.client_id}",
        )
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    async def _run_followups(self, client_id: str, endpoint: str) -> None:
        try:
            for path in ("promote", "markasread"):
                await self._sleep(self.settings.followup_delay)
                response = await self.fetcher.fetch(URLValidator.join(endpoint, path))
                if response is None:
                    logger.warning(f"[Sequencer] {client_id} /{path} failed")
                else:
                    logger.debug(f"[Sequencer] {client_id} /{path} → {response.status_code}")
        except asyncio.CancelledError:
            logger.debug(f"[Sequencer] Follow-ups for {client_id} cancelled")
            raise
        except Exception:
            logger.exception(f"[Sequencer] Follow-ups for {client_id} crashed")

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel outstanding follow-up tasks."""
        tasks = list(self._followups)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[Sequencer] Cancelled {len(tasks)} follow-up task(s)")
        self._followups.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "is_draining": self._draining,
            "followups_in_flight": len(self._followups),
            "handshakes_ok": self._handshakes_ok,
            "handshakes_failed": self._handshakes_failed,
        }
