"""
============================================================================
FLEET WATCHDOG - LIVENESS MONITOR
============================================================================
Sweeps every registered client, escalating from a soft alert to a
restart when a client goes quiet, and keeps a per-client downtime
counter driven by direct reachability probes.

Architecture
------------
LivenessMonitor
├── run_sweep()                 ← one pass over the registry, guarded
│   ├── check_client()          ← per client, in registry order
│   │   ├── staleness > warn    → soft alert
│   │   ├── staleness > critical→ probe, restart through fetch, alert
│   │   └── _probe_and_count()  ← counter 0 / +1 / restart at > threshold
│   └── check_auxiliary_services()
└── get_stats()

Downtime counter
----------------
    Healthy(0) → Degrading(1..5) → RestartTriggered(-5)
               → RecoveringSuppressed(-4..-1) → Healthy

Any successful probe resets the counter to 0. A failure adds one; when
the new value passes the threshold the counter is written as the
sentinel in the same update and the deploy key is called.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from config.constants import AlertChannel, MessageTemplates, StatusCodes
from config.settings import AuxiliaryService, MonitoringSettings
from monitoring.fetch import FetchOptions, ResilientFetch
from monitoring.registry import ClientRecord, ClientRegistry
from utils.helpers import TimeHelper
from utils.logger import get_logger, log_execution_time
from utils.validators import URLValidator


logger = get_logger("LivenessMonitor")

SleepFunc = Callable[[float], Awaitable[Any]]


# ============================================================================
# SWEEP REPORT
# ============================================================================

@dataclass
class SweepReport:
    """Counters collected during one sweep."""
    started_at: float
    clients_checked: int = 0
    soft_alerts: int = 0
    critical_alerts: int = 0
    probes_failed: int = 0
    restarts_triggered: int = 0
    services_unreachable: int = 0
    finished_at: Optional[float] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


# ============================================================================
# LIVENESS MONITOR
# ============================================================================

class LivenessMonitor:
    """
    Parameters
    ----------
    registry : ClientRegistry
        Source of clients; every write goes through ``registry.update``.
    fetcher : ResilientFetch
        Probes (``probe``) and restarts (``fetch``).
    alerts : AlertManager | None
        Receives liveness alerts on the UPDATES channel.
    clock / sleep :
        Injected in tests.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        fetcher: ResilientFetch,
        alerts: Any,
        settings: MonitoringSettings,
        *,
        clock: Callable[[], float] = time.time,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.alerts = alerts
        self.settings = settings
        self._clock = clock
        self._sleep = sleep

        self._sweeping = False
        self._sweep_count = 0
        self._last_report: Optional[SweepReport] = None

        logger.info(
            f"LivenessMonitor created — warn={settings.warn_after}s, "
            f"critical={settings.critical_after}s, "
            f"restart after {settings.restart_threshold} failures, "
            f"{len(settings.auxiliary_services)} auxiliary service(s)"
        )

    @property
    def is_sweeping(self) -> bool:
        return self._sweeping

    # ------------------------------------------------------------------
    # SWEEP
    # ------------------------------------------------------------------

    @log_execution_time
    async def run_sweep(self) -> Optional[SweepReport]:
        """
        Check every client, then the auxiliary services.

        Returns None when a sweep is already running.
        """
        if self._sweeping:
            logger.warning("[Monitor] Sweep already in progress, skipping")
            return None

        self._sweeping = True
        report = SweepReport(started_at=self._clock())
        try:
            clients = self.registry.ids()
            logger.info(f"[Monitor] Sweep #{self._sweep_count + 1} over {len(clients)} client(s)")

            for client_id in clients:
                try:
                    await self.check_client(client_id, report)
                except Exception as e:
                    report.errors[client_id] = str(e)
                    logger.exception(f"[Monitor] Check for {client_id} crashed")
                await self._sleep(self.settings.client_delay)

            await self.check_auxiliary_services(report)
        finally:
            self._sweeping = False
            self._sweep_count += 1
            report.finished_at = self._clock()
            self._last_report = report

        logger.info(
            f"[Monitor] ✓ Sweep done — checked={report.clients_checked}, "
            f"probe_failures={report.probes_failed}, "
            f"restarts={report.restarts_triggered}"
        )
        return report

    async def check_client(self, client_id: str, report: Optional[SweepReport] = None) -> None:
        """Run the staleness escalation and the counter probe for one client."""
        report = report or SweepReport(started_at=self._clock())
        record = self.registry.get(client_id)
        if record is None:
            # Retired by a refresh since the sweep started
            return

        report.clients_checked += 1
        staleness = record.staleness(self._clock())

        if staleness is not None and staleness > self.settings.warn_after:
            if staleness > self.settings.critical_after:
                await self._handle_critical(record, report)
            else:
                report.soft_alerts += 1
                await self._alert(
                    MessageTemplates.SOFT_ALERT.format(
                        client_id=record.client_id,
                        staleness=TimeHelper.seconds_to_human_readable(staleness),
                    )
                )

        await self._probe_and_count(record.client_id, record.endpoint, report)

    # ------------------------------------------------------------------
    # ESCALATION
    # ------------------------------------------------------------------

    def restart_url_for(self, record: ClientRecord) -> Optional[str]:
        """``{endpoint}/exit`` for self-restarting hosts, the deploy key otherwise."""
        if URLValidator.host_matches(record.endpoint, self.settings.exit_path_hosts):
            return URLValidator.join(record.endpoint, "exit")
        return record.deploy_key

    async def _handle_critical(self, record: ClientRecord, report: SweepReport) -> None:
        response = await self.fetcher.probe(record.endpoint, timeout=self.settings.probe_timeout)
        if response is not None:
            logger.info(
                f"[Monitor] {record.client_id} is silent but reachable "
                f"({response.status_code}), not restarting"
            )
            return

        restart_url = self.restart_url_for(record)
        if restart_url:
            await self.fetcher.fetch(
                restart_url, FetchOptions(timeout=self.settings.probe_timeout)
            )
        else:
            logger.warning(f"[Monitor] {record.client_id} has no restart URL configured")

        report.critical_alerts += 1
        await self._alert(
            MessageTemplates.CRITICAL_ALERT.format(
                client_id=record.client_id, restart_url=restart_url
            )
        )

    async def _probe_and_count(self, client_id: str, endpoint: str, report: SweepReport) -> None:
        response = await self.fetcher.probe(endpoint, timeout=self.settings.probe_timeout)

        if response is not None:
            self.registry.update(
                client_id,
                lambda current: {"downtime_counter": 0} if current.downtime_counter else None,
            )
            return

        report.probes_failed += 1
        restart = False

        def bump(current: ClientRecord) -> Dict[str, int]:
            nonlocal restart
            counter = current.downtime_counter + 1
            if counter > self.settings.restart_threshold:
                restart = True
                counter = self.settings.restart_sentinel
            return {"downtime_counter": counter}

        updated = self.registry.update(client_id, bump)
        if updated is None:
            return

        logger.info(f"[Monitor] ✗ {client_id} unreachable — downtime counter {updated.downtime_counter}")

        if restart:
            report.restarts_triggered += 1
            await self._restart_client(updated)

    async def _restart_client(self, record: ClientRecord) -> None:
        target = record.client_id
        ok = False

        if record.deploy_key:
            logger.warning(f"[Monitor] Restarting {target} through its deploy key")
            response = await self.fetcher.fetch(
                record.deploy_key, FetchOptions(timeout=self.settings.probe_timeout)
            )
            ok = response is not None and response.status_code in StatusCodes.RESTART_OK
        else:
            logger.warning(f"[Monitor] {target} needs a restart but has no deploy key")

        template = MessageTemplates.RESTARTED if ok else MessageTemplates.RESTART_FAILED
        await self._alert(template.format(target=target))

    # ------------------------------------------------------------------
    # AUXILIARY SERVICES
    # ------------------------------------------------------------------

    async def check_auxiliary_services(self, report: Optional[SweepReport] = None) -> None:
        for service in self.settings.auxiliary_services:
            try:
                await self._check_service(service, report)
            except Exception:
                logger.exception(f"[Monitor] Auxiliary check for {service.url} crashed")

    async def _check_service(self, service: AuxiliaryService, report: Optional[SweepReport]) -> None:
        timeout = self.settings.auxiliary_timeout
        if await self.fetcher.probe(service.url, timeout=timeout) is not None:
            return

        if report is not None:
            report.services_unreachable += 1
        await self._alert(MessageTemplates.SERVICE_UNREACHABLE.format(url=service.url))

        restart_url = service.deploy_key or URLValidator.join(service.url, "exit")
        response = await self.fetcher.fetch(restart_url, FetchOptions(timeout=timeout))

        if response is not None and response.status_code in StatusCodes.RESTART_OK:
            await self._alert(MessageTemplates.RESTARTED.format(target=service.url))
        else:
            await self._alert(MessageTemplates.SERVICE_RESTART_FAILED.format(url=service.url))

    # ------------------------------------------------------------------
    # ALERTS & DIAGNOSTICS
    # ------------------------------------------------------------------

    async def _alert(self, text: str) -> None:
        if self.alerts is not None:
            await self.alerts.enqueue_alert(text, channel=AlertChannel.UPDATES)
        else:
            logger.info(f"[ALERT] {text}")

    def get_stats(self) -> Dict[str, Any]:
        last = self._last_report
        return {
            "is_sweeping": self._sweeping,
            "sweeps": self._sweep_count,
            "last_sweep": None if last is None else {
                "clients_checked": last.clients_checked,
                "probes_failed": last.probes_failed,
                "restarts_triggered": last.restarts_triggered,
                "services_unreachable": last.services_unreachable,
                "duration": last.duration,
            },
        }
