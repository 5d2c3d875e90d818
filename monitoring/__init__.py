"""
============================================================================
FLEET WATCHDOG - MONITORING PACKAGE
============================================================================
Runtime infrastructure of the watchdog:
    • ResilientFetch       - retries, backoff, bypass relay
    • ClientRegistry       - client id → ClientRecord
    • ConnectionSequencer  - one-at-a-time connection handshakes
    • LivenessMonitor      - staleness escalation and restarts
    • AlertManager         - Telegram delivery with token rotation
    • WatchdogContext      - wires the above together
    • WatchdogServer       - aiohttp inbound API
    • Scheduler            - periodic jobs

monitoring/
├── __init__.py          ← this file
├── classifier.py        ← ErrorKind + classify_error
├── fetch.py             ← ResilientFetch
├── registry.py          ← ClientRecord + ClientRegistry
├── sequencer.py         ← ConnectionSequencer
├── monitor.py           ← LivenessMonitor
├── alerts.py            ← AlertManager + TelegramNotifier
├── context.py           ← WatchdogContext
├── server.py            ← WatchdogServer
└── scheduler.py         ← Scheduler + built-in jobs

============================================================================
"""

from monitoring.classifier import ErrorKind, ClassifiedError, classify_error
from monitoring.fetch import ResilientFetch, FetchOptions, FetchAttempt, decode_body
from monitoring.registry import ClientRecord, ClientRegistry
from monitoring.sequencer import ConnectionSequencer, ConnectionQueueEntry
from monitoring.monitor import LivenessMonitor, SweepReport
from monitoring.alerts import AlertManager, AlertPayload, TelegramNotifier
from monitoring.context import WatchdogContext
from monitoring.server import WatchdogServer
from monitoring.scheduler import Scheduler, ScheduledJob

__all__ = [
    # Fetch
    "ErrorKind",
    "ClassifiedError",
    "classify_error",
    "ResilientFetch",
    "FetchOptions",
    "FetchAttempt",
    "decode_body",

    # State
    "ClientRecord",
    "ClientRegistry",
    "ConnectionSequencer",
    "ConnectionQueueEntry",

    # Monitoring
    "LivenessMonitor",
    "SweepReport",

    # Alerts
    "AlertManager",
    "AlertPayload",
    "TelegramNotifier",

    # Wiring
    "WatchdogContext",
    "WatchdogServer",
    "Scheduler",
    "ScheduledJob",
]
