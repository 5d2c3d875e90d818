"""
============================================================================
FLEET WATCHDOG - MAIN APPLICATION
============================================================================
Entry point that wires every layer of the watchdog together.

Startup Order
-------------
1.  Load settings (pydantic-settings, .env supported)
2.  Configure logging (loguru)
3.  Build the WatchdogContext (alerts, fetch, registry, sequencer, monitor)
4.  Start the AlertManager dispatch loop
5.  Start the WatchdogServer (aiohttp, non-blocking)
6.  Start the Scheduler (watchdog tick, registry refresh, heartbeat)
7.  Initial registry refresh, when a source is configured

Shutdown Order (reverse)
------------------------
On SIGINT or SIGTERM:
    stop scheduler → stop context background work → stop server →
    stop alert manager (flushes queued alerts) → exit

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import signal
import sys
from typing import Optional

from pydantic import ValidationError

from config.settings import LoggingSettings, Settings, get_settings
from exceptions.base import ConfigurationError, InitializationError
from monitoring.context import WatchdogContext
from monitoring.scheduler import Scheduler
from monitoring.server import WatchdogServer
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


def load_settings() -> Settings:
    """Load settings, turning validation failures into ConfigurationError."""
    try:
        return get_settings()
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        key = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s)",
            config_key=key,
            cause=e,
        ) from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class WatchdogApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()

        # --- subsystems (populated during startup) ---
        self.context: Optional[WatchdogContext] = None
        self.server: Optional[WatchdogServer] = None
        self.scheduler: Optional[Scheduler] = None

        self._stop_event = asyncio.Event()
        self._is_running = False

    def _print_banner(self) -> None:
        s = self.settings
        logger.info("=" * 74)
        logger.info(f"  {s.app_name} v{s.app_version} — instance '{s.instance_name}'")
        logger.info(f"  Environment : {s.environment.value}")
        logger.info(f"  Listening   : http://{s.web_host}:{s.web_port}")
        logger.info(f"  Registry    : {s.registry.source_url or 'push only (POST /clients)'}")
        logger.info(
            f"  Tick        : {s.monitoring.tick_interval}s, "
            f"sweep every {s.monitoring.sweep_every_ticks} ticks"
        )
        logger.info("=" * 74)

    # ==================================================================
    # STARTUP
    # ==================================================================

    async def startup(self) -> None:
        """
        Execute the startup sequence.

        Raises
        ------
        InitializationError
            When a component fails to start.
        """
        self._print_banner()

        logger.info("── Phase 1: Core components ──────────────────────")
        try:
            self.context = WatchdogContext(self.settings)
            self.server = WatchdogServer(
                self.context, host=self.settings.web_host, port=self.settings.web_port
            )
            self.scheduler = Scheduler(self.context)
        except Exception as e:
            raise InitializationError.from_exception(
                e, "Failed to build watchdog components", component="context"
            ) from e
        logger.info("  ✓ Context, server and scheduler created")

        logger.info("── Phase 2: Background services ──────────────────")
        await self.context.alerts.start()

        try:
            await self.server.start()
        except OSError as e:
            raise InitializationError.from_exception(
                e,
                f"Cannot bind {self.settings.web_host}:{self.settings.web_port}",
                component="server",
            ) from e

        await self.scheduler.start()

        logger.info("── Phase 3: Initial registry refresh ─────────────")
        if self.settings.registry.source_url:
            count = await self.context.refresh_from_source()
            if count is None:
                logger.warning("  ⚠ Initial refresh failed — waiting for the next scheduled one")
            else:
                logger.info(f"  ✓ {count} client(s) registered")
        else:
            logger.info("  No registry source configured — waiting for POST /clients")

        self._is_running = True
        logger.info("  ✓ ALL SYSTEMS OPERATIONAL")

    # ==================================================================
    # SHUTDOWN
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        A failure in one subsystem doesn't prevent the others from cleaning up.
        """
        logger.info("  SHUTTING DOWN …")
        self._is_running = False

        steps = (
            ("Scheduler", self.scheduler),
            ("WatchdogContext", self.context),
            ("WatchdogServer", self.server),
            ("AlertManager", self.context.alerts if self.context else None),
        )
        for name, component in steps:
            if component is None:
                continue
            try:
                await component.stop()
            except Exception:
                logger.exception(f"  ✗ {name} stop error")

        logger.info("  ✓ SHUTDOWN COMPLETE")

    # ==================================================================
    # RUN
    # ==================================================================

    def request_stop(self) -> None:
        logger.info("  ⚡ Signal received — initiating graceful shutdown…")
        self._stop_event.set()

    async def run(self) -> None:
        """Block until a stop is requested."""
        await self._stop_event.wait()


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: WatchdogApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so the watchdog shuts down
    gracefully when the platform restarts it.
    """
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, app.request_stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on Windows; KeyboardInterrupt still works
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging(LoggingSettings.model_construct())
        logger.error(f"✗ {e.log_format()}")
        return 2

    setup_logging(settings.logging)

    app = WatchdogApplication(settings)
    _install_signal_handlers(app)

    try:
        await app.startup()
        await app.run()
    except InitializationError as e:
        logger.error(f"  ✗ Startup failed — {e.log_format()}")
        return 1
    finally:
        await app.shutdown()
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
