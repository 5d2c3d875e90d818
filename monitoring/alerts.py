"""
============================================================================
FLEET WATCHDOG - ALERT MANAGER
============================================================================
Notification sink for the whole watchdog. Components call
``enqueue_alert(text, channel, status)``, which is non-blocking and
only pushes onto an internal queue. A separate ``_dispatch_loop()``
task sends each alert to the Telegram chat configured for its channel.

Channels
--------
UPDATES        ← liveness, restarts, registry refreshes
HTTP_FAILURES  ← failed outbound requests
ERRORS         ← unexpected internal failures

A channel without configuration still works: its alerts are logged.

Suppression
-----------
Rate-limit responses (429) and a short list of benign upstream
messages are logged and dropped before they reach the queue.

Token rotation
--------------
Each channel may list several bot tokens. Sends start from the next
token in turn; when one fails the following token is tried, once
around the list at most.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from aiogram import Bot

from config.constants import AlertChannel
from config.settings import ChannelConfig, TelegramSettings
from monitoring.classifier import is_suppressed
from utils.helpers import StringHelper
from utils.logger import get_logger


logger = get_logger("AlertManager")

# Telegram rejects longer messages
TELEGRAM_MESSAGE_LIMIT = 4096


# ============================================================================
# ALERT PAYLOAD (internal queue item)
# ============================================================================

@dataclass
class AlertPayload:
    text: str
    channel: AlertChannel = AlertChannel.UPDATES
    status: Optional[int] = None
    enqueued_at: float = field(default_factory=time.time)


# ============================================================================
# TELEGRAM NOTIFIER
# ============================================================================

class TelegramNotifier:
    """
    Sends plain-text messages to one chat through a pool of bots.

    Parameters
    ----------
    channel : ChannelConfig
        Chat id and bot tokens.
    send_timeout : float
        Upper bound for a single ``send_message`` call.
    bot_factory : callable
        Builds a bot from a token; ``aiogram.Bot`` by default.
    """

    def __init__(
        self,
        channel: ChannelConfig,
        *,
        send_timeout: float = 10.0,
        bot_factory: Callable[..., Any] = Bot,
    ):
        self.channel = channel
        self.send_timeout = send_timeout
        self._bot_factory = bot_factory
        self._bots: Dict[str, Any] = {}
        self._next_index = 0

    def _bot(self, token: str) -> Any:
        bot = self._bots.get(token)
        if bot is None:
            bot = self._bot_factory(token=token)
            self._bots[token] = bot
        return bot

    async def send(self, text: str) -> bool:
        """
        Send ``text``, rotating tokens. Returns True once one bot succeeds.
        """
        tokens = self.channel.bot_tokens
        start = self._next_index
        self._next_index = (start + 1) % len(tokens)
        text = StringHelper.truncate(text, TELEGRAM_MESSAGE_LIMIT)

        for offset in range(len(tokens)):
            index = (start + offset) % len(tokens)
            try:
                await asyncio.wait_for(
                    self._bot(tokens[index]).send_message(
                        chat_id=self.channel.chat_id, text=text
                    ),
                    timeout=self.send_timeout,
                )
                return True
            except Exception as e:
                logger.warning(
                    f"[Telegram] Bot #{index + 1}/{len(tokens)} failed for chat "
                    f"{self.channel.chat_id}: {e!r}"
                )

        logger.error(
            f"[Telegram] All {len(tokens)} bot(s) failed for chat {self.channel.chat_id}"
        )
        return False

    async def close(self) -> None:
        for bot in self._bots.values():
            session = getattr(bot, "session", None)
            if session is not None:
                await session.close()
        self._bots.clear()


# ============================================================================
# ALERT MANAGER
# ============================================================================

class AlertManager:
    """
    Central hub for all alert processing.

    Parameters
    ----------
    settings : TelegramSettings
        Channel strings, send timeout and queue size.
    notifiers : dict | None
        Pre-built notifiers per channel; built from ``settings`` when None.
    """

    def __init__(
        self,
        settings: TelegramSettings,
        *,
        notifiers: Optional[Dict[AlertChannel, Any]] = None,
        bot_factory: Callable[..., Any] = Bot,
    ):
        self.settings = settings

        if notifiers is None:
            notifiers = {}
            for channel in AlertChannel:
                config = settings.channel(channel.settings_field)
                if config is not None:
                    notifiers[channel] = TelegramNotifier(
                        config,
                        send_timeout=settings.send_timeout,
                        bot_factory=bot_factory,
                    )
        self._notifiers = notifiers

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.queue_size)

        self._stats: Dict[str, int] = {
            "enqueued": 0,
            "sent": 0,
            "logged_only": 0,
            "failed": 0,
            "suppressed": 0,
            "dropped": 0,
        }

        # --- lifecycle ---
        self._running = False
        self._dispatch_task: Optional[asyncio.Task] = None

        configured = ", ".join(c.value for c in self._notifiers) or "none"
        logger.info(f"AlertManager created — configured channels: {configured}")

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background dispatch loop."""
        if self._running:
            logger.warning("AlertManager is already running")
            return
        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info("✓ AlertManager started — dispatch loop active")

    async def stop(self) -> None:
        """Stop the dispatch loop, send what is still queued, close bots."""
        self._running = False
        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None

        flushed = await self.flush()
        if flushed:
            logger.info(f"[AlertManager] Flushed {flushed} remaining alerts on shutdown")

        for notifier in self._notifiers.values():
            await notifier.close()
        logger.info("✓ AlertManager stopped")

    async def enqueue_alert(
        self,
        text: str,
        channel: AlertChannel = AlertChannel.UPDATES,
        status: Optional[int] = None,
    ) -> bool:
        """
        Non-blocking enqueue of an alert.

        Returns
        -------
        bool
            True if the alert was enqueued, False if it was suppressed
            or the queue is full.
        """
        if is_suppressed(text, status):
            self._stats["suppressed"] += 1
            logger.info(f"[AlertManager] Suppressed ({channel.value}): {text}")
            return False

        try:
            self._queue.put_nowait(AlertPayload(text=text, channel=channel, status=status))
        except asyncio.QueueFull:
            self._stats["dropped"] += 1
            logger.warning(
                f"[AlertManager] Alert queue is full ({self._queue.maxsize}). "
                f"Dropping alert: {StringHelper.truncate(text, 80)}"
            )
            return False

        self._stats["enqueued"] += 1
        logger.debug(
            f"[AlertManager] Enqueued {channel.value} alert, queue_size={self._queue.qsize()}"
        )
        return True

    async def flush(self) -> int:
        """Process everything currently queued. Returns the number processed."""
        processed = 0
        while True:
            try:
                payload = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._process_alert(payload)
            self._queue.task_done()
            processed += 1
        return processed

    # ------------------------------------------------------------------
    # DISPATCH LOOP
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        """
        Pull alerts off the queue one at a time and process them.
        Runs until self._running is False.
        """
        logger.info("[AlertManager] Dispatch loop started")
        while self._running:
            try:
                # Short timeout so self._running is re-checked periodically
                payload = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self._process_alert(payload)
            except Exception:
                logger.exception("[AlertManager] Unhandled error in dispatch loop")
            finally:
                self._queue.task_done()
        logger.info("[AlertManager] Dispatch loop exited")

    async def _process_alert(self, payload: AlertPayload) -> None:
        notifier = self._notifiers.get(payload.channel)
        if notifier is None:
            self._stats["logged_only"] += 1
            logger.info(f"[ALERT:{payload.channel.value}] {payload.text}")
            return

        if await notifier.send(payload.text):
            self._stats["sent"] += 1
            logger.debug(
                f"[AlertManager] ✓ Sent to {payload.channel.value}: "
                f"{StringHelper.truncate(payload.text, 60)}"
            )
        else:
            self._stats["failed"] += 1

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Return current state of the alert manager for diagnostics."""
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "channels": sorted(c.value for c in self._notifiers),
            "is_running": self._running,
        }
