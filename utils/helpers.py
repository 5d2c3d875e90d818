"""
============================================================================
FLEET WATCHDOG - HELPERS UTILITY
============================================================================
Small time and string helpers shared by the monitor, alerts and server.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime, timezone
from typing import Iterable, Optional


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """Clock and duration formatting."""

    @staticmethod
    def get_utc_now() -> datetime:
        """Timezone-aware now."""
        return datetime.now(timezone.utc)

    @staticmethod
    def seconds_to_human_readable(seconds: float) -> str:
        """Render a duration as e.g. "6m" or "1d 2h 5s"; negatives become "0s"."""
        remaining = max(0, int(seconds))
        parts = []
        for suffix, size in (("d", 86400), ("h", 3600), ("m", 60)):
            count, remaining = divmod(remaining, size)
            if count:
                parts.append(f"{count}{suffix}")
        if remaining or not parts:
            parts.append(f"{remaining}s")
        return " ".join(parts)

    @staticmethod
    def epoch_to_iso(timestamp: Optional[float]) -> Optional[str]:
        """Render an epoch timestamp as ISO-8601 UTC, passing None through."""
        if timestamp is None:
            return None
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# ============================================================================
# STRING UTILITIES
# ============================================================================

class StringHelper:
    """Text helpers for log lines and alert bodies."""

    @staticmethod
    def truncate(text: str, max_length: int = 100, suffix: str = "...") -> str:
        """Cut ``text`` to ``max_length`` characters, ending in ``suffix`` when cut."""
        if len(text) > max_length:
            return text[: max_length - len(suffix)] + suffix
        return text

    @staticmethod
    def contains_any(text: str, needles: Iterable[str]) -> bool:
        """Case-insensitive check for any of the substrings."""
        lowered = text.lower()
        return any(needle.lower() in lowered for needle in needles)

