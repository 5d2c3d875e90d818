"""
============================================================================
FLEET WATCHDOG - LOGGING UTILITY
============================================================================
Loguru configuration: console sink, rotating file sink, and a separate
error file. Every component logs through ``get_logger(name)``.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import sys
import time
import asyncio
from functools import wraps
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[name]}:{function}:{line} - {message}"
)


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(config: LoggingSettings) -> None:
    """
    Configure loguru sinks from the logging settings.

    Removes the default handler first so repeated calls do not
    duplicate output.
    """
    logger.remove()
    logger.configure(extra={"name": "watchdog"})

    level = config.level.value

    if config.to_console:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=level,
            colorize=config.colorize,
            backtrace=True,
            diagnose=False,
        )

    if config.to_file:
        config.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.file_path,
            format=FILE_FORMAT,
            level=level,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            serialize=config.serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

        # Error log file (separate file for errors)
        if config.error_file_path:
            config.error_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                config.error_file_path,
                format=FILE_FORMAT,
                level="ERROR",
                rotation="1 day",
                retention="7 days",
                compression="zip",
                enqueue=True,
                backtrace=True,
                diagnose=False,
            )

    logger.info("Logging system initialized")
    logger.info(f"Log level: {level}")
    logger.info(f"Console logging: {config.to_console}")
    logger.info(f"File logging: {config.to_file}")


def get_logger(name: Optional[str] = None):
    """
    Get logger instance with optional name.

    Args:
        name: Component name shown in every line

    Returns:
        Bound loguru logger
    """
    if name:
        return logger.bind(name=name)
    return logger


# ============================================================================
# LOG DECORATORS
# ============================================================================

def log_execution_time(func):
    """Log how long an async function took, on success and on failure."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"{func.__qualname__} failed after "
                f"{time.monotonic() - start_time:.2f}s: {e}"
            )
            raise
        logger.debug(
            f"{func.__qualname__} finished in {time.monotonic() - start_time:.2f}s"
        )
        return result

    if not asyncio.iscoroutinefunction(func):
        raise TypeError("log_execution_time only wraps coroutine functions")
    return wrapper
