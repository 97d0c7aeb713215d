"""
STASH Sweeper Runner
====================

Runs the expiry sweeper as a long-lived process with PID file, logging,
and graceful shutdown on SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from stash.config import LOG_FILE, PID_FILE, StashConfig
from stash.cron.sweeper import ExpirySweeper
from stash.sessions.store import SessionStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = logging.Formatter(
    "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def setup_logging(*, debug: bool = False, log_file: Path | None = LOG_FILE) -> None:
    """Log to stdout, and to ``log_file`` unless it is None."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(_LOG_FORMAT)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def write_pidfile(pid_file: Path = PID_FILE) -> None:
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def remove_pidfile(pid_file: Path = PID_FILE) -> None:
    try:
        pid_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove PID file %s: %s", pid_file, e)


def read_pidfile(pid_file: Path = PID_FILE) -> int | None:
    """PID of the live sweeper, or None. A stale PID file is removed."""
    try:
        pid = int(pid_file.read_text().strip())
        os.kill(pid, 0)
    except FileNotFoundError:
        return None
    except (ValueError, ProcessLookupError, PermissionError):
        remove_pidfile(pid_file)
        return None
    return pid


async def run_sweeper(
    config: StashConfig,
    *,
    pid_file: Path = PID_FILE,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Open the store and sweep on schedule until signalled to stop."""
    pid = read_pidfile(pid_file)
    if pid is not None:
        logger.error("Sweeper is already running (PID %d). Stop it first.", pid)
        sys.exit(1)

    write_pidfile(pid_file)
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform/thread

    try:
        async with SessionStore(config.store) as store:
            sweeper = ExpirySweeper(
                store,
                config.sweeper.cleanup_cron,
                timeout=config.sweeper.timeout,
            )
            sweeper.start()
            logger.info("Next sweep at %s", sweeper.next_fire().isoformat())
            await stop.wait()
            sweeper.stop()
            await sweeper.wait_stopped()
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
        raise
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        remove_pidfile(pid_file)
