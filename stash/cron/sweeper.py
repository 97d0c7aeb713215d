"""
Expiry Sweeper
==============

Async loop that runs ``SessionStore.sweep_expired()`` on a cron schedule.

One sweep at a time: if a run is still in progress when another is
requested, the new one is skipped. Failures are logged and never stop the
loop; the next scheduled fire runs as usual.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from stash.cron.schedule import DEFAULT_CLEANUP_CRON, parse_schedule
from stash.errors import SweepError, ValidationError

if TYPE_CHECKING:
    from stash.sessions.store import SessionStore, SweepResult

log = logging.getLogger("stash.sweeper")


class ExpirySweeper:
    """Scheduled expiry sweeps for one session store."""

    def __init__(
        self,
        store: SessionStore,
        schedule: str = DEFAULT_CLEANUP_CRON,
        *,
        timeout: Optional[float] = None,
    ):
        try:
            self.schedule = parse_schedule(schedule)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        self.store = store
        self.timeout = timeout
        self.last_run: Optional[float] = None
        self.last_result: Optional[SweepResult] = None
        self.last_error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._sweeping = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sweeping(self) -> bool:
        return self._sweeping

    def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info(f"Expiry sweeper started (schedule={self.schedule.expr!r})")

    def stop(self):
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        log.info("Expiry sweeper stopped")

    async def wait_stopped(self):
        """Wait for the loop task to finish after stop()."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def next_fire(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return self.schedule.next_after(now)

    async def _loop(self):
        while self._running:
            now = datetime.now(timezone.utc)
            try:
                delay = (self.next_fire(now) - now).total_seconds()
            except ValueError as e:
                self.last_error = e
                self._running = False
                log.error(f"Expiry sweeper has no next run, stopping: {e}")
                break
            try:
                await asyncio.sleep(max(delay, 0))
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error(f"Sweeper tick error: {e}", exc_info=True)

    async def run_once(self) -> Optional[SweepResult]:
        """Run one sweep now. Returns None if skipped or failed."""
        if self._sweeping:
            log.warning("Previous sweep still running; skipping this run")
            return None

        self._sweeping = True
        self.last_run = time.time()
        try:
            result = await asyncio.wait_for(self.store.sweep_expired(), timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            self.last_error = e
            log.warning(f"Sweep timed out after {self.timeout}s")
            return None
        except SweepError as e:
            self.last_error = e
            self.last_result = e.result
            log.warning(
                f"Sweep deleted {len(e.result.deleted)} session(s); "
                f"{len(e.result.failures)} failed: {e}"
            )
            return None
        except Exception as e:
            self.last_error = e
            log.error(f"Sweep failed: {e}")
            return None
        finally:
            self._sweeping = False

        self.last_error = None
        self.last_result = result
        if result.deleted:
            log.info(f"Sweep deleted {len(result.deleted)} expired session(s)")
        else:
            log.debug(f"Sweep found nothing to delete ({result.scanned} scanned)")
        return result
