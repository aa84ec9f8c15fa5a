# src/agentloop/autonomous/heartbeat.py
"""
Fixed-rate pulse for the agent loop.

The ``HeartbeatManager`` fires at a fixed rate. On every beat it launches the
registered jobs that are due. A beat never waits for slow work: each job
runs in its own asyncio task and a job that is still in flight is
skipped rather than started twice (single-flight). Skips are counted so
an overloaded cycle shows up in the status report.

Jobs keep a small circuit breaker: after ``max_consecutive_errors``
failures in a row they stop being scheduled until reset.

Example:
    heartbeat = HeartbeatManager(interval=timedelta(seconds=5))
    heartbeat.register(HeartbeatTask("cycle", scheduler.run_cycle, timedelta(0)))
    heartbeat.register(HeartbeatTask("reflect", reflect, timedelta(hours=1)))
    await heartbeat.start()
    ...
    await heartbeat.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .goals import utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# HeartbeatTask
# =============================================================================


@dataclass
class HeartbeatTask:
    """
    A coroutine run on every beat once its interval has elapsed.

    An interval of zero means "every beat".
    """

    name: str
    callback: Callable[[], Awaitable[Any]]
    interval: timedelta

    enabled: bool = True
    last_started: Optional[datetime] = None
    next_due: Optional[datetime] = None
    runs: int = 0
    skipped: int = 0

    failures: int = 0
    consecutive_failures: int = 0
    max_consecutive_errors: int = 5
    last_error: Optional[str] = None

    description: str = ""
    in_flight: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_running(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()

    @property
    def is_circuit_broken(self) -> bool:
        return self.consecutive_failures >= self.max_consecutive_errors

    def is_due(self, now: datetime) -> bool:
        if not self.enabled or self.is_circuit_broken:
            return False
        return self.next_due is None or now >= self.next_due

    def mark_started(self, now: datetime) -> None:
        self.last_started = now
        self.next_due = now + self.interval

    def mark_succeeded(self) -> None:
        self.runs += 1
        self.consecutive_failures = 0
        self.last_error = None

    def mark_failed(self, error: str) -> None:
        self.runs += 1
        self.failures += 1
        self.consecutive_failures += 1
        self.last_error = error

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.last_error = None
        logger.info("Circuit breaker reset for job: %s", self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval.total_seconds(),
            "enabled": self.enabled,
            "running": self.is_running,
            "last_started": self.last_started.isoformat() if self.last_started else None,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "consecutive_failures": self.consecutive_failures,
            "is_circuit_broken": self.is_circuit_broken,
            "last_error": self.last_error,
            "description": self.description,
        }


# =============================================================================
# Heartbeat
# =============================================================================


class HeartbeatManager:
    """
    Drives registered jobs at a fixed rate.

    Args:
        interval: Time between beats.
        clock: Source of the current (timezone-aware) time.
    """

    def __init__(
        self,
        interval: timedelta = timedelta(seconds=5),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._jobs: Dict[str, HeartbeatTask] = {}
        self._running = False
        self._paused = False
        self._loop_task: Optional[asyncio.Task] = None
        self._beats = 0
        self._on_error: List[Callable[[str, Exception], Awaitable[None]]] = []

    def register(self, job: HeartbeatTask) -> None:
        self._jobs[job.name] = job
        logger.info("Registered job %s (every %.0fs)", job.name, job.interval.total_seconds())

    def get_job(self, name: str) -> Optional[HeartbeatTask]:
        return self._jobs.get(name)

    def on_error(self, callback: Callable[[str, Exception], Awaitable[None]]) -> None:
        """Register ``callback(job_name, exception)`` for job failures."""
        self._on_error.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def start(self) -> None:
        """Start beating; a second call is a no-op."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Heartbeat started (interval: %.1fs)", self.interval.total_seconds())

    async def stop(self) -> None:
        """Stop beating and wait for in-flight jobs to finish."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.drain()
        logger.info("Heartbeat stopped after %d beats", self._beats)

    def pause(self) -> None:
        self._paused = True
        logger.info("Heartbeat paused")

    def resume(self) -> None:
        self._paused = False
        logger.info("Heartbeat resumed")

    async def drain(self) -> None:
        """Wait until no job is in flight."""
        pending = [j.in_flight for j in self._jobs.values() if j.is_running]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Beating
    # ------------------------------------------------------------------

    def beat(self) -> List[str]:
        """
        Launch every due job that is not already in flight.

        Returns the names of the jobs launched on this beat.
        """
        now = self._clock()
        self._beats += 1
        launched = []
        for job in list(self._jobs.values()):
            if not job.is_due(now):
                continue
            if job.is_running:
                job.skipped += 1
                logger.debug("Job %s still in flight; skipping beat", job.name)
                continue
            job.mark_started(now)
            job.in_flight = asyncio.create_task(self._run(job))
            launched.append(job.name)
        return launched

    async def _run(self, job: HeartbeatTask) -> None:
        try:
            await job.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.mark_failed(str(e))
            logger.error("Job %s failed: %s", job.name, e, exc_info=True)
            for callback in self._on_error:
                try:
                    await callback(job.name, e)
                except Exception as callback_error:
                    logger.warning("Error callback failed for %s: %s", job.name, callback_error)
            if job.is_circuit_broken:
                logger.warning(
                    "Circuit breaker opened for job %s after %d consecutive failures",
                    job.name, job.consecutive_failures,
                )
        else:
            job.mark_succeeded()

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        period = self.interval.total_seconds()
        next_beat = loop.time()
        while self._running:
            if not self._paused:
                self.beat()
            # Fixed rate: the next beat is anchored to the schedule, not to
            # when this beat finished.
            next_beat += period
            delay = next_beat - loop.time()
            if delay < 0:
                missed = int(-delay // period) + 1 if period > 0 else 0
                next_beat += missed * period
                delay = max(next_beat - loop.time(), 0.0)
            await asyncio.sleep(delay)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "paused": self._paused,
            "interval_seconds": self.interval.total_seconds(),
            "beats": self._beats,
            "jobs": {name: job.to_dict() for name, job in self._jobs.items()},
        }
