"""Background job scheduling.

Runs the nightly baseline recalculation sweep inside the API process on a
cron schedule. The scheduler is an explicit handle owned by the application
lifespan: ``start()`` spawns the loop task, ``stop()`` cancels it.
"""

import asyncio
import contextlib
import enum
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from croniter import croniter
from loguru import logger


class JobStatus(enum.StrEnum):
    """Status of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BaselineRecalculationScheduler:
    """Cron-driven runner for the baseline recalculation sweep.

    A tick that fires while the previous run is still executing is skipped.

    Args:
        job: Zero-argument coroutine function performing one sweep.
        cron_expression: Standard five-field cron expression, evaluated in UTC.
    """

    def __init__(self, job: Callable[[], Awaitable[dict[str, Any]]], cron_expression: str = "0 3 * * *") -> None:
        if not croniter.is_valid(cron_expression):
            msg = f"Invalid cron expression: {cron_expression!r}"
            raise ValueError(msg)
        self._job = job
        self._cron_expression = cron_expression
        self._loop_task: asyncio.Task[None] | None = None
        self._run_task: asyncio.Task[None] | None = None
        self.status: JobStatus = JobStatus.PENDING
        self.last_result: dict[str, Any] | None = None
        self.last_run_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        """Whether the scheduling loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_job_running(self) -> bool:
        """Whether a sweep is executing right now."""
        return self._run_task is not None and not self._run_task.done()

    def next_run(self, now: datetime | None = None) -> datetime:
        """Next fire time after ``now`` (UTC)."""
        base = now or datetime.now(UTC)
        return croniter(self._cron_expression, base).get_next(datetime)

    async def run_once(self) -> dict[str, Any] | None:
        """Run one sweep unless another is in progress.

        Returns:
            The sweep result, or None when skipped or failed.
        """
        if self.is_job_running:
            logger.warning("Baseline recalculation still running, skipping this run")
            return None
        self._run_task = asyncio.create_task(self._execute())
        await self._run_task
        return self.last_result

    async def _execute(self) -> None:
        self.status = JobStatus.RUNNING
        self.last_run_at = datetime.now(UTC)
        try:
            self.last_result = await self._job()
            self.status = JobStatus.COMPLETED
        except Exception:
            self.status = JobStatus.FAILED
            self.last_result = None
            logger.exception("Baseline recalculation job failed")

    async def _loop(self) -> None:
        logger.info(f"Baseline recalculation scheduler started (cron={self._cron_expression!r})")
        while True:
            try:
                delay = (self.next_run() - datetime.now(UTC)).total_seconds()
                await asyncio.sleep(max(delay, 0))
                if self.is_job_running:
                    logger.warning("Baseline recalculation still running, skipping this run")
                    continue
                # Not awaited; overlap is checked on the next tick.
                self._run_task = asyncio.create_task(self._execute())
            except asyncio.CancelledError:
                logger.info("Baseline recalculation scheduler cancelled")
                break

    def start(self) -> None:
        """Start the scheduling loop. Calling it twice is a no-op."""
        if self.is_running:
            return
        self._loop_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the loop and any sweep in progress."""
        for task in (self._loop_task, self._run_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._loop_task = None
        self._run_task = None
