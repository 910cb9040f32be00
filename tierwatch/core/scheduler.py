"""
Scheduler

Owns the repeating timers for every monitor loop (and the maintenance job).

Each job is an asyncio task that runs its callback, then sleeps for the
interval, so the next tick is only armed after the current cycle completes
(fixed delay, drift tolerated). A slow fetch therefore delays the next
sample instead of overlapping it.

Cancelling a job stops its timer. A cycle that is already in flight is
shielded and allowed to finish, and shutdown() waits for it; the callback is responsible for discarding
results that are no longer wanted. Rescheduling waits for that in-flight
cycle before the new timer runs its first tick, so cycles for one job never
overlap.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[object]]


@dataclass
class ScheduledJob:
    """A cancellable repeating timer handle."""
    job_id: str
    interval: float
    callback: JobCallback
    task: Optional[asyncio.Task] = None
    inflight: Optional[asyncio.Task] = None
    runs: int = 0

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()


class Scheduler:
    """
    Repeating-timer scheduler for a single event loop.

    All methods must be called from the event loop thread.
    """

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        # In-flight cycles of cancelled jobs, awaited by shutdown()
        self._draining: Set[asyncio.Future] = set()

    def schedule(
        self,
        job_id: str,
        interval: float,
        callback: JobCallback,
        run_immediately: bool = False,
    ) -> ScheduledJob:
        """
        Start a repeating job. Replaces any existing job with the same id.

        Args:
            job_id: Unique job identifier
            interval: Seconds between the end of one run and the start of the next
            callback: Coroutine function run on each tick
            run_immediately: Run the first tick now instead of after one interval
        """
        previous = self._jobs.pop(job_id, None)
        inflight = None
        if previous is not None:
            self._cancel_job(previous)
            inflight = previous.inflight

        job = ScheduledJob(job_id=job_id, interval=interval, callback=callback)
        job.inflight = inflight
        job.task = asyncio.get_running_loop().create_task(
            self._run(job, run_immediately),
            name=f"tierwatch:{job_id}",
        )
        self._jobs[job_id] = job
        logger.debug(f"Scheduled {job_id} every {interval}s (immediate={run_immediately})")
        return job

    def reschedule(self, job_id: str, interval: float) -> Optional[ScheduledJob]:
        """
        Replace a job's timer with one using a new interval.

        The new period applies from the very next tick.

        Returns:
            The new job, or None if job_id is not scheduled
        """
        job = self._jobs.get(job_id)
        if job is None:
            logger.debug(f"Reschedule ignored, {job_id} not scheduled")
            return None
        logger.info(f"Rescheduling {job_id}: {job.interval}s -> {interval}s")
        return self.schedule(job_id, interval, job.callback)

    def cancel(self, job_id: str) -> bool:
        """Cancel a job's timer. Returns False if it was not scheduled."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._cancel_job(job)
        if job.inflight is not None and not job.inflight.done():
            self._draining.add(job.inflight)
            job.inflight.add_done_callback(self._draining.discard)
        logger.debug(f"Cancelled {job_id}")
        return True

    def is_scheduled(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return job is not None and job.active

    def get(self, job_id: str) -> Optional[ScheduledJob]:
        return self._jobs.get(job_id)

    def job_ids(self) -> List[str]:
        return list(self._jobs.keys())

    async def shutdown(self):
        """Cancel every timer and wait for in-flight cycles to finish."""
        jobs = list(self._jobs.values())
        self._jobs.clear()

        for job in jobs:
            self._cancel_job(job)

        pending = [job.task for job in jobs if job.task is not None]
        pending += [job.inflight for job in jobs if job.inflight is not None and not job.inflight.done()]
        pending += [future for future in self._draining if not future.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info(f"Scheduler stopped ({len(jobs)} jobs)")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _cancel_job(self, job: ScheduledJob):
        if job.task is not None and not job.task.done():
            job.task.cancel()

    async def _run(self, job: ScheduledJob, run_immediately: bool):
        """Timer loop for one job."""
        try:
            # Never overlap a cycle left running by a replaced timer
            if job.inflight is not None and not job.inflight.done():
                await asyncio.wait({job.inflight})

            if not run_immediately:
                await asyncio.sleep(job.interval)

            while True:
                job.inflight = asyncio.ensure_future(self._invoke(job))
                await asyncio.shield(job.inflight)
                await asyncio.sleep(job.interval)

        except asyncio.CancelledError:
            pass

    async def _invoke(self, job: ScheduledJob):
        """Run one tick; an exception never kills the timer."""
        try:
            await job.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unhandled error in job {job.job_id}: {e}")
        finally:
            job.runs += 1
