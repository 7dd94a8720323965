"""
APScheduler Configuration for Background Sweeps

Runs the periodic maintenance jobs of the in-memory components: event store
TTL cleanup, QR cache cleanup and tunnel health checks.

Jobs are memory-resident; nothing here survives a restart.
Every job must be a coroutine function so it runs on the event loop and
never in a worker thread.
"""
import logging
from typing import Awaitable, Callable, List, Optional
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Owner of the background interval jobs.

    One instance is created by the runtime and handed to every component
    that needs a periodic task. Components remove their own jobs when they
    stop; `shutdown()` cancels whatever is left.
    """

    def __init__(self):
        """
        Configure APScheduler with an in-memory job store.

        Configuration:
        - AsyncIOScheduler so jobs run on the application event loop
        - Coalesce: True (a late sweep runs once, not once per missed tick)
        - Max instances: 1 per job (a slow health check never overlaps itself)
        """
        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone="UTC",
        )
        logger.debug("Sweep scheduler configured")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        """
        Start the scheduler.

        Must be called from inside the running event loop.
        """
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"Sweep scheduler started. Jobs: {len(self._scheduler.get_jobs())}")
        else:
            logger.warning("Sweep scheduler already running")

    def shutdown(self):
        """Remove all jobs and stop the scheduler without waiting."""
        if self._scheduler.running:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            logger.info("Sweep scheduler shutdown")

    def add_interval_job(
        self,
        job_id: str,
        job_func: Callable[[], Awaitable[None]],
        interval_seconds: float,
    ) -> str:
        """
        Schedule a coroutine function to run every `interval_seconds`.

        Args:
            job_id: Stable identifier; an existing job with the same id is replaced
            job_func: Async callable without arguments
            interval_seconds: Period between runs

        Returns:
            Job ID
        """
        self._scheduler.add_job(
            job_func,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        logger.debug(f"Added interval job: {job_id}, interval={interval_seconds}s")
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a job if it exists.

        Returns:
            True if the job was found and removed, False otherwise
        """
        try:
            self._scheduler.remove_job(job_id)
            logger.debug(f"Removed interval job: {job_id}")
            return True
        except JobLookupError:
            return False

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def get_job_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]


def attach_job(
    scheduler: Optional[SweepScheduler],
    job_id: str,
    job_func: Callable[[], Awaitable[None]],
    interval_seconds: float,
) -> Optional[str]:
    """Register a job when a scheduler is available; components work without one."""
    if scheduler is None:
        return None
    return scheduler.add_interval_job(job_id, job_func, interval_seconds)
