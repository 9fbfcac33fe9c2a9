"""Single-flight job execution with persisted status records."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from .data_store import DataStoreProtocol
from .models import JobState, JobStatus, utcnow

logger = logging.getLogger(__name__)

JobFunc = Callable[[JobStatus], Awaitable[dict[str, Any]]]


class JobRunner:
    """Runs named jobs so that the same job never overlaps itself.

    Whether a job is running is read from its persisted JobStatus, so a
    second process or a restarted one sees the same guard. A running record
    older than ``stale_after`` is assumed to belong to a crashed run and is
    taken over.
    """

    def __init__(
        self,
        store: DataStoreProtocol,
        stale_after: timedelta = timedelta(minutes=120),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.stale_after = stale_after
        self._clock = clock
        self._claim_lock = asyncio.Lock()

    async def status(self, job_name: str) -> JobStatus:
        """Current status record, or an idle one if the job never ran."""
        status = await asyncio.to_thread(self.store.load_job_status, job_name)
        return status or JobStatus(job_name=job_name)

    async def try_claim(self, job_name: str) -> JobStatus | None:
        """Mark the job running unless a live run already holds it."""
        async with self._claim_lock:
            now = self._clock()
            current = await asyncio.to_thread(self.store.load_job_status, job_name)
            if current is not None and current.state == JobState.RUNNING:
                started = current.started_at
                if started is not None and now - started < self.stale_after:
                    return None
                logger.warning("Taking over stale run of job %s started at %s", job_name, started)

            status = JobStatus(
                job_name=job_name,
                state=JobState.RUNNING,
                message="Started",
                started_at=now,
            )
            await asyncio.to_thread(self.store.save_job_status, status)
            return status

    async def update_progress(self, status: JobStatus, progress: int, message: str) -> None:
        status.progress = max(0, min(100, progress))
        status.message = message
        await asyncio.to_thread(self.store.save_job_status, status)

    async def run(self, job_name: str, func: JobFunc) -> JobStatus:
        """Run a job unless it is already running.

        Args:
            job_name: Name used for the status record
            func: Coroutine function receiving the live status and returning
                a JSON-serializable summary

        Returns:
            Final status; state is ``skipped`` when another run held the job.
            A skipped status is not persisted.

        Raises:
            Exception: Whatever ``func`` raised, after the failure is recorded.
        """
        status = await self.try_claim(job_name)
        if status is None:
            logger.info("Job %s is already running, skipping", job_name)
            return JobStatus(job_name=job_name, state=JobState.SKIPPED, message="Already running")

        logger.info("Job %s started", job_name)
        try:
            summary = await func(status)
        except Exception as e:
            status.state = JobState.FAILED
            status.error = str(e) or type(e).__name__
            status.message = "Failed"
            status.completed_at = self._clock()
            await asyncio.to_thread(self.store.save_job_status, status)
            logger.error("Job %s failed: %s", job_name, status.error)
            raise

        status.state = JobState.COMPLETED
        status.progress = 100
        status.message = "Completed"
        status.summary = summary
        status.completed_at = self._clock()
        await asyncio.to_thread(self.store.save_job_status, status)
        logger.info("Job %s completed: %s", job_name, summary)
        return status
