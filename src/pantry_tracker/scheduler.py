"""Background scheduler for the recurring price jobs."""

import asyncio
import calendar
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .alerts import AlertNotifier, LoggingNotifier
from .jobs import JobRunner
from .models import JobStatus, utcnow
from .price_service import PriceService

logger = logging.getLogger(__name__)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class JobTrigger:
    """Wall-clock trigger in UTC.

    ``weekday`` (0 = Monday) applies to weekly triggers, ``day`` to monthly ones.
    """

    frequency: Frequency
    hour: int
    minute: int = 0
    weekday: int = 0
    day: int = 1


PRICE_TRENDS = "price_trends"
RECIPE_PRICES = "recipe_prices"
PRICE_FETCH = "price_fetch"
PRICE_ALERTS = "price_alerts"
SEASONALITY = "seasonality"

DEFAULT_TRIGGERS: dict[str, JobTrigger] = {
    PRICE_TRENDS: JobTrigger(Frequency.DAILY, hour=1),
    RECIPE_PRICES: JobTrigger(Frequency.DAILY, hour=2),
    PRICE_FETCH: JobTrigger(Frequency.WEEKLY, hour=3, weekday=0),
    PRICE_ALERTS: JobTrigger(Frequency.WEEKLY, hour=9, weekday=0),
    SEASONALITY: JobTrigger(Frequency.MONTHLY, hour=0, day=1),
}


def next_run_after(trigger: JobTrigger, now: datetime) -> datetime:
    """First fire time strictly after ``now``."""
    at_time = now.replace(hour=trigger.hour, minute=trigger.minute, second=0, microsecond=0)

    if trigger.frequency == Frequency.DAILY:
        candidate = at_time
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if trigger.frequency == Frequency.WEEKLY:
        candidate = at_time + timedelta(days=(trigger.weekday - now.weekday()) % 7)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    year, month = now.year, now.month
    while True:
        day = min(trigger.day, calendar.monthrange(year, month)[1])
        candidate = at_time.replace(year=year, month=month, day=day)
        if candidate > now:
            return candidate
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)


class PriceScheduler:
    """Runs the price jobs on their triggers as a background task."""

    def __init__(
        self,
        service: PriceService,
        runner: JobRunner,
        notifier: AlertNotifier | None = None,
        triggers: dict[str, JobTrigger] | None = None,
        check_interval: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the scheduler.

        Args:
            service: Price service the jobs operate on
            runner: Single-flight runner holding the job status records
            notifier: Alert delivery; defaults to a dry-run logger
            triggers: Job name to trigger; defaults to DEFAULT_TRIGGERS
            check_interval: Seconds between checks for due jobs
            clock: Time source
        """
        self.service = service
        self.runner = runner
        self.notifier = notifier or LoggingNotifier()
        self.triggers = dict(triggers or DEFAULT_TRIGGERS)
        self.check_interval = check_interval
        self._clock = clock
        self._next_runs: dict[str, datetime] = {}
        self._task: asyncio.Task | None = None
        self._running = False
        self._jobs = {
            PRICE_TRENDS: self._price_trends,
            RECIPE_PRICES: self._recipe_prices,
            PRICE_FETCH: self._price_fetch,
            PRICE_ALERTS: self._price_alerts,
            SEASONALITY: self._seasonality,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_runs(self) -> dict[str, datetime]:
        return dict(self._next_runs)

    def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        now = self._clock()
        self._next_runs = {
            name: next_run_after(trigger, now) for name, trigger in self.triggers.items()
        }
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("Scheduler stopped")

    async def run_forever(self) -> None:
        """Start the scheduler and wait until it is stopped or cancelled."""
        self.start()
        try:
            while self._running:
                await asyncio.sleep(self.check_interval)
        finally:
            self.stop()

    async def _run_loop(self) -> None:
        """Main scheduler loop: run whatever is due, then sleep."""
        while self._running:
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.error("Scheduler error: %s", e)

            await asyncio.sleep(self.check_interval)

    async def run_due_jobs(self) -> list[JobStatus]:
        """Run every job whose next fire time has passed."""
        now = self._clock()
        statuses = []
        for name, due in sorted(self._next_runs.items(), key=lambda kv: kv[1]):
            if due > now:
                continue
            self._next_runs[name] = next_run_after(self.triggers[name], now)
            try:
                statuses.append(await self.run_job_now(name))
            except Exception as e:
                logger.error("Scheduled job %s failed: %s", name, e)
        return statuses

    async def run_job_now(self, job_name: str) -> JobStatus:
        """Run a job immediately, unless it is already running.

        Raises:
            KeyError: If the job name is unknown
        """
        if job_name not in self._jobs:
            raise KeyError(f"Unknown job: {job_name}")
        return await self.runner.run(job_name, self._jobs[job_name])

    # --- Jobs ---

    async def _price_trends(self, status: JobStatus) -> dict[str, Any]:
        summary, _ = await self.service.run_reconciliation_sweep(fetch=False, prune=True)
        return summary.model_dump(mode="json")

    async def _recipe_prices(self, status: JobStatus) -> dict[str, Any]:
        recipes = await self.service.update_recipe_prices()
        return {"recipes_updated": len(recipes)}

    async def _price_fetch(self, status: JobStatus) -> dict[str, Any]:
        await self.runner.update_progress(status, 10, "Fetching store prices")
        summary, _ = await self.service.run_reconciliation_sweep(fetch=True)
        return summary.model_dump(mode="json")

    async def _price_alerts(self, status: JobStatus) -> dict[str, Any]:
        dispatch = await self.service.send_alerts(self.notifier)
        return dispatch.model_dump(mode="json")

    async def _seasonality(self, status: JobStatus) -> dict[str, Any]:
        items = await self.service.refresh_seasonality()
        return {"items_updated": len(items)}
