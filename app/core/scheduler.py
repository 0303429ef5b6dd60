"""APScheduler configuration for scheduled marksheet dispatch."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.schemas.dispatch import JobInfo, PassSummary, SchedulerStatus
from app.services.scheduled_dispatch import ScheduledDispatchService

logger = logging.getLogger(__name__)

UPCOMING_JOB_ID = "check_upcoming_dispatches"
DUE_JOB_ID = "process_scheduled_dispatches"


def get_db_session() -> Session:
    """Get a database session for scheduler jobs."""
    return SessionLocal()


def _run_pass(run: Callable[[ScheduledDispatchService], PassSummary]) -> PassSummary | None:
    db = get_db_session()
    try:
        return run(ScheduledDispatchService(db))
    except Exception as e:
        logger.exception(f"Scheduled dispatch job failed: {e}")
        db.rollback()
        return None
    finally:
        db.close()


def check_upcoming_dispatches_job() -> PassSummary | None:
    """Notify staff about dispatches due within the pre-dispatch window."""
    return _run_pass(lambda service: service.check_upcoming_dispatches())


def process_scheduled_dispatches_job() -> PassSummary | None:
    """Send marksheets whose scheduled dispatch time has passed."""
    return _run_pass(lambda service: service.process_scheduled_dispatches())


class DispatchScheduler:
    """Owns the APScheduler instance running the two dispatch jobs."""

    def __init__(
        self,
        upcoming_interval_minutes: int | None = None,
        due_interval_minutes: int | None = None,
        timezone: str | None = None,
    ):
        self.upcoming_interval_minutes = upcoming_interval_minutes or settings.UPCOMING_CHECK_INTERVAL_MINUTES
        self.due_interval_minutes = due_interval_minutes or settings.DUE_DISPATCH_INTERVAL_MINUTES
        self.timezone = timezone or settings.SCHEDULER_TIMEZONE
        self.scheduler: AsyncIOScheduler | None = None

    def configure(self) -> AsyncIOScheduler:
        """Build the scheduler and register both jobs without starting it."""
        scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Only one instance of each job at a time
                "misfire_grace_time": 300,
            }
        )
        now = datetime.now(scheduler.timezone)

        # First runs shortly after startup, then on the interval
        scheduler.add_job(
            check_upcoming_dispatches_job,
            trigger=IntervalTrigger(minutes=self.upcoming_interval_minutes),
            id=UPCOMING_JOB_ID,
            name="Check upcoming dispatches",
            next_run_time=now + timedelta(seconds=5),
            replace_existing=True,
        )
        scheduler.add_job(
            process_scheduled_dispatches_job,
            trigger=IntervalTrigger(minutes=self.due_interval_minutes),
            id=DUE_JOB_ID,
            name="Process scheduled dispatches",
            next_run_time=now + timedelta(seconds=10),
            replace_existing=True,
        )

        self.scheduler = scheduler
        logger.info(
            f"Scheduler configured: upcoming check every {self.upcoming_interval_minutes} min, "
            f"due dispatch every {self.due_interval_minutes} min ({self.timezone})"
        )
        return scheduler

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def start(self) -> None:
        """Start the scheduler."""
        if self.scheduler is None:
            self.configure()

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")

    def status(self) -> SchedulerStatus:
        if self.scheduler is None:
            return SchedulerStatus(running=False, jobs=[])

        intervals = {
            UPCOMING_JOB_ID: self.upcoming_interval_minutes,
            DUE_JOB_ID: self.due_interval_minutes,
        }
        return SchedulerStatus(
            running=self.scheduler.running,
            jobs=[
                JobInfo(
                    id=job.id,
                    name=job.name,
                    interval_minutes=intervals.get(job.id, 0),
                    # Jobs added before start() have no next_run_time yet
                    next_run_time=getattr(job, "next_run_time", None),
                )
                for job in self.scheduler.get_jobs()
            ],
        )
