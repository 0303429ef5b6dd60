"""
Tests for the APScheduler wiring of the dispatch jobs
"""
from datetime import timedelta

from apscheduler.triggers.interval import IntervalTrigger

from app.core.scheduler import (
    DUE_JOB_ID,
    UPCOMING_JOB_ID,
    DispatchScheduler,
    process_scheduled_dispatches_job,
)
from app.models.marksheet import Marksheet

from conftest import NOW


class TestDispatchScheduler:

    def test_configure_registers_both_jobs(self):
        dispatch_scheduler = DispatchScheduler(upcoming_interval_minutes=10, due_interval_minutes=5, timezone="UTC")

        scheduler = dispatch_scheduler.configure()

        upcoming = scheduler.get_job(UPCOMING_JOB_ID)
        due = scheduler.get_job(DUE_JOB_ID)
        assert isinstance(upcoming.trigger, IntervalTrigger)
        assert upcoming.trigger.interval == timedelta(minutes=10)
        assert due.trigger.interval == timedelta(minutes=5)

    def test_status_before_start(self):
        dispatch_scheduler = DispatchScheduler(upcoming_interval_minutes=10, due_interval_minutes=5, timezone="UTC")
        assert dispatch_scheduler.status().jobs == []

        dispatch_scheduler.configure()
        status = dispatch_scheduler.status()

        assert status.running is False
        assert dispatch_scheduler.running is False
        assert {job.id: job.interval_minutes for job in status.jobs} == {UPCOMING_JOB_ID: 10, DUE_JOB_ID: 5}

    def test_stop_without_start(self):
        dispatch_scheduler = DispatchScheduler()

        dispatch_scheduler.stop()

        assert dispatch_scheduler.running is False


def test_due_job_uses_its_own_session(db_session, make_marksheet):
    marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(days=365))
    db_session.commit()

    summary = process_scheduled_dispatches_job()

    # The default transport has no Twilio credentials in tests
    assert summary.processed == 1
    assert summary.failed == 1
    stored = db_session.get(Marksheet, marksheet.id, populate_existing=True)
    assert stored.auto_dispatched is True
    assert stored.auto_dispatch_failed is True
    assert "not configured" in stored.dispatch_error
