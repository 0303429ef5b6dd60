"""Scheduled dispatch: pre-dispatch notices and automatic sends.

Both passes claim a marksheet with a conditional update before acting on
it, so overlapping passes (or several app instances) handle each record
at most once.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.marksheet import DispatchRequestStatus, Marksheet, MarksheetStatus
from app.schemas.dispatch import PassSummary
from app.services.dispatch import DispatchOrigin, DispatchService
from app.services.notification import NotificationService, notify_dispatch_failed, notify_upcoming_dispatch

logger = logging.getLogger(__name__)

SCHEDULED_REQUEST_STATUSES = (DispatchRequestStatus.APPROVED, DispatchRequestStatus.RESCHEDULED)
SCHEDULED_LIFECYCLE_STATUSES = (MarksheetStatus.APPROVED_BY_HOD, MarksheetStatus.RESCHEDULED_BY_HOD)


class ScheduledDispatchService:
    """The two procedures run periodically by the dispatch scheduler."""

    def __init__(
        self,
        db: Session,
        dispatcher: DispatchService | None = None,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] | None = None,
        window_minutes: int | None = None,
    ):
        self.db = db
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.notifications = notifications or NotificationService(db)
        self.dispatcher = dispatcher or DispatchService(db, notifications=self.notifications, clock=self._clock)
        self.window_minutes = window_minutes if window_minutes is not None else settings.PRE_DISPATCH_WINDOW_MINUTES

    def _claim(self, marksheet_id: int, flag) -> bool:
        """Flip ``flag`` from false to true; False when someone else did first."""
        result = self.db.execute(
            update(Marksheet)
            .where(Marksheet.id == marksheet_id, flag.is_(False))
            .values({flag: True, Marksheet.version: Marksheet.version + 1})
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def check_upcoming_dispatches(self) -> PassSummary:
        """Notify owners of dispatches scheduled within the next window."""
        now = self._clock()
        window_end = now + timedelta(minutes=self.window_minutes)
        summary = PassSummary(procedure="check_upcoming_dispatches")

        marksheets = self.db.execute(
            select(Marksheet)
            .where(
                Marksheet.request_status.in_(SCHEDULED_REQUEST_STATUSES),
                Marksheet.scheduled_dispatch_date.is_not(None),
                Marksheet.scheduled_dispatch_date >= now,
                Marksheet.scheduled_dispatch_date <= window_end,
                Marksheet.pre_dispatch_notification_sent.is_(False),
            )
            .order_by(Marksheet.scheduled_dispatch_date)
        ).scalars().all()
        summary.processed = len(marksheets)

        for marksheet in marksheets:
            try:
                if not self._claim(marksheet.id, Marksheet.pre_dispatch_notification_sent):
                    summary.skipped += 1
                    continue
                notify_upcoming_dispatch(self.notifications, marksheet)
                self.db.commit()
                summary.succeeded += 1
            except Exception:
                logger.exception(f"Pre-dispatch notification failed for marksheet {marksheet.id}")
                self.db.rollback()
                summary.failed += 1

        if summary.processed:
            logger.info(
                f"Upcoming dispatch check: {summary.succeeded} notified, "
                f"{summary.skipped} skipped, {summary.failed} failed"
            )
        return summary

    def process_scheduled_dispatches(self) -> PassSummary:
        """Send every approved or rescheduled marksheet whose time has come."""
        now = self._clock()
        summary = PassSummary(procedure="process_scheduled_dispatches")

        marksheets = self.db.execute(
            select(Marksheet)
            .where(
                Marksheet.request_status.in_(SCHEDULED_REQUEST_STATUSES),
                Marksheet.status.in_(SCHEDULED_LIFECYCLE_STATUSES),
                Marksheet.scheduled_dispatch_date.is_not(None),
                Marksheet.scheduled_dispatch_date <= now,
                Marksheet.auto_dispatched.is_(False),
            )
            .order_by(Marksheet.scheduled_dispatch_date)
        ).scalars().all()
        summary.processed = len(marksheets)

        for marksheet in marksheets:
            try:
                if not self._claim(marksheet.id, Marksheet.auto_dispatched):
                    summary.skipped += 1
                    continue
                outcome = self.dispatcher.dispatch(marksheet, DispatchOrigin.SCHEDULED)
            except Exception as e:
                logger.exception(f"Scheduled dispatch failed for marksheet {marksheet.id}")
                self.db.rollback()
                self._record_unexpected_failure(marksheet, str(e))
                summary.failed += 1
                continue

            if outcome.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        if summary.processed:
            logger.info(
                f"Scheduled dispatch pass: {summary.succeeded} sent, "
                f"{summary.failed} failed, {summary.skipped} skipped"
            )
        return summary

    def _record_unexpected_failure(self, marksheet: Marksheet, error: str) -> None:
        try:
            self.db.execute(
                update(Marksheet)
                .where(Marksheet.id == marksheet.id)
                .values(
                    auto_dispatched=True,
                    auto_dispatch_failed=True,
                    dispatch_error=error,
                    version=Marksheet.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            notify_dispatch_failed(self.notifications, marksheet, error)
            self.db.commit()
        except Exception:
            logger.exception(f"Could not record dispatch failure for marksheet {marksheet.id}")
            self.db.rollback()
