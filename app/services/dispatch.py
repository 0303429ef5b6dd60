"""Marksheet dispatch to parents over WhatsApp."""

import enum
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
)
from app.models.marksheet import DispatchRequestStatus, Marksheet, MarksheetStatus, WhatsAppStatus
from app.models.user import User
from app.schemas.dispatch import BulkDispatchResult, DispatchResult, DispatchStatusItem, TransportResult
from app.schemas.marksheet import MarksheetFilter
from app.services.documents import document_url
from app.services.lifecycle import DISPATCHABLE_STATUSES, LifecycleEvent
from app.services.marksheet import check_marksheet_access
from app.services.notification import (
    NotificationService,
    notify_bulk_dispatch_complete,
    notify_dispatch_failed,
    notify_dispatch_succeeded,
)
from app.services.results import derive_overall_result
from app.services.transport import WhatsAppTransport, get_transport

logger = logging.getLogger(__name__)


class DispatchOrigin(str, enum.Enum):
    MANUAL = "manual"
    BULK = "bulk"
    SCHEDULED = "scheduled"


def build_dispatch_message(marksheet: Marksheet) -> str:
    """Message body sent to the parent alongside the document link."""
    result = derive_overall_result(marksheet.subjects or []).value
    exam = marksheet.examination_name or "Examination"
    semester = f", Semester {marksheet.semester}" if marksheet.semester else ""
    return (
        f"Dear Parent,\n\n"
        f"The marksheet of {marksheet.student_name} ({marksheet.reg_number}) is now available.\n"
        f"{exam} - {marksheet.examination_date.strftime('%B %Y')}\n"
        f"Department: {marksheet.department}, Year: {marksheet.year}{semester}\n"
        f"Overall Result: {result}"
    )


class DispatchService:
    """Sends marksheets and records each outcome as soon as it is known.

    Every attempt commits its own outcome so a failure later in a batch
    never loses an earlier record.
    """

    def __init__(
        self,
        db: Session,
        transport: WhatsAppTransport | None = None,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        bulk_delay_seconds: float | None = None,
    ):
        self.db = db
        self.transport = transport or get_transport()
        self.notifications = notifications or NotificationService(db)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self.bulk_delay_seconds = (
            bulk_delay_seconds if bulk_delay_seconds is not None else settings.BULK_DISPATCH_DELAY_SECONDS
        )

    def _get(self, marksheet_id: int) -> Marksheet:
        marksheet = self.db.execute(
            select(Marksheet)
            .where(Marksheet.id == marksheet_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not marksheet:
            raise NotFoundError("Marksheet", str(marksheet_id))
        return marksheet

    def send_marksheet(self, marksheet_id: int) -> DispatchResult:
        """Manual single send from approved, rescheduled or dispatched."""
        return self.dispatch(self._get(marksheet_id), DispatchOrigin.MANUAL)

    def dispatch(self, marksheet: Marksheet, origin: DispatchOrigin) -> DispatchResult:
        """Attempt one transport send and persist the outcome.

        The scheduler claims ``auto_dispatched`` before calling in; manual
        and bulk sends take their own claim here.
        """
        if marksheet.status not in DISPATCHABLE_STATUSES:
            raise InvalidTransitionError(marksheet.status.value, LifecycleEvent.DISPATCH.value)

        previous_flag = None
        if origin != DispatchOrigin.SCHEDULED:
            previous_flag = self._claim_send(marksheet)

        if not marksheet.parent_phone_number:
            logger.warning(f"No phone number for marksheet {marksheet.id}")
            return self._record_failure(marksheet, origin, "No phone number available", previous_flag)

        try:
            result = self.transport.send_document(
                marksheet.parent_phone_number,
                document_url(marksheet),
                build_dispatch_message(marksheet),
            )
        except Exception as e:
            logger.exception(f"Transport raised while dispatching marksheet {marksheet.id}")
            result = TransportResult(success=False, error_code="TRANSPORT_EXCEPTION", error_message=str(e))

        if result.success:
            return self._record_success(marksheet, origin, result.provider_message_id)
        return self._record_failure(marksheet, origin, result.error_message or "Unknown error", previous_flag)

    def _claim_send(self, marksheet: Marksheet) -> bool:
        """Take the marksheet for one send and return its prior ``auto_dispatched``.

        Setting the flag keeps the scheduler away while the send is in
        flight, and the version check turns a second concurrent send into
        a conflict. A scheduled send that already failed may be retried by
        hand.
        """
        previous = marksheet.auto_dispatched
        result = self.db.execute(
            update(Marksheet)
            .where(
                Marksheet.id == marksheet.id,
                Marksheet.version == marksheet.version,
                Marksheet.status.in_(list(DISPATCHABLE_STATUSES)),
                or_(
                    Marksheet.auto_dispatched.is_(False),
                    Marksheet.auto_dispatch_failed.is_(True),
                    Marksheet.status == MarksheetStatus.DISPATCHED,
                ),
            )
            .values(auto_dispatched=True, version=Marksheet.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            raise ConflictError(
                "Marksheet is already being dispatched",
                details={"marksheet_id": marksheet.id},
            )
        self.db.refresh(marksheet)
        return previous

    def _record_success(self, marksheet: Marksheet, origin: DispatchOrigin, message_sid: str | None) -> DispatchResult:
        now = self._clock()
        self._write(
            marksheet,
            {
                "status": MarksheetStatus.DISPATCHED,
                "is_dispatched": True,
                "dispatched_at": now,
                "whatsapp_status": WhatsAppStatus.SENT,
                "whatsapp_error": None,
                "whatsapp_message_sid": message_sid,
                "request_status": DispatchRequestStatus.DISPATCHED,
                "request_dispatched_at": now,
                "auto_dispatched": True,
                "auto_dispatch_failed": False,
                "dispatch_error": None,
            },
        )
        logger.info(f"Marksheet {marksheet.id} dispatched ({origin.value}), sid={message_sid}")

        if origin != DispatchOrigin.BULK:
            notify_dispatch_succeeded(self.notifications, marksheet)
            self.db.commit()
        return DispatchResult(marksheet_id=marksheet.id, success=True, message_sid=message_sid)

    def _record_failure(
        self,
        marksheet: Marksheet,
        origin: DispatchOrigin,
        error: str,
        previous_flag: bool | None = None,
    ) -> DispatchResult:
        values: dict[str, Any] = {
            "whatsapp_status": WhatsAppStatus.FAILED,
            "whatsapp_error": error,
            "dispatch_error": error,
        }
        if origin == DispatchOrigin.SCHEDULED:
            values.update(auto_dispatched=True, auto_dispatch_failed=True)
        elif previous_flag is not None:
            # Release the send claim so a pending schedule still fires
            values["auto_dispatched"] = previous_flag
        self._write(marksheet, values)
        logger.error(f"Dispatch of marksheet {marksheet.id} failed ({origin.value}): {error}")

        if origin != DispatchOrigin.BULK:
            notify_dispatch_failed(self.notifications, marksheet, error)
            self.db.commit()
        return DispatchResult(marksheet_id=marksheet.id, success=False, error=error)

    def _write(self, marksheet: Marksheet, values: dict[str, Any]) -> None:
        self.db.execute(
            update(Marksheet)
            .where(Marksheet.id == marksheet.id)
            .values(version=Marksheet.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(marksheet)

    def send_bulk(self, marksheet_ids: list[int], user: User | None = None) -> BulkDispatchResult:
        """Send each marksheet in turn, throttled, isolating failures.

        With ``user`` given, a marksheet outside their reach is refused and
        counted as a failed record. The summary notice goes to ``user``, or
        to the owner of the first marksheet sent.
        """
        summary = BulkDispatchResult(total=len(marksheet_ids))
        owner = user

        for index, marksheet_id in enumerate(marksheet_ids):
            if index and self.bulk_delay_seconds > 0:
                self._sleep(self.bulk_delay_seconds)

            try:
                marksheet = self._get(marksheet_id)
                if user is not None:
                    check_marksheet_access(marksheet, user)
                if owner is None:
                    owner = marksheet.staff
                outcome = self.dispatch(marksheet, DispatchOrigin.BULK)
            except AppException as e:
                self.db.rollback()
                outcome = DispatchResult(marksheet_id=marksheet_id, success=False, error=e.message)
            except Exception as e:
                logger.exception(f"Bulk dispatch of marksheet {marksheet_id} failed")
                self.db.rollback()
                outcome = DispatchResult(marksheet_id=marksheet_id, success=False, error=str(e))

            summary.results.append(outcome)
            if outcome.success:
                summary.successful += 1
            else:
                summary.failed += 1
                summary.errors.append(f"Marksheet {marksheet_id}: {outcome.error}")

        logger.info(f"Bulk dispatch complete: {summary.successful}/{summary.total} sent")
        notify_bulk_dispatch_complete(self.notifications, owner, summary.successful, summary.total)
        self.db.commit()
        return summary

    def get_dispatch_statuses(
        self,
        marksheet_ids: list[int],
        filters: MarksheetFilter | None = None,
    ) -> list[DispatchStatusItem]:
        """Dispatch state of the given marksheets; ids outside ``filters`` are left out."""
        query = select(Marksheet).where(Marksheet.id.in_(marksheet_ids))
        if filters:
            if filters.staff_id:
                query = query.where(Marksheet.staff_id == filters.staff_id)
            if filters.department:
                query = query.where(Marksheet.department == filters.department)
        marksheets = self.db.execute(query.order_by(Marksheet.id)).scalars().all()
        return [
            DispatchStatusItem(
                id=m.id,
                code=m.code,
                student_name=m.student_name,
                reg_number=m.reg_number,
                status=m.status,
                dispatched=m.is_dispatched,
                dispatched_at=m.dispatched_at,
                whatsapp_status=m.whatsapp_status,
                whatsapp_error=m.whatsapp_error,
            )
            for m in marksheets
        ]

    def reset_auto_dispatch(self, marksheet_id: int) -> Marksheet:
        """Make an approved or rescheduled marksheet eligible for the scheduler again."""
        marksheet = self._get(marksheet_id)
        if marksheet.request_status not in (DispatchRequestStatus.APPROVED, DispatchRequestStatus.RESCHEDULED):
            raise PreconditionFailedError(
                "Only approved or rescheduled dispatch requests can be retried",
                details={"request_status": marksheet.request_status.value if marksheet.request_status else None},
            )

        self._write(
            marksheet,
            {
                "auto_dispatched": False,
                "auto_dispatch_failed": False,
                "dispatch_error": None,
                "pre_dispatch_notification_sent": False,
            },
        )
        logger.info(f"Auto-dispatch flags reset for marksheet {marksheet_id}")
        return marksheet
