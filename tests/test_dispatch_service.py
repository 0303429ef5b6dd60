"""
Tests for manual and bulk WhatsApp dispatch
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, PreconditionFailedError
from app.models.marksheet import DispatchRequestStatus, Marksheet, MarksheetStatus, WhatsAppStatus
from app.models.notification import Notification
from app.models.user import UserRole
from app.schemas.marksheet import MarksheetFilter
from app.services.dispatch import DispatchOrigin, build_dispatch_message

from conftest import NOW, make_user


def notification_types(db_session, user) -> list[str]:
    return list(db_session.execute(
        select(Notification.notification_type).where(Notification.user_id == user.id)
    ).scalars())


class TestSendMarksheet:

    def test_send_approved(self, dispatch_service, make_marksheet, transport, marksheet_service, db_session, staff_user):
        marksheet = make_marksheet(stage="approved")

        result = dispatch_service.send_marksheet(marksheet.id)

        assert result.success
        assert result.message_sid.startswith("SM")
        assert len(transport.sent) == 1
        sent = transport.sent[0]
        assert sent["phone_number"] == "9876543210"
        token = marksheet_service.get_marksheet(marksheet.id).document_token
        assert sent["document_url"] == f"https://academics.test/api/v1/documents/marksheets/{token}.pdf"
        assert "Kavya R" in sent["message"]

        stored = marksheet_service.get_marksheet(marksheet.id, fresh=True)
        assert stored.status == MarksheetStatus.DISPATCHED
        assert stored.is_dispatched
        assert stored.whatsapp_status == WhatsAppStatus.SENT
        assert stored.whatsapp_message_sid == result.message_sid
        assert stored.request_status == DispatchRequestStatus.DISPATCHED
        assert stored.dispatched_at is not None
        assert "dispatch_succeeded" in notification_types(db_session, staff_user)

    def test_resend_dispatched(self, dispatch_service, make_marksheet, transport):
        marksheet = make_marksheet(stage="approved")
        dispatch_service.send_marksheet(marksheet.id)

        result = dispatch_service.send_marksheet(marksheet.id)

        assert result.success
        assert len(transport.sent) == 2

    @pytest.mark.parametrize("stage", ["draft", "verified", "requested", "rejected"])
    def test_not_dispatchable(self, dispatch_service, make_marksheet, transport, stage):
        marksheet = make_marksheet(stage=stage)

        with pytest.raises(InvalidTransitionError):
            dispatch_service.send_marksheet(marksheet.id)

        assert transport.sent == []

    def test_missing_marksheet(self, dispatch_service):
        with pytest.raises(NotFoundError):
            dispatch_service.send_marksheet(404)

    def test_provider_rejection_is_recorded(
        self, dispatch_service, make_marksheet, transport, marksheet_service, db_session, staff_user
    ):
        marksheet = make_marksheet(stage="approved")
        transport.failing.add("9876543210")

        result = dispatch_service.send_marksheet(marksheet.id)

        assert not result.success
        assert result.error == "Invalid phone number format"
        stored = marksheet_service.get_marksheet(marksheet.id, fresh=True)
        assert stored.status == MarksheetStatus.APPROVED_BY_HOD
        assert stored.whatsapp_status == WhatsAppStatus.FAILED
        assert stored.whatsapp_error == "Invalid phone number format"
        # Manual failures leave the scheduler's flags alone
        assert not stored.auto_dispatched
        assert not stored.auto_dispatch_failed
        assert "dispatch_failed" in notification_types(db_session, staff_user)

    def test_transport_exception_is_a_failure(self, dispatch_service, make_marksheet, transport, marksheet_service):
        marksheet = make_marksheet(stage="approved")
        transport.raising.add("9876543210")

        result = dispatch_service.send_marksheet(marksheet.id)

        assert not result.success
        assert "connection reset" in result.error
        assert marksheet_service.get_marksheet(marksheet.id, fresh=True).whatsapp_status == WhatsAppStatus.FAILED

    def test_missing_phone_skips_transport(self, dispatch_service, make_marksheet, transport):
        marksheet = make_marksheet(stage="approved", phone=None)

        result = dispatch_service.send_marksheet(marksheet.id)

        assert not result.success
        assert result.error == "No phone number available"
        assert transport.sent == []

    def test_message_mentions_result(self, make_marksheet, marksheet_service):
        marksheet = make_marksheet(subjects=[{"subject_name": "Maths", "marks": "AB"}])

        message = build_dispatch_message(marksheet_service.get_marksheet(marksheet.id))

        assert "Overall Result: Absent" in message
        assert "Internal Assessment 1 - September 2026" in message
        assert "Semester 5" in message


class TestBulkDispatch:

    def test_failures_are_isolated(
        self, dispatch_service, make_marksheet, transport, sleeps, marksheet_service, db_session, staff_user
    ):
        first = make_marksheet(stage="approved", phone="9000000001")
        second = make_marksheet(stage="approved", phone="9000000002")
        third = make_marksheet(stage="approved", phone="9000000003")
        transport.raising.add("9000000002")

        summary = dispatch_service.send_bulk([first.id, second.id, third.id])

        assert summary.total == 3
        assert summary.successful == 2
        assert summary.failed == 1
        assert summary.successful + summary.failed == summary.total
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith(f"Marksheet {second.id}:")
        assert [r.success for r in summary.results] == [True, False, True]

        statuses = {
            m_id: marksheet_service.get_marksheet(m_id, fresh=True).status
            for m_id in (first.id, second.id, third.id)
        }
        assert statuses == {
            first.id: MarksheetStatus.DISPATCHED,
            second.id: MarksheetStatus.APPROVED_BY_HOD,
            third.id: MarksheetStatus.DISPATCHED,
        }
        # Throttled between sends only
        assert sleeps == [1.5, 1.5]

        types = notification_types(db_session, staff_user)
        assert types.count("bulk_dispatch_complete") == 1
        assert "dispatch_succeeded" not in types

    def test_unknown_and_ineligible_marksheets_count_as_failed(self, dispatch_service, make_marksheet):
        approved = make_marksheet(stage="approved")
        draft = make_marksheet()

        summary = dispatch_service.send_bulk([approved.id, 9999, draft.id])

        assert summary.successful == 1
        assert summary.failed == 2
        assert summary.successful + summary.failed == summary.total


    def test_marksheets_outside_the_users_reach_are_refused(
        self, dispatch_service, make_marksheet, transport, db_session, staff_user, other_staff
    ):
        own = make_marksheet(stage="approved", phone="9000000001")
        foreign = make_marksheet(stage="approved", phone="9000000002", staff=other_staff)

        summary = dispatch_service.send_bulk([own.id, foreign.id], user=staff_user)

        assert (summary.successful, summary.failed) == (1, 1)
        assert summary.errors == [f"Marksheet {foreign.id}: Marksheet belongs to another staff member"]
        assert [sent["phone_number"] for sent in transport.sent] == ["9000000001"]
        assert "bulk_dispatch_complete" in notification_types(db_session, staff_user)

    def test_hod_sends_within_department(self, dispatch_service, make_marksheet, db_session, hod_user):
        marksheet = make_marksheet(stage="approved")
        mech_hod = make_user(db_session, UserRole.HOD, "hod.mech@msec.edu.in", department="MECH")

        assert dispatch_service.send_bulk([marksheet.id], user=mech_hod).failed == 1
        assert dispatch_service.send_bulk([marksheet.id], user=hod_user).successful == 1


class TestStatusAndReset:

    def test_dispatch_statuses(self, dispatch_service, make_marksheet):
        sent = make_marksheet(stage="approved")
        pending = make_marksheet(stage="approved")
        dispatch_service.send_marksheet(sent.id)

        items = {item.id: item for item in dispatch_service.get_dispatch_statuses([sent.id, pending.id, 777])}

        assert set(items) == {sent.id, pending.id}
        assert items[sent.id].dispatched
        assert items[sent.id].whatsapp_status == WhatsAppStatus.SENT
        assert items[pending.id].whatsapp_status == WhatsAppStatus.PENDING

    def test_dispatch_statuses_respect_scope(self, dispatch_service, make_marksheet, staff_user, other_staff):
        own = make_marksheet(stage="approved")
        foreign = make_marksheet(stage="approved", staff=other_staff)

        items = dispatch_service.get_dispatch_statuses(
            [own.id, foreign.id],
            MarksheetFilter(staff_id=staff_user.id),
        )
        assert [item.id for item in items] == [own.id]

        assert dispatch_service.get_dispatch_statuses([own.id], MarksheetFilter(department="MECH")) == []

    def test_reset_after_scheduled_failure(self, dispatch_service, make_marksheet, transport, marksheet_service):
        marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(minutes=5))
        transport.failing.add("9876543210")
        stored = marksheet_service.get_marksheet(marksheet.id)
        dispatch_service.dispatch(stored, DispatchOrigin.SCHEDULED)
        assert marksheet_service.get_marksheet(marksheet.id, fresh=True).auto_dispatch_failed

        reset = dispatch_service.reset_auto_dispatch(marksheet.id)

        assert not reset.auto_dispatched
        assert not reset.auto_dispatch_failed
        assert reset.dispatch_error is None
        assert reset.status == MarksheetStatus.RESCHEDULED_BY_HOD

    def test_reset_requires_approved_request(self, dispatch_service, make_marksheet):
        marksheet = make_marksheet(stage="requested")

        with pytest.raises(PreconditionFailedError):
            dispatch_service.reset_auto_dispatch(marksheet.id)


class TestConcurrentSends:

    def test_scheduler_claim_blocks_manual_send(self, dispatch_service, scheduled_service, make_marksheet, transport):
        marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(minutes=5))
        assert scheduled_service._claim(marksheet.id, Marksheet.auto_dispatched)

        with pytest.raises(ConflictError):
            dispatch_service.send_marksheet(marksheet.id)

        assert transport.sent == []

    def test_manual_send_holds_off_the_scheduler(
        self, dispatch_service, scheduled_service, make_marksheet, transport, monkeypatch
    ):
        marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(minutes=5))
        passes = []
        send_document = transport.send_document

        def send_while_scheduler_runs(*args, **kwargs):
            passes.append(scheduled_service.process_scheduled_dispatches())
            return send_document(*args, **kwargs)

        monkeypatch.setattr(transport, "send_document", send_while_scheduler_runs)

        result = dispatch_service.send_marksheet(marksheet.id)

        assert result.success
        assert len(transport.sent) == 1
        assert passes[0].processed == 0

    def test_failed_manual_send_releases_the_schedule(
        self, dispatch_service, scheduled_service, make_marksheet, transport, marksheet_service
    ):
        marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(minutes=5))
        transport.failing.add("9876543210")

        assert not dispatch_service.send_marksheet(marksheet.id).success
        assert not marksheet_service.get_marksheet(marksheet.id, fresh=True).auto_dispatched

        transport.failing.clear()
        summary = scheduled_service.process_scheduled_dispatches()

        assert summary.succeeded == 1
        assert len(transport.sent) == 2

    def test_stale_copy_cannot_send_again(self, dispatch_service, make_marksheet, transport, marksheet_service, db_session):
        marksheet = make_marksheet(stage="approved")
        stale = marksheet_service.get_marksheet(marksheet.id)
        db_session.expunge(stale)

        assert dispatch_service.send_marksheet(marksheet.id).success

        with pytest.raises(ConflictError):
            dispatch_service.dispatch(stale, DispatchOrigin.MANUAL)
        assert len(transport.sent) == 1

    def test_manual_retry_after_scheduled_failure(
        self, dispatch_service, scheduled_service, make_marksheet, transport, marksheet_service
    ):
        marksheet = make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(minutes=5))
        transport.failing.add("9876543210")
        scheduled_service.process_scheduled_dispatches()
        transport.failing.clear()

        assert dispatch_service.send_marksheet(marksheet.id).success
        assert marksheet_service.get_marksheet(marksheet.id, fresh=True).status == MarksheetStatus.DISPATCHED
