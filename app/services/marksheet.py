"""Marksheet service: staff entry and the HOD approval lifecycle."""

import logging
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime, timezone
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.examination import Examination
from app.models.marksheet import DispatchRequestStatus, HodResponse, Marksheet, MarksheetStatus
from app.models.student import Student
from app.models.user import User, UserRole
from app.schemas.marksheet import (
    DispatchRequestInfo,
    DispatchStatusInfo,
    HodResponseRequest,
    MarksheetCreate,
    MarksheetFilter,
    MarksheetResponse,
    MarksheetUpdate,
    StudentDetails,
    SubjectEntry,
    VerifyRequest,
)
from app.services.lifecycle import HOD_RESPONSE_EVENTS, TRANSITIONS, LifecycleEvent
from app.services.notification import (
    NotificationService,
    notify_class_verified,
    notify_dispatch_requested,
    notify_hod_response,
)
from app.services.results import derive_overall_result, normalize_subjects

logger = logging.getLogger(__name__)


def generate_marksheet_code() -> str:
    """Business identifier such as ``MS1760870000123K4QZ``."""
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"MS{int(time.time() * 1000)}{suffix}"


def check_marksheet_access(marksheet: Marksheet, user: User) -> None:
    """Staff reach their own marksheets, HODs their department's."""
    if user.role == UserRole.HOD:
        if marksheet.department != user.department:
            raise PermissionDeniedError("Marksheet belongs to another department")
    elif marksheet.staff_id != user.id:
        raise PermissionDeniedError("Marksheet belongs to another staff member")


def _subjects_payload(subjects: list[SubjectEntry]) -> list[dict[str, Any]]:
    return normalize_subjects(
        subject.model_dump(include={"subject_name", "marks", "result"}) for subject in subjects
    )


class MarksheetService:
    """Marksheet management service."""

    def __init__(
        self,
        db: Session,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_marksheet(self, marksheet_id: int, fresh: bool = False) -> Marksheet:
        """Get marksheet by ID."""
        query = select(Marksheet).where(Marksheet.id == marksheet_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        marksheet = self.db.execute(query).scalar_one_or_none()
        if not marksheet:
            raise NotFoundError("Marksheet", str(marksheet_id))
        return marksheet

    def to_response(self, marksheet: Marksheet) -> MarksheetResponse:
        """Convert to response, re-deriving results from the subjects."""
        subjects = normalize_subjects(marksheet.subjects or [])
        return MarksheetResponse(
            id=marksheet.id,
            code=marksheet.code,
            student_id=marksheet.student_id,
            student_details=StudentDetails(
                name=marksheet.student_name,
                reg_number=marksheet.reg_number,
                department=marksheet.department,
                year=marksheet.year,
                section=marksheet.section,
                parent_phone_number=marksheet.parent_phone_number,
            ),
            examination_id=marksheet.examination_id,
            examination_name=marksheet.examination_name,
            examination_date=marksheet.examination_date,
            semester=marksheet.semester,
            subjects=subjects,
            overall_result=derive_overall_result(subjects),
            status=marksheet.status,
            staff_id=marksheet.staff_id,
            staff_name=marksheet.staff_name,
            hod_id=marksheet.hod_id,
            hod_name=marksheet.hod_name,
            has_staff_signature=bool(marksheet.staff_signature),
            has_hod_signature=bool(marksheet.hod_signature),
            verified_at=marksheet.verified_at,
            dispatch_request=DispatchRequestInfo(
                status=marksheet.request_status,
                requested_at=marksheet.requested_at,
                requested_by=marksheet.requested_by,
                hod_response=marksheet.hod_response,
                hod_comments=marksheet.hod_comments,
                scheduled_dispatch_date=marksheet.scheduled_dispatch_date,
                responded_at=marksheet.responded_at,
                pre_dispatch_notification_sent=marksheet.pre_dispatch_notification_sent,
                auto_dispatched=marksheet.auto_dispatched,
                auto_dispatch_failed=marksheet.auto_dispatch_failed,
                dispatch_error=marksheet.dispatch_error,
                dispatched_at=marksheet.request_dispatched_at,
            ),
            dispatch_status=DispatchStatusInfo(
                dispatched=marksheet.is_dispatched,
                dispatched_at=marksheet.dispatched_at,
                whatsapp_status=marksheet.whatsapp_status,
                whatsapp_error=marksheet.whatsapp_error,
            ),
            visited=marksheet.visited,
            version=marksheet.version,
            created_at=marksheet.created_at,
            updated_at=marksheet.updated_at,
        )

    def _filtered_query(self, filters: MarksheetFilter | None):
        query = select(Marksheet)
        if filters:
            if filters.staff_id:
                query = query.where(Marksheet.staff_id == filters.staff_id)
            if filters.department:
                query = query.where(Marksheet.department == filters.department)
            if filters.statuses:
                query = query.where(Marksheet.status.in_(filters.statuses))
            if filters.year:
                query = query.where(Marksheet.year == filters.year)
            if filters.examination_id:
                query = query.where(Marksheet.examination_id == filters.examination_id)
        return query

    def list_marksheets(
        self,
        filters: MarksheetFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[MarksheetResponse], int]:
        """List marksheets with filtering, newest first."""
        query = self._filtered_query(filters)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar() or 0

        query = (
            query
            .order_by(Marksheet.created_at.desc(), Marksheet.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        marksheets = self.db.execute(query).scalars().all()
        return [self.to_response(m) for m in marksheets], total

    # ------------------------------------------------------------------
    # Staff entry
    # ------------------------------------------------------------------

    def create_marksheet(self, staff: User, request: MarksheetCreate) -> MarksheetResponse:
        """Create a draft marksheet, snapshotting the student's details."""
        details = request.student_details
        examination_name, semester = request.examination_name, request.semester
        if request.examination_id is not None:
            examination = self.db.get(Examination, request.examination_id)
            if examination is None:
                raise NotFoundError("Examination", str(request.examination_id))
            if examination.department != staff.department:
                raise PermissionDeniedError("Examination belongs to another department")
            examination_name = examination_name or examination.name
            semester = semester or examination.semester

        student = self._upsert_student(details)
        subjects = _subjects_payload(request.subjects)

        marksheet = Marksheet(
            code=generate_marksheet_code(),
            student_id=student.id,
            student_name=details.name,
            reg_number=details.reg_number,
            department=details.department,
            year=details.year,
            section=details.section,
            parent_phone_number=details.parent_phone_number,
            examination_id=request.examination_id,
            examination_name=examination_name,
            examination_date=request.examination_date,
            semester=semester,
            subjects=subjects,
            overall_result=derive_overall_result(subjects).value,
            staff_id=staff.id,
            staff_name=staff.name,
            staff_signature=staff.e_signature,
            status=MarksheetStatus.DRAFT,
        )
        self.db.add(marksheet)
        self.db.flush()
        self.db.refresh(marksheet)

        logger.info(f"Marksheet {marksheet.code} created for {details.reg_number} by staff {staff.id}")
        return self.to_response(marksheet)

    def _upsert_student(self, details: StudentDetails) -> Student:
        student = self.db.execute(
            select(Student).where(Student.reg_number == details.reg_number)
        ).scalar_one_or_none()
        if student is None:
            student = Student(reg_number=details.reg_number)
            self.db.add(student)
        student.name = details.name
        student.department = details.department
        student.year = details.year
        student.section = details.section
        student.parent_phone_number = details.parent_phone_number
        self.db.flush()
        return student

    def update_marksheet(
        self,
        marksheet_id: int,
        staff: User,
        request: MarksheetUpdate,
    ) -> MarksheetResponse:
        """Edit student details and/or subjects.

        Student details can be corrected in any status. Editing subjects
        reverts the marksheet to draft so it has to be verified again.
        """
        marksheet = self.get_marksheet(marksheet_id)
        self._ensure_owner(marksheet, staff)

        values: dict[str, Any] = {}
        if request.student_details:
            details = {
                field: value
                for field, value in request.student_details.model_dump(exclude_unset=True).items()
                if value is not None or field in ("section", "parent_phone_number")
            }
            if details:
                # Re-point the marksheet when the registration number changes
                student = self._upsert_student(StudentDetails(
                    name=details.get("name", marksheet.student_name),
                    reg_number=details.get("reg_number", marksheet.reg_number),
                    department=details.get("department", marksheet.department),
                    year=details.get("year", marksheet.year),
                    section=details.get("section", marksheet.section),
                    parent_phone_number=details.get("parent_phone_number", marksheet.parent_phone_number),
                ))
                values["student_id"] = student.id
            if "name" in details:
                details["student_name"] = details.pop("name")
            values.update(details)

        if request.subjects is not None:
            subjects = _subjects_payload(request.subjects)
            values["subjects"] = subjects
            values["overall_result"] = derive_overall_result(subjects).value
            marksheet = self._transition(marksheet_id, LifecycleEvent.EDIT_SUBJECTS, values)
            logger.info(f"Marksheet {marksheet_id} subjects edited; reverted to draft")
        elif values:
            marksheet = self._write(marksheet_id, values)

        return self.to_response(marksheet)

    def mark_visited(self, marksheet_id: int) -> MarksheetResponse:
        self.get_marksheet(marksheet_id)
        marksheet = self._write(marksheet_id, {"visited": True, "visited_at": self._clock()})
        return self.to_response(marksheet)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def verify_marksheet(
        self,
        marksheet_id: int,
        staff: User,
        request: VerifyRequest | None = None,
    ) -> MarksheetResponse:
        """draft -> verified_by_staff.

        When this was the staff member's last draft for the (department,
        year), the HOD and the staff member are told the class is verified.
        Two verifications finishing together can both see zero drafts left;
        the duplicate notice is accepted.
        """
        marksheet = self.get_marksheet(marksheet_id)
        self._ensure_owner(marksheet, staff)
        if not marksheet.subjects:
            raise ValidationError("Cannot verify a marksheet without subjects")

        subjects = normalize_subjects(marksheet.subjects)
        signature = (request.staff_signature if request else None) or staff.e_signature
        marksheet = self._transition(
            marksheet_id,
            LifecycleEvent.VERIFY,
            {
                "subjects": subjects,
                "overall_result": derive_overall_result(subjects).value,
                "staff_name": staff.name,
                "staff_signature": signature,
                "verified_at": self._clock(),
            },
        )

        remaining_drafts = self.db.execute(
            select(func.count()).select_from(Marksheet).where(
                Marksheet.staff_id == marksheet.staff_id,
                Marksheet.department == marksheet.department,
                Marksheet.year == marksheet.year,
                Marksheet.status == MarksheetStatus.DRAFT,
            )
        ).scalar() or 0
        if remaining_drafts == 0:
            logger.info(f"All drafts verified for {marksheet.department} year {marksheet.year} by staff {staff.id}")
            notify_class_verified(self.notifications, self._find_hod(marksheet.department), staff, marksheet)

        return self.to_response(marksheet)

    def request_dispatch(
        self,
        marksheet_id: int,
        staff: User,
        expected_version: int | None = None,
    ) -> MarksheetResponse:
        """verified_by_staff -> dispatch_requested, starting a fresh request."""
        marksheet = self.get_marksheet(marksheet_id)
        self._ensure_owner(marksheet, staff)

        marksheet = self._transition(
            marksheet_id,
            LifecycleEvent.REQUEST_DISPATCH,
            {
                "request_status": DispatchRequestStatus.PENDING,
                "requested_at": self._clock(),
                "requested_by": staff.name,
                "hod_response": None,
                "hod_comments": None,
                "scheduled_dispatch_date": None,
                "responded_at": None,
                "pre_dispatch_notification_sent": False,
                "auto_dispatched": False,
                "auto_dispatch_failed": False,
                "dispatch_error": None,
                "request_dispatched_at": None,
            },
            expected_version=expected_version,
        )

        notify_dispatch_requested(self.notifications, self._find_hod(marksheet.department), marksheet)
        return self.to_response(marksheet)

    def respond_to_dispatch(
        self,
        marksheet_id: int,
        hod: User,
        request: HodResponseRequest,
    ) -> MarksheetResponse:
        """dispatch_requested -> approved / rejected / rescheduled by HOD."""
        if request.response == HodResponse.RESCHEDULED and not request.scheduled_dispatch_date:
            raise ValidationError("scheduled_dispatch_date is required to reschedule")

        marksheet = self.get_marksheet(marksheet_id)
        if marksheet.department != hod.department:
            raise PermissionDeniedError("Marksheet belongs to another department")

        scheduled = request.scheduled_dispatch_date if request.response == HodResponse.RESCHEDULED else None
        marksheet = self._transition(
            marksheet_id,
            HOD_RESPONSE_EVENTS[request.response],
            {
                "hod_id": hod.id,
                "hod_name": hod.name,
                "hod_signature": hod.e_signature,
                "request_status": DispatchRequestStatus(request.response.value),
                "hod_response": request.response,
                "hod_comments": request.comments,
                "scheduled_dispatch_date": scheduled,
                "responded_at": self._clock(),
                "pre_dispatch_notification_sent": False,
                "auto_dispatched": False,
                "auto_dispatch_failed": False,
                "dispatch_error": None,
            },
            expected_version=request.expected_version,
        )
        logger.info(f"HOD {hod.id} {request.response.value} dispatch of marksheet {marksheet_id}")

        notify_hod_response(self.notifications, marksheet)
        return self.to_response(marksheet)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_dispatch_report(self, filters: MarksheetFilter | None = None) -> bytes:
        """Excel report of marksheets and their dispatch state."""
        marksheets = self.db.execute(
            self._filtered_query(filters).order_by(Marksheet.department, Marksheet.year, Marksheet.reg_number)
        ).scalars().all()

        wb = Workbook()
        ws = wb.active
        ws.title = "Dispatch Report"

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        thin_border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

        headers = [
            "Code",
            "Register Number",
            "Student Name",
            "Department",
            "Year",
            "Section",
            "Examination",
            "Overall Result",
            "Status",
            "Scheduled Dispatch",
            "Dispatched At",
            "WhatsApp Status",
            "Error",
        ]
        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.border = thin_border
            cell.alignment = Alignment(horizontal='center', vertical='center')

        for row_idx, m in enumerate(marksheets, start=2):
            row = [
                m.code,
                m.reg_number,
                m.student_name,
                m.department,
                m.year,
                m.section or "",
                m.examination_name or "",
                derive_overall_result(m.subjects or []).value,
                m.status.value,
                m.scheduled_dispatch_date.strftime("%Y-%m-%d %H:%M") if m.scheduled_dispatch_date else "",
                m.dispatched_at.strftime("%Y-%m-%d %H:%M") if m.dispatched_at else "",
                m.whatsapp_status.value,
                m.whatsapp_error or m.dispatch_error or "",
            ]
            for col_idx, value in enumerate(row, start=1):
                ws.cell(row=row_idx, column=col_idx, value=value).border = thin_border

        for col_idx in range(1, len(headers) + 1):
            ws.column_dimensions[get_column_letter(col_idx)].width = 18

        output = BytesIO()
        wb.save(output)
        return output.getvalue()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def check_access(self, marksheet: Marksheet, user: User) -> None:
        check_marksheet_access(marksheet, user)

    def scoped_filters(self, user: User, filters: MarksheetFilter) -> MarksheetFilter:
        if user.role == UserRole.HOD:
            return filters.model_copy(update={"department": user.department})
        return filters.model_copy(update={"staff_id": user.id})

    def _ensure_owner(self, marksheet: Marksheet, staff: User) -> None:
        if marksheet.staff_id != staff.id:
            raise PermissionDeniedError("Marksheet belongs to another staff member")

    def _find_hod(self, department: str) -> User | None:
        return self.db.execute(
            select(User).where(
                User.role == UserRole.HOD,
                User.department == department,
                User.is_active.is_(True),
            ).limit(1)
        ).scalar_one_or_none()

    def _write(self, marksheet_id: int, values: dict[str, Any]) -> Marksheet:
        """Targeted field update that leaves the status alone."""
        self.db.execute(
            update(Marksheet)
            .where(Marksheet.id == marksheet_id)
            .values(version=Marksheet.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return self.get_marksheet(marksheet_id, fresh=True)

    def _transition(
        self,
        marksheet_id: int,
        event: LifecycleEvent,
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> Marksheet:
        """Compare-and-set the status from the event's sources to its target."""
        sources, target = TRANSITIONS[event]
        stmt = update(Marksheet).where(
            Marksheet.id == marksheet_id,
            Marksheet.status.in_(list(sources)),
        )
        if expected_version is not None:
            stmt = stmt.where(Marksheet.version == expected_version)

        result = self.db.execute(
            stmt
            .values(status=target, version=Marksheet.version + 1, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = self.get_marksheet(marksheet_id, fresh=True)
            if current.status not in sources:
                raise InvalidTransitionError(current.status.value, event.value)
            raise ConflictError(
                "Marksheet was modified by another request",
                details={"expected_version": expected_version, "current_version": current.version},
            )

        return self.get_marksheet(marksheet_id, fresh=True)
