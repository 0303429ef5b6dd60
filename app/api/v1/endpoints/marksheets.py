"""Marksheet endpoints: entry, verification and the HOD approval flow."""

from datetime import date
from io import BytesIO
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser, HodUser, StaffUser
from app.schemas.common import PaginatedResponse
from app.schemas.marksheet import (
    DispatchRequestCreate,
    HodResponseRequest,
    MarksheetCreate,
    MarksheetFilter,
    MarksheetResponse,
    MarksheetUpdate,
    VerifyRequest,
)
from app.services.lifecycle import parse_statuses
from app.services.marksheet import MarksheetService
from app.services.notification import NotificationService, PushSender, get_push_sender

router = APIRouter()


def get_marksheet_service(
    db: Annotated[Session, Depends(get_db)],
    push_sender: Annotated[PushSender, Depends(get_push_sender)],
) -> MarksheetService:
    return MarksheetService(db, notifications=NotificationService(db, push_sender))


Service = Annotated[MarksheetService, Depends(get_marksheet_service)]


@router.post("", response_model=MarksheetResponse, status_code=201)
def create_marksheet(
    request: MarksheetCreate,
    staff: StaffUser,
    service: Service,
):
    """
    Create a draft marksheet.
    Subject results and the overall result are derived from the marks.
    """
    return service.create_marksheet(staff, request)


@router.get("", response_model=PaginatedResponse[MarksheetResponse])
def list_marksheets(
    current_user: CurrentUser,
    service: Service,
    status: str | None = Query(None, description="Comma-separated statuses, e.g. 'draft,verified_by_staff'"),
    year: str | None = None,
    examination_id: int | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """
    List marksheets.
    Staff see their own marksheets; HODs see their department's.
    """
    filters = service.scoped_filters(
        current_user,
        MarksheetFilter(statuses=parse_statuses(status), year=year, examination_id=examination_id),
    )
    marksheets, total = service.list_marksheets(filters, page, page_size)

    return PaginatedResponse(
        items=marksheets,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/export")
def export_dispatch_report(
    current_user: CurrentUser,
    service: Service,
    status: str | None = Query(None, description="Comma-separated statuses"),
    year: str | None = None,
):
    """Download an Excel report of marksheets and their dispatch state."""
    filters = service.scoped_filters(
        current_user,
        MarksheetFilter(statuses=parse_statuses(status), year=year),
    )
    content = service.export_dispatch_report(filters)
    filename = f"dispatch_report_{date.today().isoformat()}.xlsx"

    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/{marksheet_id}", response_model=MarksheetResponse)
def get_marksheet(
    marksheet_id: int,
    current_user: CurrentUser,
    service: Service,
):
    """Get a marksheet by ID."""
    marksheet = service.get_marksheet(marksheet_id)
    service.check_access(marksheet, current_user)
    return service.to_response(marksheet)


@router.put("/{marksheet_id}", response_model=MarksheetResponse)
def update_marksheet(
    marksheet_id: int,
    request: MarksheetUpdate,
    staff: StaffUser,
    service: Service,
):
    """
    Update student details or subjects.
    Changing subjects sends a verified or rejected marksheet back to draft.
    """
    return service.update_marksheet(marksheet_id, staff, request)


@router.post("/{marksheet_id}/verify", response_model=MarksheetResponse)
def verify_marksheet(
    marksheet_id: int,
    staff: StaffUser,
    service: Service,
    request: VerifyRequest | None = None,
):
    """Verify a draft marksheet, stamping the staff signature."""
    return service.verify_marksheet(marksheet_id, staff, request)


@router.post("/{marksheet_id}/visited", response_model=MarksheetResponse)
def mark_visited(
    marksheet_id: int,
    current_user: CurrentUser,
    service: Service,
):
    marksheet = service.get_marksheet(marksheet_id)
    service.check_access(marksheet, current_user)
    return service.mark_visited(marksheet_id)


@router.post("/{marksheet_id}/request-dispatch", response_model=MarksheetResponse)
def request_dispatch(
    marksheet_id: int,
    staff: StaffUser,
    service: Service,
    request: DispatchRequestCreate | None = None,
):
    """
    Ask the HOD to approve dispatch of a verified marksheet.
    Starts a fresh dispatch request.
    """
    expected_version = request.expected_version if request else None
    return service.request_dispatch(marksheet_id, staff, expected_version)


@router.post("/{marksheet_id}/hod-response", response_model=MarksheetResponse)
def respond_to_dispatch_request(
    marksheet_id: int,
    request: HodResponseRequest,
    hod: HodUser,
    service: Service,
):
    """
    Approve, reject or reschedule a dispatch request.
    Rescheduling requires scheduled_dispatch_date.
    """
    return service.respond_to_dispatch(marksheet_id, hod, request)
