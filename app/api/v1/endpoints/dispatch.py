"""WhatsApp dispatch endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser, HodUser
from app.core.exceptions import DispatchFailedError
from app.schemas.dispatch import (
    BulkDispatchRequest,
    BulkDispatchResult,
    DispatchResult,
    DispatchStatusItem,
    TransportHealth,
)
from app.schemas.marksheet import MarksheetFilter, MarksheetResponse
from app.services.dispatch import DispatchService
from app.services.marksheet import MarksheetService
from app.services.notification import NotificationService, PushSender, get_push_sender
from app.services.transport import WhatsAppTransport, get_transport

router = APIRouter()


def get_dispatch_service(
    db: Annotated[Session, Depends(get_db)],
    transport: Annotated[WhatsAppTransport, Depends(get_transport)],
    push_sender: Annotated[PushSender, Depends(get_push_sender)],
) -> DispatchService:
    return DispatchService(db, transport=transport, notifications=NotificationService(db, push_sender))


Service = Annotated[DispatchService, Depends(get_dispatch_service)]


@router.post("/marksheets/{marksheet_id}/send", response_model=DispatchResult)
def send_marksheet(
    marksheet_id: int,
    current_user: CurrentUser,
    service: Service,
):
    """
    Send one approved, rescheduled or already dispatched marksheet now.
    A failed send is recorded on the marksheet before the error is returned.
    """
    marksheets = MarksheetService(service.db, notifications=service.notifications)
    marksheets.check_access(marksheets.get_marksheet(marksheet_id), current_user)

    result = service.send_marksheet(marksheet_id)
    if not result.success:
        raise DispatchFailedError(
            f"Failed to send marksheet: {result.error}",
            details={"marksheet_id": marksheet_id, "error": result.error},
        )
    return result


@router.post("/bulk", response_model=BulkDispatchResult)
def bulk_dispatch(
    request: BulkDispatchRequest,
    current_user: CurrentUser,
    service: Service,
):
    """
    Send several marksheets one after another.
    Each outcome is recorded independently; the response summarises them.
    Marksheets the caller may not send are reported as failed records.
    """
    return service.send_bulk(request.marksheet_ids, user=current_user)


@router.get("/status", response_model=list[DispatchStatusItem])
def get_dispatch_status(
    current_user: CurrentUser,
    service: Service,
    ids: list[int] = Query(..., description="Marksheet IDs"),
):
    """Dispatch status of the caller's marksheets among the given ids."""
    marksheets = MarksheetService(service.db, notifications=service.notifications)
    return service.get_dispatch_statuses(ids, marksheets.scoped_filters(current_user, MarksheetFilter()))


@router.get("/health", response_model=TransportHealth)
def transport_health(
    current_user: CurrentUser,
    transport: Annotated[WhatsAppTransport, Depends(get_transport)],
):
    """Whether the WhatsApp transport is configured."""
    return transport.health()


@router.post("/marksheets/{marksheet_id}/reset-auto-dispatch", response_model=MarksheetResponse)
def reset_auto_dispatch(
    marksheet_id: int,
    hod: HodUser,
    service: Service,
):
    """
    Clear the automatic dispatch flags so the scheduler retries the marksheet.
    """
    marksheets = MarksheetService(service.db, notifications=service.notifications)
    marksheets.check_access(marksheets.get_marksheet(marksheet_id), hod)

    marksheet = service.reset_auto_dispatch(marksheet_id)
    return marksheets.to_response(marksheet)
