"""Scheduled dispatch control endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser, HodUser
from app.schemas.dispatch import PassSummary, RunAllResponse, SchedulerStatus
from app.services.dispatch import DispatchService
from app.services.notification import NotificationService, PushSender, get_push_sender
from app.services.scheduled_dispatch import ScheduledDispatchService
from app.services.transport import WhatsAppTransport, get_transport

router = APIRouter()


def get_scheduled_dispatch_service(
    db: Annotated[Session, Depends(get_db)],
    transport: Annotated[WhatsAppTransport, Depends(get_transport)],
    push_sender: Annotated[PushSender, Depends(get_push_sender)],
) -> ScheduledDispatchService:
    notifications = NotificationService(db, push_sender)
    return ScheduledDispatchService(
        db,
        dispatcher=DispatchService(db, transport=transport, notifications=notifications),
        notifications=notifications,
    )


Service = Annotated[ScheduledDispatchService, Depends(get_scheduled_dispatch_service)]


@router.get("/status", response_model=SchedulerStatus)
def get_scheduler_status(request: Request, current_user: CurrentUser):
    """Whether the scheduler is running and when each job runs next."""
    dispatch_scheduler = getattr(request.app.state, "dispatch_scheduler", None)
    if dispatch_scheduler is None:
        return SchedulerStatus(running=False, jobs=[])
    return dispatch_scheduler.status()


@router.post("/check-upcoming", response_model=PassSummary)
def check_upcoming(hod: HodUser, service: Service):
    """Run the pre-dispatch notification pass now."""
    return service.check_upcoming_dispatches()


@router.post("/process-due", response_model=PassSummary)
def process_due(hod: HodUser, service: Service):
    """Run the due-dispatch pass now."""
    return service.process_scheduled_dispatches()


@router.post("/run-all", response_model=RunAllResponse)
def run_all(hod: HodUser, service: Service):
    """Run both passes, upcoming notices first."""
    return RunAllResponse(
        upcoming=service.check_upcoming_dispatches(),
        due=service.process_scheduled_dispatches(),
    )
