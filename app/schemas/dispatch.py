"""Dispatch and scheduled dispatch schemas."""

from datetime import datetime

from pydantic import Field

from app.models.marksheet import MarksheetStatus, WhatsAppStatus
from app.schemas.common import BaseSchema


class TransportResult(BaseSchema):
    """Outcome of one transport send. Failures carry a structured code."""

    success: bool
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class DispatchResult(BaseSchema):
    """Outcome of dispatching a single marksheet."""

    marksheet_id: int
    success: bool
    message_sid: str | None = None
    error: str | None = None


class BulkDispatchRequest(BaseSchema):
    """Bulk dispatch request."""

    marksheet_ids: list[int] = Field(..., min_length=1)


class BulkDispatchResult(BaseSchema):
    """Bulk dispatch result. ``successful + failed == total`` always holds."""

    total: int
    successful: int = 0
    failed: int = 0
    errors: list[str] = []
    results: list[DispatchResult] = []


class DispatchStatusItem(BaseSchema):
    """Dispatch status of one marksheet."""

    id: int
    code: str
    student_name: str
    reg_number: str
    status: MarksheetStatus
    dispatched: bool
    dispatched_at: datetime | None
    whatsapp_status: WhatsAppStatus
    whatsapp_error: str | None


class TransportHealth(BaseSchema):
    """WhatsApp transport configuration state."""

    configured: bool
    error: str | None
    account_sid: str
    whatsapp_number: str


class PassSummary(BaseSchema):
    """Counts from one scheduler pass."""

    procedure: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class JobInfo(BaseSchema):
    id: str
    name: str
    interval_minutes: int
    next_run_time: datetime | None


class SchedulerStatus(BaseSchema):
    """Scheduled dispatch service status."""

    running: bool
    jobs: list[JobInfo]


class RunAllResponse(BaseSchema):
    upcoming: PassSummary
    due: PassSummary
