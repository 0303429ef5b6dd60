"""Marksheet schemas."""

from datetime import date, datetime, timezone

from pydantic import Field, field_validator

from app.models.marksheet import (
    DispatchRequestStatus,
    HodResponse,
    MarksheetStatus,
    SubjectResult,
    WhatsAppStatus,
)
from app.schemas.common import BaseSchema
from app.services.results import ABSENT_TOKENS


# ==========================================
# Input Schemas
# ==========================================

class StudentDetails(BaseSchema):
    """Student snapshot captured on the marksheet."""

    name: str = Field(..., min_length=1, max_length=255)
    reg_number: str = Field(..., min_length=1, max_length=50)
    department: str = Field(..., min_length=1, max_length=20)
    year: str = Field(..., min_length=1, max_length=10)
    section: str | None = Field(None, max_length=10)
    parent_phone_number: str | None = Field(None, max_length=50)


class StudentDetailsUpdate(BaseSchema):
    """Partial update of the student snapshot."""

    name: str | None = Field(None, min_length=1, max_length=255)
    reg_number: str | None = Field(None, min_length=1, max_length=50)
    department: str | None = Field(None, min_length=1, max_length=20)
    year: str | None = Field(None, min_length=1, max_length=10)
    section: str | None = Field(None, max_length=10)
    parent_phone_number: str | None = Field(None, max_length=50)


class SubjectEntry(BaseSchema):
    """Marks for one subject. ``marks`` is a number or an absent marker."""

    subject_name: str = Field(..., min_length=1, max_length=255)
    marks: float | str | None = None
    result: str | None = None

    @field_validator("marks")
    @classmethod
    def validate_marks(cls, v: float | str | None) -> float | str | None:
        if isinstance(v, str):
            token = v.strip().upper()
            if token in ABSENT_TOKENS:
                return token
            try:
                v = float(token)
            except ValueError:
                raise ValueError("marks must be a number or an absent marker (AB)")
        if v is not None and v < 0:
            raise ValueError("marks cannot be negative")
        return v


class MarksheetCreate(BaseSchema):
    """Marksheet creation schema (staff entry)."""

    student_details: StudentDetails
    examination_name: str | None = Field(None, max_length=255)
    examination_date: date
    examination_id: int | None = None
    semester: str | None = Field(None, max_length=10)
    subjects: list[SubjectEntry] = Field(..., min_length=1)


class MarksheetUpdate(BaseSchema):
    """Marksheet update schema. Editing subjects reverts it to draft."""

    student_details: StudentDetailsUpdate | None = None
    subjects: list[SubjectEntry] | None = Field(None, min_length=1)


class VerifyRequest(BaseSchema):
    """Staff verification; falls back to the staff's stored signature."""

    staff_signature: str | None = None


class DispatchRequestCreate(BaseSchema):
    """Staff request for HOD approval of dispatch."""

    expected_version: int | None = None


class HodResponseRequest(BaseSchema):
    """HOD response to a dispatch request."""

    response: HodResponse
    comments: str | None = None
    scheduled_dispatch_date: datetime | None = None
    expected_version: int | None = None

    @field_validator("response", mode="before")
    @classmethod
    def lowercase_response(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("scheduled_dispatch_date")
    @classmethod
    def to_utc(cls, v: datetime | None) -> datetime | None:
        """Naive datetimes are taken as UTC."""
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class MarksheetFilter(BaseSchema):
    """Marksheet filtering options."""

    staff_id: int | None = None
    department: str | None = None
    statuses: list[MarksheetStatus] = []
    year: str | None = None
    examination_id: int | None = None


# ==========================================
# Response Schemas
# ==========================================

class SubjectResponse(BaseSchema):
    subject_name: str
    marks: float | str | None = None
    result: SubjectResult


class DispatchRequestInfo(BaseSchema):
    """Dispatch request sub-record."""

    status: DispatchRequestStatus | None
    requested_at: datetime | None
    requested_by: str | None
    hod_response: HodResponse | None
    hod_comments: str | None
    scheduled_dispatch_date: datetime | None
    responded_at: datetime | None
    pre_dispatch_notification_sent: bool
    auto_dispatched: bool
    auto_dispatch_failed: bool
    dispatch_error: str | None
    dispatched_at: datetime | None


class DispatchStatusInfo(BaseSchema):
    """Transport outcome sub-record."""

    dispatched: bool
    dispatched_at: datetime | None
    whatsapp_status: WhatsAppStatus
    whatsapp_error: str | None


class MarksheetResponse(BaseSchema):
    """Marksheet response schema."""

    id: int
    code: str
    student_id: int | None
    student_details: StudentDetails
    examination_id: int | None
    examination_name: str | None
    examination_date: date
    semester: str | None
    subjects: list[SubjectResponse]
    overall_result: SubjectResult
    status: MarksheetStatus
    staff_id: int
    staff_name: str
    hod_id: int | None
    hod_name: str | None
    has_staff_signature: bool
    has_hod_signature: bool
    verified_at: datetime | None
    dispatch_request: DispatchRequestInfo
    dispatch_status: DispatchStatusInfo
    visited: bool
    version: int
    created_at: datetime
    updated_at: datetime

