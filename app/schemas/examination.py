"""Examination schemas."""

from datetime import datetime

from pydantic import Field

from app.models.examination import ExaminationStatus
from app.schemas.common import BaseSchema


class ExaminationCreate(BaseSchema):
    """Examination creation schema. The department is taken from the staff member."""

    name: str = Field(..., min_length=1, max_length=255)
    year: str = Field(..., min_length=1, max_length=10)
    semester: str = Field(..., min_length=1, max_length=10)
    academic_year: str = Field(..., min_length=4, max_length=20, description="e.g. 2025-26")
    examination_month: int = Field(..., ge=1, le=12)
    examination_year: int = Field(..., ge=2000, le=2100)


class ExaminationStatusUpdate(BaseSchema):
    status: ExaminationStatus


class ExaminationFilter(BaseSchema):
    """Examination filtering options."""

    staff_id: int | None = None
    department: str | None = None
    year: str | None = None
    academic_year: str | None = None
    status: ExaminationStatus | None = None


class ExaminationResponse(BaseSchema):
    """Examination response schema."""

    id: int
    name: str
    year: str
    semester: str
    academic_year: str
    examination_month: int
    examination_year: int
    department: str
    staff_id: int
    staff_name: str
    status: ExaminationStatus
    marksheet_count: int = 0
    created_at: datetime
    updated_at: datetime
