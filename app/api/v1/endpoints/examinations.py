"""Examination endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser, StaffUser
from app.models.examination import ExaminationStatus
from app.schemas.examination import (
    ExaminationCreate,
    ExaminationFilter,
    ExaminationResponse,
    ExaminationStatusUpdate,
)
from app.services.examination import ExaminationService

router = APIRouter()


@router.post("", response_model=ExaminationResponse, status_code=201)
def create_examination(
    request: ExaminationCreate,
    staff: StaffUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create an examination in the staff member's department.
    Marksheets can then reference it by id.
    """
    service = ExaminationService(db)
    return service.create_examination(staff, request)


@router.get("", response_model=list[ExaminationResponse])
def list_examinations(
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
    staff_id: int | None = None,
    year: str | None = None,
    academic_year: str | None = None,
    status: ExaminationStatus | None = Query(None, description="active, completed or cancelled"),
):
    """
    List the department's examinations, optionally for one staff member or year.
    """
    service = ExaminationService(db)
    filters = service.scoped_filters(
        current_user,
        ExaminationFilter(staff_id=staff_id, year=year, academic_year=academic_year, status=status),
    )
    return service.list_examinations(filters)


@router.patch("/{examination_id}/status", response_model=ExaminationResponse)
def update_examination_status(
    examination_id: int,
    request: ExaminationStatusUpdate,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """Mark an examination completed or cancelled."""
    service = ExaminationService(db)
    return service.update_status(examination_id, current_user, request)
