"""Examination service."""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models.examination import Examination, ExaminationStatus
from app.models.marksheet import Marksheet
from app.models.user import User, UserRole
from app.schemas.examination import (
    ExaminationCreate,
    ExaminationFilter,
    ExaminationResponse,
    ExaminationStatusUpdate,
)

logger = logging.getLogger(__name__)


class ExaminationService:
    """Examinations staff members enter marksheets against."""

    def __init__(self, db: Session):
        self.db = db

    def _to_response(self, examination: Examination, marksheet_count: int = 0) -> ExaminationResponse:
        response = ExaminationResponse.model_validate(examination)
        response.marksheet_count = marksheet_count
        return response

    def _marksheet_counts(self, examination_ids: list[int]) -> dict[int, int]:
        if not examination_ids:
            return {}
        rows = self.db.execute(
            select(Marksheet.examination_id, func.count())
            .where(Marksheet.examination_id.in_(examination_ids))
            .group_by(Marksheet.examination_id)
        ).all()
        return {examination_id: count for examination_id, count in rows}

    def get_examination(self, examination_id: int) -> Examination:
        examination = self.db.execute(
            select(Examination).where(Examination.id == examination_id)
        ).scalar_one_or_none()
        if not examination:
            raise NotFoundError("Examination", str(examination_id))
        return examination

    def create_examination(self, staff: User, request: ExaminationCreate) -> ExaminationResponse:
        """Create an examination in the staff member's department."""
        examination = Examination(
            name=request.name,
            year=request.year,
            semester=request.semester,
            academic_year=request.academic_year,
            examination_month=request.examination_month,
            examination_year=request.examination_year,
            department=staff.department,
            staff_id=staff.id,
            staff_name=staff.name,
            status=ExaminationStatus.ACTIVE,
        )
        self.db.add(examination)
        self.db.flush()
        self.db.refresh(examination)

        logger.info(f"Examination {examination.id} '{examination.name}' created by staff {staff.id}")
        return self._to_response(examination)

    def list_examinations(self, filters: ExaminationFilter | None = None) -> list[ExaminationResponse]:
        """List examinations, newest first."""
        query = select(Examination)
        if filters:
            if filters.staff_id:
                query = query.where(Examination.staff_id == filters.staff_id)
            if filters.department:
                query = query.where(Examination.department == filters.department)
            if filters.year:
                query = query.where(Examination.year == filters.year)
            if filters.academic_year:
                query = query.where(Examination.academic_year == filters.academic_year)
            if filters.status:
                query = query.where(Examination.status == filters.status)

        examinations = self.db.execute(
            query.order_by(Examination.created_at.desc(), Examination.id.desc())
        ).scalars().all()
        counts = self._marksheet_counts([e.id for e in examinations])
        return [self._to_response(e, counts.get(e.id, 0)) for e in examinations]

    def update_status(
        self,
        examination_id: int,
        user: User,
        request: ExaminationStatusUpdate,
    ) -> ExaminationResponse:
        """Mark an examination completed or cancelled (owner or HOD)."""
        examination = self.get_examination(examination_id)
        if user.role == UserRole.HOD:
            if examination.department != user.department:
                raise PermissionDeniedError("Examination belongs to another department")
        elif examination.staff_id != user.id:
            raise PermissionDeniedError("Examination belongs to another staff member")

        if examination.status == ExaminationStatus.CANCELLED and request.status != ExaminationStatus.CANCELLED:
            raise ValidationError("A cancelled examination cannot be reopened")

        examination.status = request.status
        self.db.flush()
        self.db.refresh(examination)
        counts = self._marksheet_counts([examination.id])
        return self._to_response(examination, counts.get(examination.id, 0))

    def scoped_filters(self, user: User, filters: ExaminationFilter) -> ExaminationFilter:
        """Everyone sees their own department's examinations."""
        return filters.model_copy(update={"department": user.department})
