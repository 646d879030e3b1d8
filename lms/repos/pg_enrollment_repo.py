"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Row, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.errors import ConflictError
from lms.db.tables import EnrollmentRow
from lms.models.enrollment import Enrollment

_COLUMNS = (
    EnrollmentRow.id,
    EnrollmentRow.learner_id,
    EnrollmentRow.course_id,
    EnrollmentRow.enrolled_at,
    EnrollmentRow.progress,
    EnrollmentRow.completed_at,
    EnrollmentRow.last_accessed_at,
)


class PgEnrollmentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(EnrollmentRow.id == enrollment_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def get_for_update(self, enrollment_id: UUID) -> Enrollment | None:
        # Row lock until the surrounding transaction ends: two completions
        # for the same enrollment recalculate one after the other.
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def get_by_learner_course(
        self, learner_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.learner_id == learner_id,
            EnrollmentRow.course_id == course_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def list_by_learner(self, learner_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.learner_id == learner_id)
            .order_by(EnrollmentRow.enrolled_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def add(self, enrollment: Enrollment) -> None:
        row = EnrollmentRow(
            id=enrollment.id,
            learner_id=enrollment.learner_id,
            course_id=enrollment.course_id,
            progress=enrollment.progress,
            enrolled_at=enrollment.enrolled_at,
            completed_at=enrollment.completed_at,
            last_accessed_at=enrollment.last_accessed_at,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError:
            raise ConflictError(
                "Already enrolled in this course", error_code="ALREADY_ENROLLED"
            ) from None

    async def save_progress(
        self,
        enrollment_id: UUID,
        *,
        progress: int,
        completed_at: datetime | None,
        accessed_at: datetime,
    ) -> Enrollment:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .values(
                progress=progress,
                # completed_at is write-once
                completed_at=func.coalesce(EnrollmentRow.completed_at, completed_at),
                last_accessed_at=accessed_at,
            )
            .returning(*_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            raise KeyError("enrollment not found")
        return _row_to_enrollment(row)


def _row_to_enrollment(row: EnrollmentRow | Row[Any]) -> Enrollment:
    return Enrollment(
        id=row.id,
        learner_id=row.learner_id,
        course_id=row.course_id,
        enrolled_at=row.enrolled_at,
        progress=row.progress,
        completed_at=row.completed_at,
        last_accessed_at=row.last_accessed_at,
    )
