"""PostgreSQL implementation of LessonProgressRepo.

Completion marks are written with INSERT ... ON CONFLICT DO UPDATE on the
(enrollment_id, lesson_id) unique key, so concurrent duplicate "mark
complete" calls converge on one row without raising.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from lms.db.tables import LessonProgressRow
from lms.models.enrollment import LessonProgress

_COLUMNS = (
    LessonProgressRow.id,
    LessonProgressRow.enrollment_id,
    LessonProgressRow.lesson_id,
    LessonProgressRow.completed,
    LessonProgressRow.watched_at,
)


class PgLessonProgressRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID, lesson_id: UUID) -> LessonProgress | None:
        stmt = select(*_COLUMNS).where(
            LessonProgressRow.enrollment_id == enrollment_id,
            LessonProgressRow.lesson_id == lesson_id,
        )
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return _to_progress(row)

    async def list_by_enrollment(self, enrollment_id: UUID) -> list[LessonProgress]:
        stmt = select(*_COLUMNS).where(
            LessonProgressRow.enrollment_id == enrollment_id
        )
        return [_to_progress(r) for r in (await self._session.execute(stmt)).all()]

    async def mark_completed(
        self, enrollment_id: UUID, lesson_id: UUID, *, at: datetime
    ) -> LessonProgress:
        table = LessonProgressRow.__table__
        stmt = insert(LessonProgressRow).values(
            id=uuid4(),
            enrollment_id=enrollment_id,
            lesson_id=lesson_id,
            completed=True,
            watched_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_lesson_progress_enrollment_lesson",
            set_={
                "completed": True,
                # Keep the first completion time on repeat completions.
                "watched_at": case(
                    (table.c.completed.is_(True), table.c.watched_at),
                    else_=stmt.excluded.watched_at,
                ),
            },
        ).returning(*_COLUMNS)
        row = (await self._session.execute(stmt)).one()
        return _to_progress(row)

    async def mark_incomplete(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress:
        stmt = insert(LessonProgressRow).values(
            id=uuid4(),
            enrollment_id=enrollment_id,
            lesson_id=lesson_id,
            completed=False,
            watched_at=None,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_lesson_progress_enrollment_lesson",
            set_={"completed": False, "watched_at": None},
        ).returning(*_COLUMNS)
        row = (await self._session.execute(stmt)).one()
        return _to_progress(row)

    async def count_completed(self, enrollment_id: UUID) -> int:
        stmt = select(func.count()).select_from(LessonProgressRow).where(
            LessonProgressRow.enrollment_id == enrollment_id,
            LessonProgressRow.completed.is_(True),
        )
        return (await self._session.execute(stmt)).scalar_one()


def _to_progress(row) -> LessonProgress:
    return LessonProgress(
        id=row.id,
        enrollment_id=row.enrollment_id,
        lesson_id=row.lesson_id,
        completed=row.completed,
        watched_at=row.watched_at,
    )
