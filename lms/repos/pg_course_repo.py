"""PostgreSQL implementation of CourseRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.db.tables import CourseRow, LessonRow
from lms.models.course import Course, Lesson


class PgCourseRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        if row is None:
            return None
        return _row_to_course(row)

    async def add(self, course: Course) -> None:
        self._session.add(
            CourseRow(
                id=course.id,
                title=course.title,
                description=course.description,
                level=course.level,
                category=course.category,
                duration=course.duration,
                status=course.status,
                creator_id=course.creator_id,
            )
        )
        await self._session.flush()

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        if row is None:
            return None
        return _row_to_lesson(row)

    async def add_lesson(self, lesson: Lesson) -> None:
        self._session.add(
            LessonRow(
                id=lesson.id,
                course_id=lesson.course_id,
                title=lesson.title,
                position=lesson.position,
                duration=lesson.duration,
            )
        )
        await self._session.flush()

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.course_id == course_id)
            .order_by(LessonRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def count_lessons(self, course_id: UUID) -> int:
        stmt = select(func.count()).select_from(LessonRow).where(
            LessonRow.course_id == course_id
        )
        return (await self._session.execute(stmt)).scalar_one()


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        title=row.title,
        description=row.description or "",
        level=row.level,
        category=row.category or "",
        duration=row.duration,
        status=row.status,
        creator_id=row.creator_id,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        position=row.position,
        duration=row.duration,
    )
