"""Lesson completion, reset and progress queries.

Marking a lesson complete is an upsert on (enrollment, lesson): doing it
twice converges to the same row, and watched_at keeps the first
completion time.  Every mark or reset is followed by a recalculation of
the enrollment's progress in the same transaction.

These functions only record facts.  Scheduling the certificate after a
first-time completion is done by lms.services.certificate_dispatch once
the transaction has committed.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from lms.core.errors import NotEnrolledError, NotFoundError
from lms.core.metrics import LESSON_COMPLETIONS
from lms.models.course import Lesson
from lms.models.enrollment import (
    CourseProgress,
    Enrollment,
    LessonCompletion,
    LessonProgress,
    LessonStatus,
)
from lms.repos.registry import Repositories
from lms.services.enrollment_service import recalculate_progress

logger = logging.getLogger(__name__)


async def _lesson_and_enrollment(
    repos: Repositories, learner_id: UUID, lesson_id: UUID
) -> tuple[Lesson, Enrollment]:
    lesson = await repos.courses.get_lesson(lesson_id)
    if lesson is None:
        raise NotFoundError("Lesson not found", error_code="LESSON_NOT_FOUND")
    enrollment = await repos.enrollments.get_by_learner_course(
        learner_id, lesson.course_id
    )
    if enrollment is None:
        raise NotEnrolledError(learner_id, lesson.course_id)
    return lesson, enrollment


async def mark_lesson_complete(
    repos: Repositories, learner_id: UUID, lesson_id: UUID
) -> LessonCompletion:
    _, enrollment = await _lesson_and_enrollment(repos, learner_id, lesson_id)

    previous = await repos.lesson_progress.get(enrollment.id, lesson_id)
    newly_completed = previous is None or not previous.completed
    now = datetime.now(UTC)

    record = await repos.lesson_progress.mark_completed(
        enrollment.id, lesson_id, at=now
    )
    LESSON_COMPLETIONS.labels(result="new" if newly_completed else "repeat").inc()
    logger.info(
        "Lesson completed (%s)",
        "new" if newly_completed else "repeat",
        extra={"enrollment_id": str(enrollment.id), "lesson_id": str(lesson_id)},
    )

    recalculation = await recalculate_progress(repos, enrollment.id, now=now)
    return LessonCompletion(
        lesson_progress=record,
        enrollment=recalculation.enrollment,
        newly_completed=newly_completed,
        course_completed=recalculation.first_completion,
    )


async def reset_lesson_progress(
    repos: Repositories, learner_id: UUID, lesson_id: UUID
) -> tuple[LessonProgress, Enrollment]:
    """Mark a lesson incomplete again and recalculate.

    Progress can go down.  completed_at and an issued certificate stay.
    """
    _, enrollment = await _lesson_and_enrollment(repos, learner_id, lesson_id)
    record = await repos.lesson_progress.mark_incomplete(enrollment.id, lesson_id)
    logger.info(
        "Lesson progress reset",
        extra={"enrollment_id": str(enrollment.id), "lesson_id": str(lesson_id)},
    )
    recalculation = await recalculate_progress(repos, enrollment.id)
    return record, recalculation.enrollment


async def get_lesson_progress(
    repos: Repositories, learner_id: UUID, lesson_id: UUID
) -> LessonProgress | None:
    """None when the lesson is unknown, the learner is not enrolled, or
    the lesson was never touched."""
    lesson = await repos.courses.get_lesson(lesson_id)
    if lesson is None:
        return None
    enrollment = await repos.enrollments.get_by_learner_course(
        learner_id, lesson.course_id
    )
    if enrollment is None:
        return None
    return await repos.lesson_progress.get(enrollment.id, lesson_id)


async def get_course_progress(
    repos: Repositories, learner_id: UUID, course_id: UUID
) -> CourseProgress:
    enrollment = await repos.enrollments.get_by_learner_course(learner_id, course_id)
    if enrollment is None:
        raise NotEnrolledError(learner_id, course_id)

    lessons = await repos.courses.list_lessons(course_id)
    marks = {
        lp.lesson_id: lp
        for lp in await repos.lesson_progress.list_by_enrollment(enrollment.id)
    }
    statuses = []
    for lesson in lessons:
        mark = marks.get(lesson.id)
        statuses.append(
            LessonStatus(
                lesson=lesson,
                completed=bool(mark and mark.completed),
                watched_at=mark.watched_at if mark else None,
            )
        )
    return CourseProgress(
        enrollment=enrollment,
        total_lessons=len(lessons),
        completed_lessons=sum(1 for s in statuses if s.completed),
        lessons=statuses,
    )
