"""Enrollment and progress recalculation.

An enrollment's progress is never written by callers directly.  It is
always derived from lesson completion counts by recalculate_progress(),
which is also the only place that detects the first transition to 100%:

  lock enrollment row → count completed lessons → compute percentage
  → if 100 and completed_at is NULL: stamp completed_at
  → persist, all inside the caller's transaction

completed_at is write-once.  Later recalculations (after a lesson reset,
say) may lower progress but never clear or move completed_at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from lms.core.errors import ConflictError, InvalidStateError, NotFoundError
from lms.core.metrics import COURSE_COMPLETIONS
from lms.models.enrollment import Enrollment, EnrollmentSummary
from lms.repos.registry import Repositories

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Recalculation:
    enrollment: Enrollment
    total_lessons: int
    completed_lessons: int
    first_completion: bool


@dataclass(frozen=True, slots=True)
class EnrollmentStatus:
    enrolled: bool
    enrollment: Enrollment | None = None
    completed_lessons: int = 0


def compute_progress(completed: int, total: int) -> int:
    """Integer percentage, rounded half up.  0 for a course with no lessons."""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


async def enroll(repos: Repositories, learner_id: UUID, course_id: UUID) -> Enrollment:
    course = await repos.courses.get(course_id)
    if course is None:
        raise NotFoundError("Course not found", error_code="COURSE_NOT_FOUND")
    if not course.is_published:
        raise InvalidStateError(
            "Cannot enroll in a non-published course",
            error_code="COURSE_NOT_PUBLISHED",
        )

    if await repos.enrollments.get_by_learner_course(learner_id, course_id):
        raise ConflictError(
            "Already enrolled in this course", error_code="ALREADY_ENROLLED"
        )

    enrollment = Enrollment.new(
        learner_id=learner_id, course_id=course_id, enrolled_at=datetime.now(UTC)
    )
    # A concurrent enrollment that slipped past the check above fails here
    # with the same ConflictError.
    await repos.enrollments.add(enrollment)
    logger.info(
        "Enrollment created",
        extra={"enrollment_id": str(enrollment.id), "course_id": str(course_id)},
    )
    return enrollment


async def recalculate_progress(
    repos: Repositories, enrollment_id: UUID, *, now: datetime | None = None
) -> Recalculation:
    enrollment = await repos.enrollments.get_for_update(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found", error_code="ENROLLMENT_NOT_FOUND")

    total = await repos.courses.count_lessons(enrollment.course_id)
    completed = await repos.lesson_progress.count_completed(enrollment_id)
    progress = compute_progress(completed, total)

    now = now or datetime.now(UTC)
    first_completion = progress == 100 and enrollment.completed_at is None

    updated = await repos.enrollments.save_progress(
        enrollment_id,
        progress=progress,
        completed_at=now if first_completion else None,
        accessed_at=now,
    )

    logger.debug(
        "Progress recalculated %d/%d -> %d%%",
        completed,
        total,
        progress,
        extra={"enrollment_id": str(enrollment_id)},
    )
    if first_completion:
        COURSE_COMPLETIONS.inc()
        logger.info(
            "Course completed",
            extra={
                "enrollment_id": str(enrollment_id),
                "course_id": str(enrollment.course_id),
            },
        )

    return Recalculation(
        enrollment=updated,
        total_lessons=total,
        completed_lessons=completed,
        first_completion=first_completion,
    )


async def list_enrollments(
    repos: Repositories, learner_id: UUID
) -> list[EnrollmentSummary]:
    """The learner's enrollments, newest first, with lesson counts."""
    summaries: list[EnrollmentSummary] = []
    for enrollment in await repos.enrollments.list_by_learner(learner_id):
        course = await repos.courses.get(enrollment.course_id)
        if course is None:
            continue
        certificate = await repos.certificates.get_by_enrollment(enrollment.id)
        summaries.append(
            EnrollmentSummary(
                enrollment=enrollment,
                course=course,
                total_lessons=await repos.courses.count_lessons(course.id),
                completed_lessons=await repos.lesson_progress.count_completed(
                    enrollment.id
                ),
                certificate_issued=certificate is not None,
            )
        )
    return summaries


async def get_enrollment_status(
    repos: Repositories, learner_id: UUID, course_id: UUID
) -> EnrollmentStatus:
    enrollment = await repos.enrollments.get_by_learner_course(learner_id, course_id)
    if enrollment is None:
        return EnrollmentStatus(enrolled=False)
    return EnrollmentStatus(
        enrolled=True,
        enrollment=enrollment,
        completed_lessons=await repos.lesson_progress.count_completed(enrollment.id),
    )
