from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from lms.models.course import Course, Lesson


@dataclass(frozen=True, slots=True)
class Enrollment:
    """A learner's participation in one course.

    Unique on (learner_id, course_id).  progress is an integer percentage
    derived from lesson completions; completed_at is set the first time
    progress reaches 100 and is never cleared afterwards.
    """

    id: UUID
    learner_id: UUID
    course_id: UUID
    enrolled_at: datetime
    progress: int = 0
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @staticmethod
    def new(*, learner_id: UUID, course_id: UUID, enrolled_at: datetime) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            learner_id=learner_id,
            course_id=course_id,
            enrolled_at=enrolled_at,
        )


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """Per-lesson completion mark, unique on (enrollment_id, lesson_id).

    watched_at records the first time completed became True and is kept
    on repeated completions.
    """

    id: UUID
    enrollment_id: UUID
    lesson_id: UUID
    completed: bool = False
    watched_at: datetime | None = None


# --- Read models returned by the progress service ---


@dataclass(frozen=True, slots=True)
class LessonCompletion:
    lesson_progress: LessonProgress
    enrollment: Enrollment
    newly_completed: bool  # False when the lesson was already marked complete
    course_completed: bool  # True only on the first transition to 100%
    certificate_dispatch: str | None = None  # "queued" | "issued" | None


@dataclass(frozen=True, slots=True)
class LessonStatus:
    lesson: Lesson
    completed: bool
    watched_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CourseProgress:
    enrollment: Enrollment
    total_lessons: int
    completed_lessons: int
    lessons: list[LessonStatus] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class EnrollmentSummary:
    enrollment: Enrollment
    course: Course
    total_lessons: int
    completed_lessons: int
    certificate_issued: bool
