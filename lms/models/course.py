from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

COURSE_STATUSES = ("draft", "pending", "published", "rejected")
COURSE_LEVELS = ("beginner", "intermediate", "advanced")


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    description: str = ""
    level: str = "beginner"  # beginner|intermediate|advanced
    category: str = ""
    duration: int = 0  # minutes
    status: str = "draft"  # draft|pending|published|rejected
    creator_id: UUID | None = None

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @staticmethod
    def new(
        *,
        title: str,
        description: str = "",
        level: str = "beginner",
        category: str = "",
        duration: int = 0,
        status: str = "draft",
        creator_id: UUID | None = None,
    ) -> Course:
        if status not in COURSE_STATUSES:
            raise ValueError(f"unknown course status {status!r}")
        if level not in COURSE_LEVELS:
            raise ValueError(f"unknown course level {level!r}")
        return Course(
            id=uuid4(),
            title=title,
            description=description,
            level=level,
            category=category,
            duration=duration,
            status=status,
            creator_id=creator_id,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    title: str
    position: int
    duration: int = 0  # minutes

    @staticmethod
    def new(*, course_id: UUID, title: str, position: int, duration: int = 0) -> Lesson:
        return Lesson(
            id=uuid4(),
            course_id=course_id,
            title=title,
            position=position,
            duration=duration,
        )
