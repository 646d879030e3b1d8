"""Course/lesson catalog repository.

The catalog is owned by the authoring side of the platform; the
enrollment pipeline only reads publication status, the lesson → course
mapping and lesson counts.  add()/add_lesson() exist for seeding.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from lms.models.course import Course, Lesson


class CourseRepo(Protocol):
    async def get(self, course_id: UUID) -> Course | None: ...
    async def add(self, course: Course) -> None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def add_lesson(self, lesson: Lesson) -> None: ...
    async def list_lessons(self, course_id: UUID) -> list[Lesson]: ...
    async def count_lessons(self, course_id: UUID) -> int: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._lessons: dict[UUID, Lesson] = {}

    async def get(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def add(self, course: Course) -> None:
        if course.id in self._courses:
            raise ValueError("course already exists")
        self._courses[course.id] = course

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def add_lesson(self, lesson: Lesson) -> None:
        if lesson.course_id not in self._courses:
            raise KeyError("course not found")
        self._lessons[lesson.id] = lesson

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        lessons = [ls for ls in self._lessons.values() if ls.course_id == course_id]
        return sorted(lessons, key=lambda ls: ls.position)

    async def count_lessons(self, course_id: UUID) -> int:
        return sum(1 for ls in self._lessons.values() if ls.course_id == course_id)

    def clear(self) -> None:
        self._courses.clear()
        self._lessons.clear()
