from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID, uuid4

from lms.models.enrollment import LessonProgress


class LessonProgressRepo(Protocol):
    async def get(self, enrollment_id: UUID, lesson_id: UUID) -> LessonProgress | None: ...
    async def list_by_enrollment(self, enrollment_id: UUID) -> list[LessonProgress]: ...
    async def mark_completed(
        self, enrollment_id: UUID, lesson_id: UUID, *, at: datetime
    ) -> LessonProgress: ...
    async def mark_incomplete(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress: ...
    async def count_completed(self, enrollment_id: UUID) -> int: ...


class InMemoryLessonProgressRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], LessonProgress] = {}

    async def get(self, enrollment_id: UUID, lesson_id: UUID) -> LessonProgress | None:
        return self._store.get((enrollment_id, lesson_id))

    async def list_by_enrollment(self, enrollment_id: UUID) -> list[LessonProgress]:
        return [lp for (eid, _), lp in self._store.items() if eid == enrollment_id]

    async def mark_completed(
        self, enrollment_id: UUID, lesson_id: UUID, *, at: datetime
    ) -> LessonProgress:
        key = (enrollment_id, lesson_id)
        existing = self._store.get(key)
        if existing is None:
            record = LessonProgress(
                id=uuid4(),
                enrollment_id=enrollment_id,
                lesson_id=lesson_id,
                completed=True,
                watched_at=at,
            )
        elif existing.completed:
            return existing
        else:
            record = replace(existing, completed=True, watched_at=at)
        self._store[key] = record
        return record

    async def mark_incomplete(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress:
        key = (enrollment_id, lesson_id)
        existing = self._store.get(key)
        if existing is None:
            record = LessonProgress(
                id=uuid4(), enrollment_id=enrollment_id, lesson_id=lesson_id
            )
        else:
            record = replace(existing, completed=False, watched_at=None)
        self._store[key] = record
        return record

    async def count_completed(self, enrollment_id: UUID) -> int:
        return sum(
            1
            for (eid, _), lp in self._store.items()
            if eid == enrollment_id and lp.completed
        )

    def clear(self) -> None:
        self._store.clear()
