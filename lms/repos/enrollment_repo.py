from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from lms.core.errors import ConflictError
from lms.models.enrollment import Enrollment


class EnrollmentRepo(Protocol):
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_for_update(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_by_learner_course(
        self, learner_id: UUID, course_id: UUID
    ) -> Enrollment | None: ...
    async def list_by_learner(self, learner_id: UUID) -> list[Enrollment]: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def save_progress(
        self,
        enrollment_id: UUID,
        *,
        progress: int,
        completed_at: datetime | None,
        accessed_at: datetime,
    ) -> Enrollment: ...


class InMemoryEnrollmentRepo:
    """Dict-backed store enforcing the (learner_id, course_id) uniqueness rule.

    Reads and save_progress() never suspend, so a recalculation running on
    the event loop cannot interleave with another one; get_for_update() is
    therefore a plain read here.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Enrollment] = {}

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_for_update(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_by_learner_course(
        self, learner_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        for e in self._by_id.values():
            if e.learner_id == learner_id and e.course_id == course_id:
                return e
        return None

    async def list_by_learner(self, learner_id: UUID) -> list[Enrollment]:
        rows = [e for e in self._by_id.values() if e.learner_id == learner_id]
        return sorted(rows, key=lambda e: e.enrolled_at, reverse=True)

    async def add(self, enrollment: Enrollment) -> None:
        # Yield once, like a database round trip, so concurrent enrollments
        # reach the uniqueness check interleaved.
        await asyncio.sleep(0)
        if await self.get_by_learner_course(enrollment.learner_id, enrollment.course_id):
            raise ConflictError(
                "Already enrolled in this course", error_code="ALREADY_ENROLLED"
            )
        self._by_id[enrollment.id] = enrollment

    async def save_progress(
        self,
        enrollment_id: UUID,
        *,
        progress: int,
        completed_at: datetime | None,
        accessed_at: datetime,
    ) -> Enrollment:
        current = self._by_id.get(enrollment_id)
        if current is None:
            raise KeyError("enrollment not found")
        updated = replace(
            current,
            progress=progress,
            # completed_at is write-once
            completed_at=current.completed_at or completed_at,
            last_accessed_at=accessed_at,
        )
        self._by_id[enrollment_id] = updated
        return updated

    def clear(self) -> None:
        self._by_id.clear()
