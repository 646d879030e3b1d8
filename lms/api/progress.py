"""Lesson completion and cached course progress.

  POST /v1/lessons/{lesson_id}/complete
    → upsert lesson_progress(completed)
    → recalculate enrollment progress      (one transaction, committed)
    → first time at 100%? dispatch certificate generation
    → invalidate the progress cache entry  (best effort)
    → 200 {lesson_progress, enrollment, certificate}

  POST /v1/lessons/{lesson_id}/reset     mark incomplete, recalculate
  GET  /v1/lessons/{lesson_id}/progress  the learner's mark, or null

  GET  /v1/courses/{course_id}/progress
    → read-through cache (check cache → miss → query repos → populate)
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from lms.api.courses import EnrollmentOut
from lms.api.dependencies import require_role, require_user
from lms.models.enrollment import LessonProgress
from lms.models.principal import Principal
from lms.repos.registry import Repositories, get_repositories, repositories_scope
from lms.services import lesson_progress_service
from lms.services.cache import cache_service, invalidate_progress, progress_cache_key
from lms.services.certificate_dispatch import dispatch_certificate

router = APIRouter(tags=["progress"])

# 5 minutes: absorbs repeated dashboard refreshes; explicit invalidation
# on complete/reset keeps it fresh in the normal case.
_PROGRESS_CACHE_TTL = 300


class LessonProgressOut(BaseModel):
    id: str
    enrollment_id: str
    lesson_id: str
    completed: bool
    watched_at: datetime | None

    @classmethod
    def from_model(cls, lp: LessonProgress) -> LessonProgressOut:
        return cls(
            id=str(lp.id),
            enrollment_id=str(lp.enrollment_id),
            lesson_id=str(lp.lesson_id),
            completed=lp.completed,
            watched_at=lp.watched_at,
        )


class LessonCompletionOut(BaseModel):
    lesson_progress: LessonProgressOut
    enrollment: EnrollmentOut
    course_completed: bool
    certificate: str | None  # "queued" | "issued" | None


class LessonResetOut(BaseModel):
    lesson_progress: LessonProgressOut
    enrollment: EnrollmentOut


class LessonStatusOut(BaseModel):
    lesson_id: str
    title: str
    position: int
    duration: int
    completed: bool
    watched_at: datetime | None


class CourseProgressOut(BaseModel):
    enrollment_id: str
    course_id: str
    progress: int
    enrolled_at: datetime
    completed_at: datetime | None
    total_lessons: int
    completed_lessons: int
    lessons: list[LessonStatusOut]


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------


@router.post("/v1/lessons/{lesson_id}/complete", response_model=LessonCompletionOut)
async def complete_lesson(
    lesson_id: UUID,
    principal: Annotated[Principal, Depends(require_role("learner"))],
) -> LessonCompletionOut:
    # Own scope instead of get_repositories: the completion must be
    # committed before the certificate is dispatched.
    async with repositories_scope() as repos:
        completion = await lesson_progress_service.mark_lesson_complete(
            repos, principal.user_id, lesson_id
        )

    # Dispatch before touching the cache: a repeat completion never
    # dispatches, so this is the only chance.
    if completion.course_completed:
        completion = dataclasses.replace(
            completion,
            certificate_dispatch=await dispatch_certificate(completion.enrollment.id),
        )

    await invalidate_progress(principal.user_id, completion.enrollment.course_id)

    return LessonCompletionOut(
        lesson_progress=LessonProgressOut.from_model(completion.lesson_progress),
        enrollment=EnrollmentOut.from_model(completion.enrollment),
        course_completed=completion.course_completed,
        certificate=completion.certificate_dispatch,
    )


@router.post("/v1/lessons/{lesson_id}/reset", response_model=LessonResetOut)
async def reset_lesson(
    lesson_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> LessonResetOut:
    # Invalidate only after commit, or a concurrent read could re-cache
    # the pre-reset rows.
    async with repositories_scope() as repos:
        record, enrollment = await lesson_progress_service.reset_lesson_progress(
            repos, principal.user_id, lesson_id
        )
    await invalidate_progress(principal.user_id, enrollment.course_id)
    return LessonResetOut(
        lesson_progress=LessonProgressOut.from_model(record),
        enrollment=EnrollmentOut.from_model(enrollment),
    )


@router.get("/v1/lessons/{lesson_id}/progress", response_model=LessonProgressOut | None)
async def get_lesson_progress(
    lesson_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> LessonProgressOut | None:
    record = await lesson_progress_service.get_lesson_progress(
        repos, principal.user_id, lesson_id
    )
    return LessonProgressOut.from_model(record) if record else None


# ---------------------------------------------------------------------------
# GET /v1/courses/{course_id}/progress  (read-through cached)
# ---------------------------------------------------------------------------


@router.get("/v1/courses/{course_id}/progress", response_model=CourseProgressOut)
async def get_course_progress(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> CourseProgressOut:
    cache_key = progress_cache_key(principal.user_id, course_id)

    cached = await cache_service.get(cache_key)
    if cached is not None:
        return CourseProgressOut.model_validate_json(cached)

    progress = await lesson_progress_service.get_course_progress(
        repos, principal.user_id, course_id
    )
    enrollment = progress.enrollment
    out = CourseProgressOut(
        enrollment_id=str(enrollment.id),
        course_id=str(enrollment.course_id),
        progress=enrollment.progress,
        enrolled_at=enrollment.enrolled_at,
        completed_at=enrollment.completed_at,
        total_lessons=progress.total_lessons,
        completed_lessons=progress.completed_lessons,
        lessons=[
            LessonStatusOut(
                lesson_id=str(s.lesson.id),
                title=s.lesson.title,
                position=s.lesson.position,
                duration=s.lesson.duration,
                completed=s.completed,
                watched_at=s.watched_at,
            )
            for s in progress.lessons
        ],
    )

    await cache_service.set(cache_key, out.model_dump_json(), _PROGRESS_CACHE_TTL)
    return out
