"""Course enrollment endpoints.

  POST /v1/courses/{course_id}/enroll       → 201 Enrolled
  GET  /v1/courses/{course_id}/enrollment   → {enrolled, enrollment}

Enrollment is guarded twice: the course must be published, and a learner
holds at most one enrollment per course (409 on a repeat).
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from lms.api.dependencies import require_role, require_user
from lms.models.enrollment import Enrollment
from lms.models.principal import Principal
from lms.repos.registry import Repositories, get_repositories
from lms.services import enrollment_service

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class EnrollmentOut(BaseModel):
    id: str
    learner_id: str
    course_id: str
    progress: int
    enrolled_at: datetime
    completed_at: datetime | None
    last_accessed_at: datetime | None
    is_completed: bool

    @classmethod
    def from_model(cls, e: Enrollment) -> EnrollmentOut:
        return cls(
            id=str(e.id),
            learner_id=str(e.learner_id),
            course_id=str(e.course_id),
            progress=e.progress,
            enrolled_at=e.enrolled_at,
            completed_at=e.completed_at,
            last_accessed_at=e.last_accessed_at,
            is_completed=e.is_completed,
        )


class EnrollmentStatusOut(BaseModel):
    enrolled: bool
    enrollment: EnrollmentOut | None
    completed_lessons: int


@router.post(
    "/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_role("learner"))],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> EnrollmentOut:
    enrollment = await enrollment_service.enroll(repos, principal.user_id, course_id)
    return EnrollmentOut.from_model(enrollment)


@router.get("/{course_id}/enrollment", response_model=EnrollmentStatusOut)
async def get_enrollment_status(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> EnrollmentStatusOut:
    result = await enrollment_service.get_enrollment_status(
        repos, principal.user_id, course_id
    )
    return EnrollmentStatusOut(
        enrolled=result.enrolled,
        enrollment=(
            EnrollmentOut.from_model(result.enrollment) if result.enrollment else None
        ),
        completed_lessons=result.completed_lessons,
    )
