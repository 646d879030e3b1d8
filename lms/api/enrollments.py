"""GET /v1/enrollments: the caller's enrollments, newest first."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from lms.api.courses import EnrollmentOut
from lms.api.dependencies import require_user
from lms.models.principal import Principal
from lms.repos.registry import Repositories, get_repositories
from lms.services import enrollment_service

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


class CourseBriefOut(BaseModel):
    id: str
    title: str
    level: str
    category: str
    duration: int


class EnrollmentSummaryOut(BaseModel):
    enrollment: EnrollmentOut
    course: CourseBriefOut
    total_lessons: int
    completed_lessons: int
    certificate_issued: bool


@router.get("", response_model=list[EnrollmentSummaryOut])
async def list_my_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> list[EnrollmentSummaryOut]:
    summaries = await enrollment_service.list_enrollments(repos, principal.user_id)
    return [
        EnrollmentSummaryOut(
            enrollment=EnrollmentOut.from_model(s.enrollment),
            course=CourseBriefOut(
                id=str(s.course.id),
                title=s.course.title,
                level=s.course.level,
                category=s.course.category,
                duration=s.course.duration,
            ),
            total_lessons=s.total_lessons,
            completed_lessons=s.completed_lessons,
            certificate_issued=s.certificate_issued,
        )
        for s in summaries
    ]
