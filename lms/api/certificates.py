"""Certificate endpoints.

  POST /v1/enrollments/{id}/certificate/generate  owner only
       → 200 with the certificate if it already exists
       → 202 {"status": "queued"} once a generation task is enqueued
  GET  /v1/enrollments/{id}/certificate           owner only, full detail
  GET  /v1/certificates?page=&limit=              the caller's certificates
  GET  /v1/certificates/verify/{serial_hash}      public, no auth

Verification is deliberately binary: a stored certificate is valid, and
anything else is 404.  Nothing about a partially issued or unknown
certificate leaks through the public endpoint.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lms.api.dependencies import require_user
from lms.models.certificate import Certificate
from lms.models.principal import Principal
from lms.repos.registry import Repositories, get_repositories
from lms.services import certificate_service
from lms.services.certificate_dispatch import request_certificate

router = APIRouter(tags=["certificates"])


class CertificateOut(BaseModel):
    id: str
    enrollment_id: str
    learner_id: str
    course_id: str
    serial_hash: str
    issued_at: datetime

    @classmethod
    def from_model(cls, c: Certificate) -> CertificateOut:
        return cls(
            id=str(c.id),
            enrollment_id=str(c.enrollment_id),
            learner_id=str(c.learner_id),
            course_id=str(c.course_id),
            serial_hash=c.serial_hash,
            issued_at=c.issued_at,
        )


class GenerationQueuedOut(BaseModel):
    status: str
    task_id: str


class LearnerOut(BaseModel):
    id: str
    name: str
    email: str


class CourseSummaryOut(BaseModel):
    id: str
    title: str
    description: str
    level: str
    category: str
    duration: int
    instructor_name: str | None


class CertificateDetailOut(BaseModel):
    certificate: CertificateOut
    learner: LearnerOut | None
    course: CourseSummaryOut
    enrolled_at: datetime
    completed_at: datetime | None
    verification_url: str


class CertificateListItemOut(BaseModel):
    certificate: CertificateOut
    course_title: str | None
    course_level: str | None
    course_category: str | None


class CertificatePageOut(BaseModel):
    items: list[CertificateListItemOut]
    total: int
    page: int
    limit: int


class CertificateVerifyOut(BaseModel):
    valid: bool
    serial_hash: str
    issued_at: datetime
    completed_at: datetime | None
    learner_name: str
    course_title: str
    course_level: str
    course_category: str
    course_duration: int
    instructor_name: str | None


@router.post(
    "/v1/enrollments/{enrollment_id}/certificate/generate",
    response_model=CertificateOut | GenerationQueuedOut,
    responses={202: {"model": GenerationQueuedOut}},
)
async def generate_certificate(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
):
    """Ask for a certificate on a completed enrollment.

    202 Accepted means the task is queued, not that the certificate
    exists yet; the client polls GET .../certificate.
    """
    result = await request_certificate(repos, enrollment_id, principal.user_id)
    if result.certificate is not None:
        return CertificateOut.from_model(result.certificate)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=GenerationQueuedOut(status="queued", task_id=result.task_id).model_dump(),
    )


@router.get(
    "/v1/enrollments/{enrollment_id}/certificate",
    response_model=CertificateDetailOut,
)
async def get_certificate(
    enrollment_id: UUID,
    request: Request,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> CertificateDetailOut:
    enrollment = await repos.enrollments.get(enrollment_id)
    if enrollment is None:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    if enrollment.learner_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Not your enrollment")
    if enrollment.progress != 100:
        raise HTTPException(status_code=400, detail="Course not completed")

    detail = await certificate_service.get_certificate_detail(repos, enrollment_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Certificate not found")

    certificate, course, learner = detail.certificate, detail.course, detail.learner
    return CertificateDetailOut(
        certificate=CertificateOut.from_model(certificate),
        learner=(
            LearnerOut(id=str(learner.id), name=learner.name, email=learner.email)
            if learner
            else None
        ),
        course=CourseSummaryOut(
            id=str(course.id),
            title=course.title,
            description=course.description,
            level=course.level,
            category=course.category,
            duration=course.duration,
            instructor_name=detail.instructor_name,
        ),
        enrolled_at=detail.enrollment.enrolled_at,
        completed_at=detail.enrollment.completed_at,
        verification_url=str(
            request.url_for("verify_certificate", serial_hash=certificate.serial_hash)
        ),
    )


@router.get("/v1/certificates", response_model=CertificatePageOut)
async def list_certificates(
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1)] = certificate_service.DEFAULT_PAGE_SIZE,
) -> CertificatePageOut:
    # limit above the maximum is clamped by the service, not rejected.
    result = await certificate_service.list_certificates(
        repos, principal.user_id, page=page, limit=limit
    )
    return CertificatePageOut(
        items=[
            CertificateListItemOut(
                certificate=CertificateOut.from_model(item.certificate),
                course_title=item.course.title if item.course else None,
                course_level=item.course.level if item.course else None,
                course_category=item.course.category if item.course else None,
            )
            for item in result.items
        ],
        total=result.total,
        page=result.page,
        limit=result.page_size,
    )


@router.get(
    "/v1/certificates/verify/{serial_hash}",
    response_model=CertificateVerifyOut,
    name="verify_certificate",
)
async def verify_certificate(
    serial_hash: str,
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> CertificateVerifyOut:
    result = await certificate_service.verify_certificate(repos, serial_hash)
    if result is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return CertificateVerifyOut(
        valid=result.valid,
        serial_hash=result.serial_hash,
        issued_at=result.issued_at,
        completed_at=result.completed_at,
        learner_name=result.learner_name,
        course_title=result.course_title,
        course_level=result.course_level,
        course_category=result.course_category,
        course_duration=result.course_duration,
        instructor_name=result.instructor_name,
    )
