"""Getting a certificate issued once a course is completed.

Two modes, chosen by CERTIFICATE_ISSUANCE:

  queue  (default)  enqueue a certificate_generation task; the worker
                    calls issue_certificate() with retries
  inline            call issue_certificate() right away in a fresh
                    transaction

Dispatch runs after the completing transaction has committed, so the
worker (or the inline issuer) always sees completed_at.  Both paths rely
on issue_certificate() being idempotent; sending the same enrollment
twice is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from lms.core.config import SETTINGS
from lms.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from lms.core.metrics import QUEUE_DEPTH
from lms.models.certificate import Certificate
from lms.repos.registry import Repositories, repositories_scope
from lms.services import task_queue as tq
from lms.services.certificate_service import issue_certificate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CertificateRequest:
    """Either the certificate already exists, or a task was queued."""

    certificate: Certificate | None = None
    task_id: str | None = None


async def enqueue_certificate(enrollment_id: UUID) -> tq.Task:
    task = await tq.task_queue.enqueue(
        tq.CERTIFICATE_QUEUE,
        {
            "enrollment_id": str(enrollment_id),
            "requested_at": datetime.now(UTC).isoformat(),
        },
    )
    QUEUE_DEPTH.labels(queue_name=tq.CERTIFICATE_QUEUE).set(
        await tq.task_queue.queue_length(tq.CERTIFICATE_QUEUE)
    )
    logger.info(
        "Certificate generation queued",
        extra={
            "enrollment_id": str(enrollment_id),
            "task_id": task.id,
            "queue": tq.CERTIFICATE_QUEUE,
        },
    )
    return task


async def dispatch_certificate(enrollment_id: UUID) -> str:
    """Schedule issuance after a first-time completion.

    Returns "issued" or "queued".  An inline failure falls back to the
    queue so the worker's retries still apply.
    """
    if SETTINGS.issues_inline:
        try:
            async with repositories_scope() as repos:
                await issue_certificate(repos, enrollment_id)
            return "issued"
        except Exception:
            logger.exception(
                "Inline certificate issuance failed; queueing instead",
                extra={"enrollment_id": str(enrollment_id)},
            )
    await enqueue_certificate(enrollment_id)
    return "queued"


async def request_certificate(
    repos: Repositories, enrollment_id: UUID, requester_id: UUID
) -> CertificateRequest:
    """Learner-initiated generation for their own completed enrollment."""
    enrollment = await repos.enrollments.get(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found", error_code="ENROLLMENT_NOT_FOUND")
    if enrollment.learner_id != requester_id:
        raise ForbiddenError("Not your enrollment", error_code="NOT_OWNER")

    existing = await repos.certificates.get_by_enrollment(enrollment_id)
    if existing is not None:
        return CertificateRequest(certificate=existing)

    if enrollment.progress != 100 or enrollment.completed_at is None:
        raise InvalidStateError(
            "Course not completed", error_code="COURSE_NOT_COMPLETED"
        )

    task = await enqueue_certificate(enrollment_id)
    return CertificateRequest(task_id=task.id)
