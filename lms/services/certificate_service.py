"""Certificate issuance, public verification and owner retrieval.

ISSUANCE PROTOCOL
------------------
issue_certificate() must leave exactly one certificate per enrollment no
matter how many times, or how concurrently, it is called.  It is invoked
by the queue worker (at-least-once delivery) and inline after a course
completion, so duplicates are expected, not exceptional:

  1. enrollment exists, progress == 100, completed_at set   (else error)
  2. certificate for this enrollment already stored?        → return it
  3. compute serial hash; stored on another enrollment?     → collision
  4. insert
  5. insert hit a unique key?  → a concurrent issuer won
       → fetch the winner by enrollment and return it

Step 5 is the race: two issuers both pass step 2, one insert wins and the
other gets a ConflictError from the store.  The loser's caller still gets
a certificate back, the same one.

SERIAL HASH
------------
sha256(learner_id + course_id + completed_at as ISO-8601), hex encoded.
No salt: the same completion always yields the same serial, so a
re-issue is idempotent by content and anyone holding the inputs can
recompute it.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime
from uuid import UUID

from lms.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SerialHashCollisionError,
)
from lms.core.metrics import CERTIFICATE_ISSUANCE, CERTIFICATE_VERIFICATIONS
from lms.models.certificate import (
    Certificate,
    CertificateDetail,
    CertificateListItem,
    CertificatePage,
    CertificateVerification,
)
from lms.models.course import Course
from lms.repos.registry import Repositories

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


def format_completed_at(completed_at: datetime) -> str:
    """UTC, millisecond precision, Z suffix: 2025-01-02T03:04:05.678Z"""
    if completed_at.tzinfo is None:
        completed_at = completed_at.replace(tzinfo=UTC)
    rendered = completed_at.astimezone(UTC).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def compute_serial_hash(
    learner_id: UUID, course_id: UUID, completed_at: datetime
) -> str:
    material = f"{learner_id}{course_id}{format_completed_at(completed_at)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


async def issue_certificate(repos: Repositories, enrollment_id: UUID) -> Certificate:
    """Issue (or return) the certificate for a completed enrollment."""
    log_ctx = {"enrollment_id": str(enrollment_id)}

    enrollment = await repos.enrollments.get(enrollment_id)
    if enrollment is None:
        CERTIFICATE_ISSUANCE.labels(outcome="rejected").inc()
        raise NotFoundError("Enrollment not found", error_code="ENROLLMENT_NOT_FOUND")
    if enrollment.progress != 100:
        CERTIFICATE_ISSUANCE.labels(outcome="rejected").inc()
        raise InvalidStateError(
            "Course not completed", error_code="COURSE_NOT_COMPLETED"
        )
    if enrollment.completed_at is None:
        CERTIFICATE_ISSUANCE.labels(outcome="rejected").inc()
        raise InvalidStateError(
            "completedAt not set", error_code="COMPLETED_AT_NOT_SET"
        )

    existing = await repos.certificates.get_by_enrollment(enrollment_id)
    if existing is not None:
        CERTIFICATE_ISSUANCE.labels(outcome="existing").inc()
        logger.info("Certificate already issued", extra=log_ctx)
        return existing

    serial_hash = compute_serial_hash(
        enrollment.learner_id, enrollment.course_id, enrollment.completed_at
    )
    holder = await repos.certificates.get_by_serial_hash(serial_hash)
    if holder is not None:
        if holder.enrollment_id != enrollment_id:
            raise _collision(serial_hash, enrollment_id, holder.enrollment_id)
        # Inserted between our two reads by a concurrent issuer.
        CERTIFICATE_ISSUANCE.labels(outcome="race_recovered").inc()
        return holder

    certificate = Certificate.new(
        enrollment_id=enrollment_id,
        learner_id=enrollment.learner_id,
        course_id=enrollment.course_id,
        serial_hash=serial_hash,
        issued_at=datetime.now(UTC),
    )
    try:
        await repos.certificates.add(certificate)
    except ConflictError:
        winner = await repos.certificates.get_by_enrollment(enrollment_id)
        if winner is not None:
            CERTIFICATE_ISSUANCE.labels(outcome="race_recovered").inc()
            logger.info(
                "Certificate insert lost a race; returning existing",
                extra={**log_ctx, "certificate_id": str(winner.id)},
            )
            return winner
        holder = await repos.certificates.get_by_serial_hash(serial_hash)
        if holder is not None and holder.enrollment_id != enrollment_id:
            raise _collision(serial_hash, enrollment_id, holder.enrollment_id) from None
        raise

    CERTIFICATE_ISSUANCE.labels(outcome="created").inc()
    logger.info(
        "Certificate issued",
        extra={**log_ctx, "certificate_id": str(certificate.id)},
    )
    return certificate


def _collision(
    serial_hash: str, enrollment_id: UUID, holder_id: UUID
) -> SerialHashCollisionError:
    CERTIFICATE_ISSUANCE.labels(outcome="collision").inc()
    logger.error(
        "Serial hash %s already belongs to enrollment %s",
        serial_hash,
        holder_id,
        extra={"enrollment_id": str(enrollment_id)},
    )
    return SerialHashCollisionError(serial_hash, enrollment_id, holder_id)


async def verify_certificate(
    repos: Repositories, serial_hash: str
) -> CertificateVerification | None:
    """Public lookup.  None means "no such certificate", nothing more."""
    certificate = await repos.certificates.get_by_serial_hash(serial_hash)
    if certificate is None:
        CERTIFICATE_VERIFICATIONS.labels(result="not_found").inc()
        return None

    enrollment = await repos.enrollments.get(certificate.enrollment_id)
    course = await repos.courses.get(certificate.course_id)
    learner = await repos.users.get_by_id(certificate.learner_id)
    if course is None:
        CERTIFICATE_VERIFICATIONS.labels(result="not_found").inc()
        return None

    CERTIFICATE_VERIFICATIONS.labels(result="found").inc()
    return CertificateVerification(
        serial_hash=certificate.serial_hash,
        issued_at=certificate.issued_at,
        completed_at=enrollment.completed_at if enrollment else None,
        learner_name=learner.name if learner else "",
        course_title=course.title,
        course_level=course.level,
        course_category=course.category,
        course_duration=course.duration,
        instructor_name=await _instructor_name(repos, course),
    )


async def get_certificate_detail(
    repos: Repositories, enrollment_id: UUID
) -> CertificateDetail | None:
    """Certificate for an enrollment with learner and course expanded.

    Does not check ownership; the caller compares enrollment.learner_id
    with the authenticated learner.
    """
    certificate = await repos.certificates.get_by_enrollment(enrollment_id)
    if certificate is None:
        return None
    enrollment = await repos.enrollments.get(enrollment_id)
    course = await repos.courses.get(certificate.course_id)
    if enrollment is None or course is None:
        return None
    return CertificateDetail(
        certificate=certificate,
        enrollment=enrollment,
        learner=await repos.users.get_by_id(certificate.learner_id),
        course=course,
        instructor_name=await _instructor_name(repos, course),
    )


async def list_certificates(
    repos: Repositories,
    learner_id: UUID,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> CertificatePage:
    """One page of the learner's certificates, newest first.

    limit is clamped to [1, MAX_PAGE_SIZE] whatever the caller asks for.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    certificates = await repos.certificates.list_by_learner(
        learner_id, offset=(page - 1) * limit, limit=limit
    )
    total = await repos.certificates.count_by_learner(learner_id)

    courses: dict[UUID, Course | None] = {}
    items = []
    for certificate in certificates:
        if certificate.course_id not in courses:
            courses[certificate.course_id] = await repos.courses.get(
                certificate.course_id
            )
        items.append(
            CertificateListItem(
                certificate=certificate, course=courses[certificate.course_id]
            )
        )
    return CertificatePage(items=items, total=total, page=page, page_size=limit)


async def _instructor_name(repos: Repositories, course: Course) -> str | None:
    if course.creator_id is None:
        return None
    instructor = await repos.users.get_by_id(course.creator_id)
    return instructor.name if instructor else None
