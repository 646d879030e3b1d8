from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from lms.models.course import Course
from lms.models.enrollment import Enrollment
from lms.models.user import User


@dataclass(frozen=True, slots=True)
class Certificate:
    """Issued completion certificate, immutable once written.

    One per enrollment.  serial_hash is derived from (learner, course,
    completed_at), so it is globally unique and reproducible.
    """

    id: UUID
    enrollment_id: UUID
    learner_id: UUID
    course_id: UUID
    serial_hash: str
    issued_at: datetime

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        learner_id: UUID,
        course_id: UUID,
        serial_hash: str,
        issued_at: datetime,
    ) -> Certificate:
        return Certificate(
            id=uuid4(),
            enrollment_id=enrollment_id,
            learner_id=learner_id,
            course_id=course_id,
            serial_hash=serial_hash,
            issued_at=issued_at,
        )


@dataclass(frozen=True, slots=True)
class CertificateDetail:
    """Owner view: the certificate with its learner, course and instructor."""

    certificate: Certificate
    enrollment: Enrollment
    learner: User | None
    course: Course
    instructor_name: str | None


@dataclass(frozen=True, slots=True)
class CertificateVerification:
    """Public, redacted view returned by serial-hash lookup.

    There is no "found but invalid" state: a verification object only
    exists for a stored certificate, so valid is always True.
    """

    serial_hash: str
    issued_at: datetime
    completed_at: datetime | None
    learner_name: str
    course_title: str
    course_level: str
    course_category: str
    course_duration: int
    instructor_name: str | None
    valid: bool = True


@dataclass(frozen=True, slots=True)
class CertificateListItem:
    certificate: Certificate
    course: Course | None


@dataclass(frozen=True, slots=True)
class CertificatePage:
    items: list[CertificateListItem]
    total: int
    page: int
    page_size: int
