"""Certificate issuance, verification, owner retrieval and listing.

The race tests rely on the in-memory certificate store yielding to the
event loop inside add(), the way a database round trip would: two
issuers started together both pass their existence checks before either
insert lands.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from lms.core.errors import (
    ErrorKind,
    InvalidStateError,
    NotFoundError,
    SerialHashCollisionError,
)
from lms.models.certificate import Certificate
from lms.models.enrollment import Enrollment
from lms.repos.certificate_repo import InMemoryCertificateRepo
from lms.repos.registry import Repositories
from lms.services import certificate_service, enrollment_service
from lms.services.certificate_service import (
    compute_serial_hash,
    format_completed_at,
    issue_certificate,
)
from tests.conftest import create_course, create_learner

HEX64 = re.compile(r"^[0-9a-f]{64}$")


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


async def _completed_enrollment(
    repos: Repositories, learner_id: UUID, *, completed_at: datetime | None = None
) -> Enrollment:
    course, lessons = await create_course(repos, lessons=2)
    enrollment = await enrollment_service.enroll(repos, learner_id, course.id)
    at = completed_at or datetime.now(UTC)
    for lesson in lessons:
        await repos.lesson_progress.mark_completed(enrollment.id, lesson.id, at=at)
    result = await enrollment_service.recalculate_progress(repos, enrollment.id, now=at)
    return result.enrollment


# ---- serial hash ----


def test_format_completed_at_is_utc_millis_with_z() -> None:
    ist = timezone(timedelta(hours=5, minutes=30))
    dt = datetime(2025, 1, 2, 8, 34, 5, 678901, tzinfo=ist)
    assert format_completed_at(dt) == "2025-01-02T03:04:05.678Z"


def test_serial_hash_matches_direct_computation() -> None:
    learner, course = uuid4(), uuid4()
    at = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)
    expected = hashlib.sha256(
        f"{learner}{course}2025-01-02T03:04:05.678Z".encode()
    ).hexdigest()
    assert compute_serial_hash(learner, course, at) == expected
    assert HEX64.match(expected)


def test_serial_hash_changes_with_each_input() -> None:
    learner, course = uuid4(), uuid4()
    at = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)
    base = compute_serial_hash(learner, course, at)
    assert compute_serial_hash(learner, course, at) == base
    assert compute_serial_hash(uuid4(), course, at) != base
    assert compute_serial_hash(learner, uuid4(), at) != base
    assert compute_serial_hash(learner, course, at + timedelta(milliseconds=1)) != base


# ---- issue ----


def test_issue_creates_certificate(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        return enrollment, await issue_certificate(repos, enrollment.id)

    enrollment, certificate = asyncio.run(scenario())
    assert certificate.enrollment_id == enrollment.id
    assert certificate.learner_id == learner_id
    assert certificate.course_id == enrollment.course_id
    assert certificate.serial_hash == compute_serial_hash(
        learner_id, enrollment.course_id, enrollment.completed_at
    )
    assert HEX64.match(certificate.serial_hash)


def test_issue_repeatedly_returns_the_same_certificate(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        issued = [await issue_certificate(repos, enrollment.id) for _ in range(3)]
        return issued, await repos.certificates.count_by_learner(learner_id)

    issued, stored = asyncio.run(scenario())
    assert stored == 1
    assert len({c.id for c in issued}) == 1
    assert len({c.serial_hash for c in issued}) == 1


def test_concurrent_issue_returns_one_certificate(
    repos: Repositories, learner_id: UUID
) -> None:
    recovered_before = _sample(
        "certificate_issuance_total", {"outcome": "race_recovered"}
    )

    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        results = await asyncio.gather(
            issue_certificate(repos, enrollment.id),
            issue_certificate(repos, enrollment.id),
        )
        return results, await repos.certificates.count_by_learner(learner_id)

    (a, b), stored = asyncio.run(scenario())
    assert a.id == b.id
    assert a.serial_hash == b.serial_hash
    assert stored == 1
    assert (
        _sample("certificate_issuance_total", {"outcome": "race_recovered"})
        - recovered_before
        == 1
    )


def test_many_concurrent_issuers(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        results = await asyncio.gather(
            *(issue_certificate(repos, enrollment.id) for _ in range(10))
        )
        return results, await repos.certificates.count_by_learner(learner_id)

    results, stored = asyncio.run(scenario())
    assert stored == 1
    assert len({c.id for c in results}) == 1


class _StaleReadsRepo(InMemoryCertificateRepo):
    """Misses the stored certificate on the two pre-insert lookups, as if
    a concurrent insert committed just after them."""

    def __init__(self, backing: InMemoryCertificateRepo) -> None:
        super().__init__()
        self._by_id = backing._by_id
        self._stale_by_enrollment = 1
        self._stale_by_serial = 1

    async def get_by_enrollment(self, enrollment_id):
        if self._stale_by_enrollment:
            self._stale_by_enrollment -= 1
            return None
        return await super().get_by_enrollment(enrollment_id)

    async def get_by_serial_hash(self, serial_hash):
        if self._stale_by_serial:
            self._stale_by_serial -= 1
            return None
        return await super().get_by_serial_hash(serial_hash)


def test_insert_conflict_returns_the_winner(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        winner = await issue_certificate(repos, enrollment.id)
        stale = Repositories(
            users=repos.users,
            courses=repos.courses,
            enrollments=repos.enrollments,
            lesson_progress=repos.lesson_progress,
            certificates=_StaleReadsRepo(repos.certificates),  # type: ignore[arg-type]
        )
        loser = await issue_certificate(stale, enrollment.id)
        return winner, loser

    winner, loser = asyncio.run(scenario())
    assert loser.id == winner.id


def test_issue_incomplete_enrollment_is_rejected(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        course, lessons = await create_course(repos, lessons=2)
        enrollment = await enrollment_service.enroll(repos, learner_id, course.id)
        await repos.lesson_progress.mark_completed(
            enrollment.id, lessons[0].id, at=datetime.now(UTC)
        )
        await enrollment_service.recalculate_progress(repos, enrollment.id)
        await issue_certificate(repos, enrollment.id)

    with pytest.raises(InvalidStateError, match="Course not completed"):
        asyncio.run(scenario())
    assert repos.certificates._by_id == {}  # type: ignore[attr-defined]


def test_issue_requires_completed_at(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        course, _ = await create_course(repos)
        enrollment = Enrollment(
            id=uuid4(),
            learner_id=learner_id,
            course_id=course.id,
            enrolled_at=datetime.now(UTC),
            progress=100,
            completed_at=None,
        )
        await repos.enrollments.add(enrollment)
        await issue_certificate(repos, enrollment.id)

    with pytest.raises(InvalidStateError, match="completedAt not set"):
        asyncio.run(scenario())


def test_issue_unknown_enrollment(repos: Repositories) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(issue_certificate(repos, uuid4()))


def test_serial_hash_collision_is_an_integrity_error(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        enrollment = await _completed_enrollment(repos, learner_id)
        squatter = await _completed_enrollment(repos, uuid4())
        serial = compute_serial_hash(
            enrollment.learner_id, enrollment.course_id, enrollment.completed_at
        )
        await repos.certificates.add(
            Certificate.new(
                enrollment_id=squatter.id,
                learner_id=squatter.learner_id,
                course_id=squatter.course_id,
                serial_hash=serial,
                issued_at=datetime.now(UTC),
            )
        )
        await issue_certificate(repos, enrollment.id)

    with pytest.raises(SerialHashCollisionError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.kind is ErrorKind.INTEGRITY
    assert exc_info.value.error_code == "SERIAL_HASH_COLLISION"


# ---- verify ----


def test_verify_round_trip(repos: Repositories) -> None:
    async def scenario():
        learner = await create_learner(repos, name="Emma Johnson")
        enrollment = await _completed_enrollment(repos, learner.id)
        certificate = await issue_certificate(repos, enrollment.id)
        course = await repos.courses.get(enrollment.course_id)
        result = await certificate_service.verify_certificate(
            repos, certificate.serial_hash
        )
        return enrollment, certificate, course, result

    enrollment, certificate, course, result = asyncio.run(scenario())
    assert result is not None
    assert result.valid is True
    assert result.serial_hash == certificate.serial_hash
    assert result.learner_name == "Emma Johnson"
    assert result.course_title == course.title
    assert result.course_level == course.level
    assert result.course_category == course.category
    assert result.course_duration == course.duration
    assert result.instructor_name == "Sarah Williams"
    assert result.completed_at == enrollment.completed_at
    assert result.issued_at == certificate.issued_at


def test_verify_unknown_hash_is_none(repos: Repositories) -> None:
    before = _sample("certificate_verifications_total", {"result": "not_found"})
    result = asyncio.run(
        certificate_service.verify_certificate(repos, hashlib.sha256(b"x").hexdigest())
    )
    assert result is None
    assert (
        _sample("certificate_verifications_total", {"result": "not_found"}) - before == 1
    )


# ---- owner detail and listing ----


def test_certificate_detail(repos: Repositories) -> None:
    async def scenario():
        learner = await create_learner(repos)
        enrollment = await _completed_enrollment(repos, learner.id)
        certificate = await issue_certificate(repos, enrollment.id)
        detail = await certificate_service.get_certificate_detail(repos, enrollment.id)
        return learner, certificate, detail

    learner, certificate, detail = asyncio.run(scenario())
    assert detail is not None
    assert detail.certificate == certificate
    assert detail.learner == learner
    assert detail.instructor_name == "Sarah Williams"
    assert detail.enrollment.completed_at is not None


def test_certificate_detail_missing(repos: Repositories) -> None:
    assert asyncio.run(certificate_service.get_certificate_detail(repos, uuid4())) is None


def test_list_certificates_pages_newest_first(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        issued = []
        for _ in range(3):
            enrollment = await _completed_enrollment(repos, learner_id)
            issued.append(await issue_certificate(repos, enrollment.id))
            await asyncio.sleep(0.001)
        page1 = await certificate_service.list_certificates(
            repos, learner_id, page=1, limit=2
        )
        page2 = await certificate_service.list_certificates(
            repos, learner_id, page=2, limit=2
        )
        return issued, page1, page2

    issued, page1, page2 = asyncio.run(scenario())
    assert page1.total == page2.total == 3
    assert [i.certificate.id for i in page1.items] == [issued[2].id, issued[1].id]
    assert [i.certificate.id for i in page2.items] == [issued[0].id]
    assert all(i.course is not None for i in page1.items)


def test_list_certificates_caps_page_size(repos: Repositories, learner_id: UUID) -> None:
    page = asyncio.run(
        certificate_service.list_certificates(repos, learner_id, page=0, limit=1000)
    )
    assert page.page_size == certificate_service.MAX_PAGE_SIZE == 100
    assert page.page == 1
    assert page.items == []
    assert page.total == 0
