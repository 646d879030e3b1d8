"""Lesson completion workflow: upsert, recalculation, first-completion flag."""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from lms.core.errors import ErrorKind, NotEnrolledError, NotFoundError
from lms.repos.registry import Repositories
from lms.services import enrollment_service, lesson_progress_service
from tests.conftest import create_course


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


async def _enrolled(repos: Repositories, learner_id: UUID, lessons: int = 3):
    course, course_lessons = await create_course(repos, lessons=lessons)
    enrollment = await enrollment_service.enroll(repos, learner_id, course.id)
    return course, course_lessons, enrollment


def test_full_completion_flow_33_67_100(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id)
        return [
            await lesson_progress_service.mark_lesson_complete(repos, learner_id, ls.id)
            for ls in lessons
        ]

    first, second, third = asyncio.run(scenario())
    assert [c.enrollment.progress for c in (first, second, third)] == [33, 67, 100]
    assert first.course_completed is False
    assert second.course_completed is False
    assert third.course_completed is True
    assert third.enrollment.completed_at is not None
    assert first.enrollment.completed_at is None


def test_completing_twice_is_idempotent(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id)
        once = await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )
        twice = await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )
        return once, twice

    once, twice = asyncio.run(scenario())
    assert once.newly_completed is True
    assert twice.newly_completed is False
    assert twice.lesson_progress.watched_at == once.lesson_progress.watched_at
    assert twice.lesson_progress.id == once.lesson_progress.id
    assert twice.enrollment.progress == once.enrollment.progress == 33


def test_recompleting_last_lesson_does_not_fire_completion_again(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id, lessons=1)
        first = await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )
        again = await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )
        return first, again

    first, again = asyncio.run(scenario())
    assert first.course_completed is True
    assert again.course_completed is False
    assert again.enrollment.completed_at == first.enrollment.completed_at


def test_progress_never_drops_while_completing(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id, lessons=4)
        order = [lessons[0], lessons[1], lessons[0], lessons[2], lessons[1], lessons[3]]
        return [
            (
                await lesson_progress_service.mark_lesson_complete(
                    repos, learner_id, ls.id
                )
            ).enrollment.progress
            for ls in order
        ]

    seen = asyncio.run(scenario())
    assert seen == sorted(seen)
    assert seen[-1] == 100


def test_not_enrolled_is_rejected_and_nothing_is_written(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        _, lessons = await create_course(repos)
        await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )

    with pytest.raises(NotEnrolledError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.kind is ErrorKind.FORBIDDEN
    assert repos.lesson_progress._store == {}  # type: ignore[attr-defined]


def test_unknown_lesson_is_not_found(repos: Repositories, learner_id: UUID) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(
            lesson_progress_service.mark_lesson_complete(repos, learner_id, uuid4())
        )


def test_concurrent_duplicate_completions_converge(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        _, lessons, enrollment = await _enrolled(repos, learner_id)
        await asyncio.gather(
            *(
                lesson_progress_service.mark_lesson_complete(
                    repos, learner_id, lessons[0].id
                )
                for _ in range(5)
            )
        )
        return enrollment, await repos.lesson_progress.list_by_enrollment(enrollment.id)

    enrollment, marks = asyncio.run(scenario())
    assert len(marks) == 1
    assert marks[0].completed is True


def test_lesson_completion_metrics(repos: Repositories, learner_id: UUID) -> None:
    new_before = _sample("lesson_completions_total", {"result": "new"})
    repeat_before = _sample("lesson_completions_total", {"result": "repeat"})
    courses_before = _sample("course_completions_total")

    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id, lessons=1)
        for _ in range(2):
            await lesson_progress_service.mark_lesson_complete(
                repos, learner_id, lessons[0].id
            )

    asyncio.run(scenario())
    assert _sample("lesson_completions_total", {"result": "new"}) - new_before == 1
    assert _sample("lesson_completions_total", {"result": "repeat"}) - repeat_before == 1
    assert _sample("course_completions_total") - courses_before == 1


# ---- reset ----


def test_reset_lowers_progress_but_keeps_completed_at(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id, lessons=2)
        for ls in lessons:
            done = await lesson_progress_service.mark_lesson_complete(
                repos, learner_id, ls.id
            )
        record, enrollment = await lesson_progress_service.reset_lesson_progress(
            repos, learner_id, lessons[1].id
        )
        return done, record, enrollment

    done, record, enrollment = asyncio.run(scenario())
    assert record.completed is False
    assert record.watched_at is None
    assert enrollment.progress == 50
    assert enrollment.completed_at == done.enrollment.completed_at


def test_reset_requires_enrollment(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        _, lessons = await create_course(repos)
        await lesson_progress_service.reset_lesson_progress(
            repos, learner_id, lessons[0].id
        )

    with pytest.raises(NotEnrolledError):
        asyncio.run(scenario())


# ---- queries ----


def test_get_lesson_progress(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        _, lessons, _ = await _enrolled(repos, learner_id)
        untouched = await lesson_progress_service.get_lesson_progress(
            repos, learner_id, lessons[0].id
        )
        await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[0].id
        )
        touched = await lesson_progress_service.get_lesson_progress(
            repos, learner_id, lessons[0].id
        )
        stranger = await lesson_progress_service.get_lesson_progress(
            repos, uuid4(), lessons[0].id
        )
        missing = await lesson_progress_service.get_lesson_progress(
            repos, learner_id, uuid4()
        )
        return untouched, touched, stranger, missing

    untouched, touched, stranger, missing = asyncio.run(scenario())
    assert untouched is None
    assert touched is not None and touched.completed is True
    assert stranger is None
    assert missing is None


def test_course_progress_lists_lessons_in_order(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        course, lessons, _ = await _enrolled(repos, learner_id)
        await lesson_progress_service.mark_lesson_complete(
            repos, learner_id, lessons[1].id
        )
        return course, await lesson_progress_service.get_course_progress(
            repos, learner_id, course.id
        )

    course, progress = asyncio.run(scenario())
    assert progress.enrollment.course_id == course.id
    assert progress.total_lessons == 3
    assert progress.completed_lessons == 1
    assert [s.lesson.position for s in progress.lessons] == [1, 2, 3]
    assert [s.completed for s in progress.lessons] == [False, True, False]
    assert progress.lessons[1].watched_at is not None


def test_course_progress_without_enrollment(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        course, _ = await create_course(repos)
        await lesson_progress_service.get_course_progress(repos, learner_id, course.id)

    with pytest.raises(NotEnrolledError):
        asyncio.run(scenario())
