"""Worker: certificate handler, retries with backoff, dead-lettering."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from lms import worker
from lms.core.errors import DomainError
from lms.repos.registry import Repositories
from lms.services import enrollment_service
from lms.services.task_queue import CERTIFICATE_QUEUE, dead_letter_queue, task_queue
from tests.conftest import create_course

NO_WAIT = {"max_attempts": 3, "backoff_seconds": 0}


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


async def _enrollment(repos: Repositories, learner_id: UUID, *, complete: bool = True):
    course, lessons = await create_course(repos, lessons=1)
    enrollment = await enrollment_service.enroll(repos, learner_id, course.id)
    if complete:
        await repos.lesson_progress.mark_completed(
            enrollment.id, lessons[0].id, at=datetime.now(UTC)
        )
        await enrollment_service.recalculate_progress(repos, enrollment.id)
    return enrollment


def _payload(enrollment_id) -> dict:
    return {
        "enrollment_id": str(enrollment_id),
        "requested_at": datetime.now(UTC).isoformat(),
    }


def test_backoff_doubles_each_attempt() -> None:
    assert [worker.backoff_delay(n, 3) for n in (1, 2, 3)] == [3, 6, 12]


def test_empty_queue_returns_none() -> None:
    assert asyncio.run(worker.process_next(CERTIFICATE_QUEUE, timeout=0)) is None


def test_certificate_task_issues_certificate(
    repos: Repositories, learner_id: UUID
) -> None:
    before = _sample(
        "worker_tasks_total", {"queue": CERTIFICATE_QUEUE, "outcome": "completed"}
    )

    async def scenario():
        enrollment = await _enrollment(repos, learner_id)
        await task_queue.enqueue(CERTIFICATE_QUEUE, _payload(enrollment.id))
        outcome = await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)
        return outcome, await repos.certificates.get_by_enrollment(enrollment.id)

    outcome, certificate = asyncio.run(scenario())
    assert outcome == "completed"
    assert certificate is not None
    assert (
        _sample(
            "worker_tasks_total", {"queue": CERTIFICATE_QUEUE, "outcome": "completed"}
        )
        - before
        == 1
    )


def test_duplicate_tasks_issue_once(repos: Repositories, learner_id: UUID) -> None:
    async def scenario():
        enrollment = await _enrollment(repos, learner_id)
        for _ in range(3):
            await task_queue.enqueue(CERTIFICATE_QUEUE, _payload(enrollment.id))
        outcomes = [
            await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)
            for _ in range(3)
        ]
        return outcomes, await repos.certificates.count_by_learner(learner_id)

    outcomes, stored = asyncio.run(scenario())
    assert outcomes == ["completed"] * 3
    assert stored == 1


def test_incomplete_enrollment_goes_straight_to_dead_letter(
    repos: Repositories, learner_id: UUID
) -> None:
    async def scenario():
        enrollment = await _enrollment(repos, learner_id, complete=False)
        await task_queue.enqueue(CERTIFICATE_QUEUE, _payload(enrollment.id))
        outcome = await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)
        dead = await task_queue.dequeue(dead_letter_queue(CERTIFICATE_QUEUE))
        return outcome, dead, await task_queue.queue_length(CERTIFICATE_QUEUE)

    outcome, dead, remaining = asyncio.run(scenario())
    assert outcome == "dead_lettered"
    assert dead is not None
    assert dead.attempts == 1
    assert remaining == 0


def test_malformed_payload_is_dead_lettered() -> None:
    async def scenario():
        await task_queue.enqueue(CERTIFICATE_QUEUE, {"enrollment_id": "not-a-uuid"})
        return await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)

    assert asyncio.run(scenario()) == "dead_lettered"


def test_unknown_enrollment_is_dead_lettered() -> None:
    async def scenario():
        await task_queue.enqueue(CERTIFICATE_QUEUE, _payload(uuid4()))
        return await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)

    assert asyncio.run(scenario()) == "dead_lettered"


def test_transient_failures_retry_then_dead_letter(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[dict] = []

    async def always_fails(payload: dict) -> None:
        calls.append(payload)
        raise RuntimeError("database unavailable")

    monkeypatch.setitem(worker.HANDLERS, "flaky", always_fails)

    async def scenario():
        await task_queue.enqueue("flaky", {"n": 1})
        outcomes = [
            await worker.process_next("flaky", timeout=0, **NO_WAIT) for _ in range(3)
        ]
        dead = await task_queue.dequeue(dead_letter_queue("flaky"))
        return outcomes, dead, await task_queue.queue_length("flaky")

    outcomes, dead, remaining = asyncio.run(scenario())
    assert outcomes == ["retried", "retried", "dead_lettered"]
    assert len(calls) == 3
    assert dead is not None and dead.attempts == 3
    assert remaining == 0


def test_retry_succeeds_on_second_attempt(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    async def fails_once(payload: dict) -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise ConnectionError("redis blip")

    monkeypatch.setitem(worker.HANDLERS, "flaky-once", fails_once)

    async def scenario():
        first_task = await task_queue.enqueue("flaky-once", {})
        first = await worker.process_next("flaky-once", timeout=0, **NO_WAIT)
        requeued = await task_queue.dequeue("flaky-once")
        second = await worker.process_task(requeued, **NO_WAIT)
        return first_task, first, requeued, second

    first_task, first, requeued, second = asyncio.run(scenario())
    assert first == "retried"
    assert requeued.id == first_task.id
    assert requeued.attempts == 1
    assert second == "completed"


def test_retry_is_requeued_with_backoff_deadline(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = [1_000.0]

    async def fails(payload: dict) -> None:
        raise RuntimeError("boom")

    monkeypatch.setitem(worker.HANDLERS, "slow", fails)
    monkeypatch.setattr(worker, "_now", lambda: clock[0])

    async def scenario():
        await task_queue.enqueue("slow", {})
        first = await worker.process_next(
            "slow", timeout=0, max_attempts=3, backoff_seconds=3
        )
        queued = await task_queue.queue_length("slow")
        return first, await task_queue.dequeue("slow"), queued

    first, waiting, queued = asyncio.run(scenario())
    assert first == "retried"
    # The retry sits in the queue itself, not in the worker's memory.
    assert queued == 1
    assert waiting.attempts == 1
    assert waiting.not_before == 1_003.0


def test_task_inside_backoff_window_is_deferred(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = [1_000.0]
    calls: list[dict] = []

    async def fails(payload: dict) -> None:
        calls.append(payload)
        raise RuntimeError("boom")

    monkeypatch.setitem(worker.HANDLERS, "slow", fails)
    monkeypatch.setattr(worker, "_now", lambda: clock[0])

    async def scenario():
        await task_queue.enqueue("slow", {})
        outcomes = [
            await worker.process_next(
                "slow", timeout=0, max_attempts=3, backoff_seconds=3
            )
        ]
        clock[0] = 1_002.0
        outcomes.append(
            await worker.process_next(
                "slow", timeout=0, max_attempts=3, backoff_seconds=3
            )
        )
        clock[0] = 1_003.0
        outcomes.append(
            await worker.process_next(
                "slow", timeout=0, max_attempts=3, backoff_seconds=3
            )
        )
        retried = await task_queue.dequeue("slow")
        return outcomes, retried

    outcomes, retried = asyncio.run(scenario())
    assert outcomes == ["retried", "deferred", "retried"]
    assert len(calls) == 2
    assert retried.attempts == 2
    # Second backoff doubles: due at 1003 + 6.
    assert retried.not_before == 1_009.0


def test_dead_lettered_task_drops_its_deadline(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fails(payload: dict) -> None:
        raise RuntimeError("boom")

    monkeypatch.setitem(worker.HANDLERS, "slow", fails)

    async def scenario():
        await task_queue.enqueue("slow", {})
        for _ in range(2):
            await worker.process_next(
                "slow", timeout=0, max_attempts=2, backoff_seconds=0
            )
        return await task_queue.dequeue(dead_letter_queue("slow"))

    dead = asyncio.run(scenario())
    assert dead is not None
    assert dead.attempts == 2
    assert dead.not_before is None


# ---- permanent vs transient failures ----


def test_missing_enrollment_id_is_dead_lettered_as_malformed(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def scenario():
        await task_queue.enqueue(CERTIFICATE_QUEUE, {"requested_at": "now"})
        outcome = await worker.process_next(CERTIFICATE_QUEUE, timeout=0, **NO_WAIT)
        dead = await task_queue.dequeue(dead_letter_queue(CERTIFICATE_QUEUE))
        return outcome, dead

    with caplog.at_level("ERROR", logger="lms.worker"):
        outcome, dead = asyncio.run(scenario())

    assert outcome == "dead_lettered"
    assert dead is not None and dead.attempts == 1
    (record,) = [r for r in caplog.records if r.name == "lms.worker"]
    failure = record.exc_info[1]
    assert isinstance(failure, DomainError)
    assert failure.error_code == "MALFORMED_TASK"


def test_value_error_from_handler_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    async def driver_glitch(payload: dict) -> None:
        raise ValueError("invalid response from server")

    monkeypatch.setitem(worker.HANDLERS, "glitchy", driver_glitch)

    async def scenario():
        await task_queue.enqueue("glitchy", {})
        return await worker.process_next("glitchy", timeout=0, **NO_WAIT)

    assert asyncio.run(scenario()) == "retried"
