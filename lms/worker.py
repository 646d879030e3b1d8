"""Background worker process.

RUN:  python -m lms.worker

The API detects course completions; this process turns them into
certificates.  Same image, different command:

  api:    uvicorn lms.main:app --host 0.0.0.0 --port 8000
  worker: python -m lms.worker

THE WORKER LOOP
----------------
WORKER_CONCURRENCY consumer coroutines each:
  1. Poll every registered queue (round-robin)
  2. Dequeue one task
  3. Dispatch it to the registered handler, inside its own transaction
  4. On failure: re-enqueue at once with attempts + 1 and a not_before
     timestamp one exponential backoff away, or move it to "<queue>:dead"
     when attempts are exhausted or the error cannot go away by retrying
     (not found, not completed, malformed payload)
  5. A dequeued task that is not yet due goes back on the queue

SIGTERM / SIGINT stop polling; tasks already in flight finish first.

Handlers must be idempotent: delivery is at-least-once, and a retry may
follow an attempt that actually succeeded but failed to report it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import time
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from lms.core.config import SETTINGS
from lms.core.errors import DomainError, InvalidStateError
from lms.core.logging import setup_logging
from lms.core.metrics import QUEUE_DEPTH, WORKER_TASKS
from lms.db.engine import lifespan_db
from lms.db.redis import lifespan_redis
from lms.repos.registry import repositories_scope
from lms.services import task_queue as tq
from lms.services.certificate_service import issue_certificate

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("lms.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
# Each handler is a coroutine that processes a task payload.
# Register handlers with the @register_handler decorator.

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(tq.CERTIFICATE_QUEUE)
async def handle_certificate_generation(payload: dict) -> None:
    """Issue the certificate for a completed enrollment.

    issue_certificate() returns the stored certificate when one exists,
    so duplicate or retried tasks end as no-ops.
    """
    try:
        enrollment_id = UUID(payload["enrollment_id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidStateError(
            "Malformed certificate task payload", error_code="MALFORMED_TASK"
        ) from exc
    async with repositories_scope() as repos:
        certificate = await issue_certificate(repos, enrollment_id)
    logger.info(
        "Certificate ready serial=%s",
        certificate.serial_hash,
        extra={
            "enrollment_id": str(enrollment_id),
            "certificate_id": str(certificate.id),
        },
    )


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


def _now() -> float:
    return time.time()


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Seconds to wait before retrying after failed attempt number `attempt`."""
    return base_seconds * 2 ** (attempt - 1)


def _is_permanent(exc: Exception) -> bool:
    # Handlers report unfixable input as a permanent DomainError; anything
    # else may be transient.
    return isinstance(exc, DomainError) and exc.is_permanent


async def process_task(
    task: tq.Task,
    *,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> str:
    """Run one task through its handler.  Returns the outcome label."""
    if max_attempts is None:
        max_attempts = SETTINGS.certificate_max_attempts
    if backoff_seconds is None:
        backoff_seconds = SETTINGS.certificate_backoff_seconds

    attempt = task.attempts + 1
    log_ctx = {"task_id": task.id, "queue": task.queue, "attempt": attempt}
    handler = HANDLERS[task.queue]

    try:
        await handler(task.payload)
    except Exception as exc:
        tried = dataclasses.replace(task, attempts=attempt, not_before=None)
        if _is_permanent(exc) or attempt >= max_attempts:
            logger.exception("Task failed; moving to dead-letter queue", extra=log_ctx)
            await tq.task_queue.requeue(tried, tq.dead_letter_queue(task.queue))
            outcome = "dead_lettered"
        else:
            delay = backoff_delay(attempt, backoff_seconds)
            logger.warning(
                "Task failed; retrying in %.1fs", delay, exc_info=True, extra=log_ctx
            )
            # Requeue now, due later: the backoff survives a worker crash.
            await tq.task_queue.requeue(
                dataclasses.replace(tried, not_before=_now() + delay)
            )
            outcome = "retried"
    else:
        logger.info("Task completed", extra=log_ctx)
        outcome = "completed"

    WORKER_TASKS.labels(queue=task.queue, outcome=outcome).inc()
    QUEUE_DEPTH.labels(queue_name=task.queue).set(
        await tq.task_queue.queue_length(task.queue)
    )
    return outcome


async def process_next(queue: str, *, timeout: int = 1, **policy: Any) -> str | None:
    """Dequeue and process a single task.  None when the queue was empty.

    A task still inside its backoff window goes back on the queue
    untouched and the outcome is "deferred".
    """
    task = await tq.task_queue.dequeue(queue, timeout=timeout)
    if task is None:
        return None
    if not task.is_due(_now()):
        await tq.task_queue.requeue(task)
        return "deferred"
    return await process_task(task, **policy)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def _consume(stop: asyncio.Event, queues: list[str]) -> None:
    while not stop.is_set():
        handled = False
        for queue_name in queues:
            if await process_next(queue_name, timeout=1) not in (None, "deferred"):
                handled = True
        if not handled:
            # Empty in-memory queues and not-yet-due retries return at once.
            await asyncio.sleep(0.1)


async def run_worker(concurrency: int | None = None) -> None:
    """Run consumers until SIGTERM/SIGINT."""
    concurrency = concurrency or SETTINGS.worker_concurrency
    queues = list(HANDLERS.keys())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "Worker started; queues=%s concurrency=%d max_attempts=%d",
        queues,
        concurrency,
        SETTINGS.certificate_max_attempts,
    )
    await asyncio.gather(*(_consume(stop, queues) for _ in range(concurrency)))
    logger.info("Worker stopped")


async def main() -> None:
    async with lifespan_db():
        async with lifespan_redis():
            await run_worker()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(main())
