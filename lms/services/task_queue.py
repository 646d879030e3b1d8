"""Background task queue using Redis lists.

Course completion is detected inside a learner's request; issuing the
certificate is handed to a separate worker process through this queue:

  Producer (API):    LPUSH task onto a Redis list → returns immediately
  Consumer (worker): BRPOP from the list → issue certificate → loop

LPUSH adds to the head, BRPOP removes from the tail: FIFO.

DELIVERY GUARANTEE
-------------------
Delivery is at-least-once from the producer's point of view: a
completion can be enqueued more than once (a double-submitted last
lesson, a manual trigger racing the automatic one), and the worker
re-enqueues failed tasks with an incremented ``attempts`` counter and a
``not_before`` timestamp, so a task waiting out its backoff lives in
Redis rather than in a worker's memory.
Correctness therefore rests on the consumer: certificate issuance is
idempotent per enrollment, so duplicates are harmless.

Tasks that exhaust their attempts (or fail permanently) are pushed to a
``<queue>:dead`` list for inspection.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

from lms.db.redis import redis_pool

CERTIFICATE_QUEUE = "certificate_generation"


def dead_letter_queue(queue: str) -> str:
    return f"{queue}:dead"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:         Unique identifier for tracking and logging (kept across retries).
    queue:      Which queue this task belongs to.
    payload:    Data the handler needs (JSON-serializable).
    attempts:   How many times a worker has already tried this task.
    not_before: Epoch seconds before which a worker must not run it
                (set on retries to carry the backoff inside the queue).
    """

    id: str
    queue: str
    payload: dict
    attempts: int = 0
    not_before: float | None = None

    def is_due(self, now: float) -> bool:
        return self.not_before is None or self.not_before <= now


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def requeue(self, task: Task, queue: str | None = None) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-memory task queue for tests; no Redis needed."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def requeue(self, task: Task, queue: str | None = None) -> Task:
        moved = replace(task, queue=queue or task.queue)
        self._queues.setdefault(moved.queue, []).append(moved)
        return moved

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if tasks:
            return tasks.pop(0)  # FIFO: remove from front
        return None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        await self._push(task)
        return task

    async def requeue(self, task: Task, queue: str | None = None) -> Task:
        moved = replace(task, queue=queue or task.queue)
        await self._push(moved)
        return moved

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # BRPOP blocks up to `timeout` seconds; None means no task arrived.
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        data = json.loads(task_json)
        return Task(
            id=data["id"],
            queue=data["queue"],
            payload=data["payload"],
            attempts=data.get("attempts", 0),
            not_before=data.get("not_before"),
        )

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")

    async def _push(self, task: Task) -> None:
        task_json = json.dumps(
            {
                "id": task.id,
                "queue": task.queue,
                "payload": task.payload,
                "attempts": task.attempts,
                "not_before": task.not_before,
            }
        )
        await self._redis.lpush(f"{self._PREFIX}{task.queue}", task_json)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
