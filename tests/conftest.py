from __future__ import annotations

import sys
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from lms.main import app
from lms.models.course import Course, Lesson
from lms.models.user import User
from lms.repos import registry
from lms.repos.registry import Repositories
from lms.services import token_service
from lms.services.cache import cache_service
from lms.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import lms` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_repositories() -> None:
    """Empty every in-memory store between tests."""
    bundle = registry.in_memory
    for repo in (
        bundle.users,
        bundle.courses,
        bundle.enrollments,
        bundle.lesson_progress,
        bundle.certificates,
    ):
        repo.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def repos() -> Repositories:
    """The in-memory bundle the API and worker use when no DB is configured."""
    return registry.in_memory


@pytest.fixture
def learner_id() -> UUID:
    return uuid4()


def mint_token(
    user_id: UUID | str | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=str(user_id or uuid4()), roles=roles or ["learner"]
    )


def auth_headers(user_id: UUID | str, roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, roles)}"}


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


async def create_course(
    repos: Repositories,
    *,
    lessons: int = 3,
    status: str = "published",
    title: str = "Testing in Practice",
    instructor_name: str | None = "Sarah Williams",
) -> tuple[Course, list[Lesson]]:
    """Persist a course (with an instructor) and `lessons` ordered lessons."""
    creator_id = None
    if instructor_name is not None:
        instructor = User.new(
            email=f"instructor-{uuid4().hex[:8]}@example.com",
            name=instructor_name,
            roles=("creator",),
        )
        await repos.users.add(instructor)
        creator_id = instructor.id

    course = Course.new(
        title=title,
        description="Write tests you trust.",
        level="intermediate",
        category="Programming",
        duration=30 * lessons,
        status=status,
        creator_id=creator_id,
    )
    await repos.courses.add(course)

    created = []
    for position in range(1, lessons + 1):
        lesson = Lesson.new(
            course_id=course.id, title=f"Lesson {position}", position=position, duration=30
        )
        await repos.courses.add_lesson(lesson)
        created.append(lesson)
    return course, created


async def create_learner(repos: Repositories, name: str = "John Smith") -> User:
    learner = User.new(
        email=f"learner-{uuid4().hex[:8]}@example.com", name=name, roles=("learner",)
    )
    await repos.users.add(learner)
    return learner
