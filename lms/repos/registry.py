"""One consistent set of stores per request or background job.

Services never reach for a global client.  They receive a Repositories
bundle as their first argument, and every repo in the bundle shares the
same transaction:

  DATABASE_URL set   → PostgreSQL repos bound to one AsyncSession
                       (commit on success, rollback on error)
  DATABASE_URL unset → the process-wide in-memory bundle (dev, tests)

get_repositories() is the FastAPI dependency; repositories_scope() is
the same thing for code outside a request (worker, scripts).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from lms.db import engine as db
from lms.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from lms.repos.course_repo import CourseRepo, InMemoryCourseRepo
from lms.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from lms.repos.lesson_progress_repo import (
    InMemoryLessonProgressRepo,
    LessonProgressRepo,
)
from lms.repos.pg_certificate_repo import PgCertificateRepo
from lms.repos.pg_course_repo import PgCourseRepo
from lms.repos.pg_enrollment_repo import PgEnrollmentRepo
from lms.repos.pg_lesson_progress_repo import PgLessonProgressRepo
from lms.repos.pg_user_repo import PgUserRepo
from lms.repos.user_repo import InMemoryUserRepo, UserRepo


@dataclass(frozen=True, slots=True)
class Repositories:
    users: UserRepo
    courses: CourseRepo
    enrollments: EnrollmentRepo
    lesson_progress: LessonProgressRepo
    certificates: CertificateRepo


def in_memory_repositories() -> Repositories:
    return Repositories(
        users=InMemoryUserRepo(),
        courses=InMemoryCourseRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        lesson_progress=InMemoryLessonProgressRepo(),
        certificates=InMemoryCertificateRepo(),
    )


def pg_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        users=PgUserRepo(session),
        courses=PgCourseRepo(session),
        enrollments=PgEnrollmentRepo(session),
        lesson_progress=PgLessonProgressRepo(session),
        certificates=PgCertificateRepo(session),
    )


# Module-level in-memory bundle, used whenever no database is configured.
in_memory = in_memory_repositories()


@asynccontextmanager
async def repositories_scope() -> AsyncGenerator[Repositories, None]:
    """Yield a bundle for one unit of work."""
    if db.async_session_factory is None:
        yield in_memory
        return
    async with db.session_scope() as session:
        yield pg_repositories(session)


async def get_repositories() -> AsyncGenerator[Repositories, None]:
    """FastAPI dependency wrapping repositories_scope()."""
    async with repositories_scope() as repos:
        yield repos
