"""Seed the sample catalog into the configured database.

Run with:
    DATABASE_URL=postgresql+asyncpg://... python scripts/seed_catalog.py

Creates the instructor, the two published courses and the draft course
used in local development.  Safe to run repeatedly: an existing catalog
is left untouched.
"""

from __future__ import annotations

import asyncio
import sys

from lms.core.config import SETTINGS
from lms.core.logging import setup_logging
from lms.db.engine import lifespan_db
from lms.repos.registry import repositories_scope
from lms.services import catalog


async def seed() -> None:
    async with lifespan_db():
        async with repositories_scope() as repos:
            await catalog.seed_sample_catalog(repos)
            courses = [
                await repos.courses.get(course_id)
                for course_id in (
                    catalog.JS_COURSE_ID,
                    catalog.PY_COURSE_ID,
                    catalog.DRAFT_COURSE_ID,
                )
            ]

    print()
    print("Catalog:")
    print("─" * 60)
    for course in courses:
        if course is not None:
            print(f"  {course.id}  [{course.status:>9}]  {course.title}")
    print()
    print(f"Instructor id: {catalog.INSTRUCTOR_ID}")


def main() -> None:
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    if not SETTINGS.database_url:
        print("DATABASE_URL is not set; nothing to seed.", file=sys.stderr)
        sys.exit(1)
    asyncio.run(seed())


if __name__ == "__main__":
    main()
