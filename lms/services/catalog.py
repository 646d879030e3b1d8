"""Sample catalog for local development.

The real catalog is authored elsewhere on the platform.  Without a
database the API starts empty, so dev mode seeds one instructor, two
published three-lesson courses and a draft course, with fixed ids so
they can be used from curl or the docs UI straight away.
"""

from __future__ import annotations

import logging
from uuid import UUID

from lms.models.course import Course, Lesson
from lms.models.user import User
from lms.repos.registry import Repositories

logger = logging.getLogger(__name__)

INSTRUCTOR_ID = UUID("00000000-0000-0000-0000-0000000000a1")
JS_COURSE_ID = UUID("00000000-0000-0000-0000-000000000001")
PY_COURSE_ID = UUID("00000000-0000-0000-0000-000000000002")
DRAFT_COURSE_ID = UUID("00000000-0000-0000-0000-000000000003")

_COURSES = (
    (
        JS_COURSE_ID,
        "JavaScript Fundamentals for Beginners",
        "Variables, functions, loops and the DOM from scratch.",
        "beginner",
        "Programming",
        "published",
        (
            ("Introduction to JavaScript and Setup", 45),
            ("Variables, Types and Operators", 60),
            ("Functions and Control Flow", 75),
        ),
    ),
    (
        PY_COURSE_ID,
        "Data Analysis with Python",
        "Load, clean and summarise real datasets.",
        "intermediate",
        "Data Science",
        "published",
        (
            ("Working with DataFrames", 50),
            ("Cleaning Messy Data", 55),
            ("Grouping and Aggregation", 65),
        ),
    ),
    (
        DRAFT_COURSE_ID,
        "Advanced Type Systems",
        "Not published yet.",
        "advanced",
        "Programming",
        "draft",
        (("Variance", 40),),
    ),
)


async def seed_sample_catalog(repos: Repositories) -> None:
    """Insert the sample catalog unless it is already there."""
    if await repos.courses.get(JS_COURSE_ID) is not None:
        return

    if await repos.users.get_by_id(INSTRUCTOR_ID) is None:
        await repos.users.add(
            User(
                id=INSTRUCTOR_ID,
                email="sarah@example.com",
                name="Sarah Williams",
                roles=("creator",),
            )
        )

    for course_id, title, description, level, category, status, lessons in _COURSES:
        await repos.courses.add(
            Course(
                id=course_id,
                title=title,
                description=description,
                level=level,
                category=category,
                duration=sum(minutes for _, minutes in lessons),
                status=status,
                creator_id=INSTRUCTOR_ID,
            )
        )
        for position, (lesson_title, minutes) in enumerate(lessons, start=1):
            await repos.courses.add_lesson(
                Lesson.new(
                    course_id=course_id,
                    title=lesson_title,
                    position=position,
                    duration=minutes,
                )
            )

    logger.info("Seeded sample catalog: %d courses", len(_COURSES))
