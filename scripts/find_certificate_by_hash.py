"""Look up a certificate by serial hash, the way the public verify page does.

Run with:
    DATABASE_URL=postgresql+asyncpg://... python scripts/find_certificate_by_hash.py <serial_hash>

Prints the verification view, or exits 1 when no certificate carries the
hash.  Support uses this to answer "is this certificate real?" without
going through the API.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from lms.core.config import SETTINGS
from lms.core.logging import setup_logging
from lms.db.engine import lifespan_db
from lms.repos.registry import repositories_scope
from lms.services.certificate_service import verify_certificate


async def lookup(serial_hash: str) -> int:
    async with lifespan_db():
        async with repositories_scope() as repos:
            result = await verify_certificate(repos, serial_hash)

    if result is None:
        print(f"No certificate with serial hash {serial_hash}", file=sys.stderr)
        return 1

    print()
    print("Certificate found")
    print("─" * 60)
    print(f"  Serial:      {result.serial_hash}")
    print(f"  Learner:     {result.learner_name or '(unknown)'}")
    print(f"  Course:      {result.course_title} ({result.course_level})")
    print(f"  Category:    {result.course_category}")
    print(f"  Duration:    {result.course_duration} min")
    print(f"  Instructor:  {result.instructor_name or '(none)'}")
    print(f"  Completed:   {result.completed_at}")
    print(f"  Issued:      {result.issued_at}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("serial_hash", help="64-character hex serial hash")
    args = parser.parse_args()

    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    sys.exit(asyncio.run(lookup(args.serial_hash.strip().lower())))


if __name__ == "__main__":
    main()
