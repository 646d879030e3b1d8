"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.errors import ConflictError
from lms.db.tables import CertificateRow
from lms.models.certificate import Certificate


class PgCertificateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, certificate_id: UUID) -> Certificate | None:
        return await self._one(CertificateRow.id == certificate_id)

    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None:
        return await self._one(CertificateRow.enrollment_id == enrollment_id)

    async def get_by_serial_hash(self, serial_hash: str) -> Certificate | None:
        return await self._one(CertificateRow.serial_hash == serial_hash)

    async def add(self, certificate: Certificate) -> None:
        """Insert inside a SAVEPOINT.

        A unique violation on enrollment_id or serial_hash rolls back only
        the savepoint, leaving the surrounding transaction usable so the
        caller can read the row that won.
        """
        row = CertificateRow(
            id=certificate.id,
            enrollment_id=certificate.enrollment_id,
            learner_id=certificate.learner_id,
            course_id=certificate.course_id,
            serial_hash=certificate.serial_hash,
            issued_at=certificate.issued_at,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError:
            raise ConflictError(
                "Certificate already exists",
                error_code="CERTIFICATE_EXISTS",
                extra={"enrollment_id": str(certificate.enrollment_id)},
            ) from None

    async def list_by_learner(
        self, learner_id: UUID, *, offset: int, limit: int
    ) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.learner_id == learner_id)
            .order_by(CertificateRow.issued_at.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]

    async def count_by_learner(self, learner_id: UUID) -> int:
        stmt = select(func.count()).select_from(CertificateRow).where(
            CertificateRow.learner_id == learner_id
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def _one(self, criterion) -> Certificate | None:
        stmt = select(CertificateRow).where(criterion)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        enrollment_id=row.enrollment_id,
        learner_id=row.learner_id,
        course_id=row.course_id,
        serial_hash=row.serial_hash,
        issued_at=row.issued_at,
    )
