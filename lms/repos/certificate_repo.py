from __future__ import annotations

import asyncio
from typing import Protocol
from uuid import UUID

from lms.core.errors import ConflictError
from lms.models.certificate import Certificate


class CertificateRepo(Protocol):
    async def get(self, certificate_id: UUID) -> Certificate | None: ...
    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None: ...
    async def get_by_serial_hash(self, serial_hash: str) -> Certificate | None: ...
    async def add(self, certificate: Certificate) -> None: ...
    async def list_by_learner(
        self, learner_id: UUID, *, offset: int, limit: int
    ) -> list[Certificate]: ...
    async def count_by_learner(self, learner_id: UUID) -> int: ...


class InMemoryCertificateRepo:
    """Dict-backed store with the same two unique keys as the certificates table.

    add() raises ConflictError when either enrollment_id or serial_hash is
    already taken, the in-memory equivalent of a unique-constraint
    violation.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Certificate] = {}

    async def get(self, certificate_id: UUID) -> Certificate | None:
        return self._by_id.get(certificate_id)

    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None:
        for c in self._by_id.values():
            if c.enrollment_id == enrollment_id:
                return c
        return None

    async def get_by_serial_hash(self, serial_hash: str) -> Certificate | None:
        for c in self._by_id.values():
            if c.serial_hash == serial_hash:
                return c
        return None

    async def add(self, certificate: Certificate) -> None:
        # Yield once, like a database round trip, so two issuers racing for
        # the same enrollment both get past their existence checks.
        await asyncio.sleep(0)
        for c in self._by_id.values():
            if (
                c.enrollment_id == certificate.enrollment_id
                or c.serial_hash == certificate.serial_hash
            ):
                raise ConflictError(
                    "Certificate already exists",
                    error_code="CERTIFICATE_EXISTS",
                    extra={"enrollment_id": str(certificate.enrollment_id)},
                )
        self._by_id[certificate.id] = certificate

    async def list_by_learner(
        self, learner_id: UUID, *, offset: int, limit: int
    ) -> list[Certificate]:
        rows = [c for c in self._by_id.values() if c.learner_id == learner_id]
        rows.sort(key=lambda c: c.issued_at, reverse=True)
        return rows[offset : offset + limit]

    async def count_by_learner(self, learner_id: UUID) -> int:
        return sum(1 for c in self._by_id.values() if c.learner_id == learner_id)

    def clear(self) -> None:
        self._by_id.clear()
