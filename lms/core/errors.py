"""Domain errors for the enrollment → completion → certificate pipeline.

Every failure the core can report is raised as a DomainError carrying an
explicit ErrorKind, chosen where the failure is detected.  Callers branch
on ``err.kind`` (or on the subclass), never on the message text.

  NOT_FOUND      enrollment, lesson, course, or certificate does not exist
  FORBIDDEN      caller acts on something they do not own / are not enrolled in
  INVALID_STATE  operation not allowed yet (course not published, not completed)
  CONFLICT       a uniqueness rule would be broken (duplicate enrollment,
                 duplicate certificate insert)
  INTEGRITY      serial hash already belongs to a different enrollment

The HTTP layer maps kinds to status codes in one place (lms.main).
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    INTEGRITY = "integrity"


class DomainError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_STATE
    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.extra = extra or {}

    @property
    def is_permanent(self) -> bool:
        """True when retrying the same call cannot change the outcome."""
        return self.kind in (
            ErrorKind.NOT_FOUND,
            ErrorKind.FORBIDDEN,
            ErrorKind.INVALID_STATE,
        )


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND
    error_code = "NOT_FOUND"


class ForbiddenError(DomainError):
    kind = ErrorKind.FORBIDDEN
    error_code = "FORBIDDEN"


class NotEnrolledError(ForbiddenError):
    error_code = "NOT_ENROLLED"

    def __init__(self, learner_id: Any, course_id: Any) -> None:
        super().__init__(
            "Not enrolled in this course",
            extra={"learner_id": str(learner_id), "course_id": str(course_id)},
        )


class InvalidStateError(DomainError):
    kind = ErrorKind.INVALID_STATE
    error_code = "INVALID_STATE"


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT
    error_code = "CONFLICT"


class SerialHashCollisionError(DomainError):
    kind = ErrorKind.INTEGRITY
    error_code = "SERIAL_HASH_COLLISION"

    def __init__(self, serial_hash: str, enrollment_id: Any, holder_id: Any) -> None:
        super().__init__(
            "Certificate serial hash collision",
            extra={
                "serial_hash": serial_hash,
                "enrollment_id": str(enrollment_id),
                "existing_enrollment_id": str(holder_id),
            },
        )
