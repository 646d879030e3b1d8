from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class User:
    """Directory entry for a learner or instructor.

    Accounts are managed by the auth side of the platform; this service
    only needs the display name (certificates) and email (owner view).
    """

    id: UUID
    email: str
    name: str = ""
    roles: tuple[str, ...] = ()  # immutable

    @staticmethod
    def new(*, email: str, name: str = "", roles: tuple[str, ...] = ()) -> User:
        return User(id=uuid4(), email=email.strip().lower(), name=name, roles=roles)
