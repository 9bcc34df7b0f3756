# services/identity.py
from dataclasses import dataclass
from typing import Literal, Optional

Role = Literal["user", "admin"]


@dataclass(frozen=True)
class Identity:
    """What the session layer tells us about a caller: a user id and role, or nothing."""

    user_id: Optional[int] = None
    role: Role = "user"

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def is_admin(self) -> bool:
        return self.user_id is not None and self.role == "admin"

    @classmethod
    def from_user(cls, user) -> "Identity":
        if user is None:
            return ANONYMOUS
        return cls(user_id=user.id, role="admin" if getattr(user, "is_superuser", False) else "user")


ANONYMOUS = Identity()


def is_creator(identity: Identity, program) -> bool:
    return identity.user_id is not None and identity.user_id == program.created_by


def has_owner_rights(identity: Identity, program) -> bool:
    return identity.is_admin or is_creator(identity, program)
