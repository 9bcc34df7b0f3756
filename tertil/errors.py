"""Domain errors raised by the reservation services.

Services raise these; ``main.py`` turns them into JSON responses so routers
never have to translate them one by one.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional


class ReservationError(Exception):
    """Base class for every error the reservation engine reports to callers."""

    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(ReservationError):
    """Malformed input, rejected before the store is touched."""


class NotFoundError(ReservationError):
    status_code = 404


class AuthorizationError(ReservationError):
    status_code = 403


class StateError(ReservationError):
    """The program is not in a state that allows the operation."""


class SectionLayoutError(StateError):
    """A section document breaks the structural rules of the section model."""


class ConflictError(ReservationError):
    """Requested selections are already taken; nothing was applied."""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[Iterable[Any]] = None):
        self.conflicts = list(conflicts or [])
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "conflicts": [c.to_dict() if hasattr(c, "to_dict") else c for c in self.conflicts],
            # clients reload the program so stale selections disappear
            "refresh": True,
        }


__all__ = [
    "ReservationError",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "StateError",
    "SectionLayoutError",
    "ConflictError",
]
