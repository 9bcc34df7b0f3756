"""Section model for reading programs.

A program is split into ``target_count`` numbered sections. When the program
is quarter-subdivided, a section can instead be handed out in four
sub-sections. A section is either whole-assigned or split into quarters,
never both, and the methods below refuse any mutation that would break that.

The whole board is persisted as one JSON document on the program row
(``Program.sections``); ``ReadingBoard.to_payload``/``from_payload`` are the
only code that knows that layout.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional, Union

from tertil.errors import SectionLayoutError, StateError, ValidationError

QUARTER_NUMBERS = (1, 2, 3, 4)
# 1: whole sections only (written before sub-sections existed); 2: quarters allowed
PAYLOAD_SCHEMA = 2


class SectionKind(str, enum.Enum):
    whole = "whole"        # e.g. one juz per section
    quarter = "quarter"    # sections may be split into four sub-sections
    piece = "piece"        # counted recitations, one piece per section


def guest_key(name: str) -> str:
    """Case- and whitespace-insensitive key used to match guest names."""
    return " ".join((name or "").split()).casefold()


@dataclass(frozen=True)
class UserOwner:
    user_id: int


@dataclass(frozen=True)
class GuestOwner:
    name: str

    def __post_init__(self):
        cleaned = " ".join((self.name or "").split())
        if not cleaned:
            raise ValidationError("Guest name is required")
        object.__setattr__(self, "name", cleaned)

    @property
    def key(self) -> str:
        return guest_key(self.name)


Owner = Union[UserOwner, GuestOwner]


def same_owner(a: Optional[Owner], b: Optional[Owner]) -> bool:
    if a is None or b is None:
        return False
    if isinstance(a, UserOwner) and isinstance(b, UserOwner):
        return a.user_id == b.user_id
    if isinstance(a, GuestOwner) and isinstance(b, GuestOwner):
        return a.key == b.key
    return False


class _SlotMixin:
    owner: Optional[Owner]
    assigned_at: Optional[datetime]
    is_completed: bool
    completed_at: Optional[datetime]

    @property
    def is_owned(self) -> bool:
        return self.owner is not None

    def mark_completed(self, now: datetime) -> bool:
        """Flag the slot complete. Returns False when it already was (timestamp kept)."""
        if self.is_completed:
            return False
        if self.owner is None:
            raise SectionLayoutError("An unassigned slot cannot be completed")
        self.is_completed = True
        self.completed_at = now
        return True


@dataclass
class SubSection(_SlotMixin):
    number: int
    owner: Optional[Owner] = None
    assigned_at: Optional[datetime] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class Quarters:
    """Exactly four sub-sections numbered 1-4."""

    __slots__ = ("_by_number",)

    def __init__(self, subsections: Iterable[SubSection]):
        by_number: dict[int, SubSection] = {}
        for sub in subsections:
            if sub.number in by_number:
                raise SectionLayoutError(f"Duplicate sub-section {sub.number}")
            by_number[sub.number] = sub
        if set(by_number) != set(QUARTER_NUMBERS):
            raise SectionLayoutError(
                f"Sub-sections must be numbered {list(QUARTER_NUMBERS)}, got {sorted(by_number)}"
            )
        self._by_number = by_number

    @classmethod
    def empty(cls) -> "Quarters":
        return cls(SubSection(number=n) for n in QUARTER_NUMBERS)

    def __iter__(self) -> Iterator[SubSection]:
        return (self._by_number[n] for n in QUARTER_NUMBERS)

    def __len__(self) -> int:
        return len(self._by_number)

    def __getitem__(self, number: int) -> SubSection:
        return self._by_number[number]

    def get(self, number: int) -> Optional[SubSection]:
        return self._by_number.get(number)

    def any_owned(self) -> bool:
        return any(sub.is_owned for sub in self)

    def fully_done(self) -> bool:
        # all four owned AND completed; owned-and-completed for fewer is not enough
        return all(sub.is_owned and sub.is_completed for sub in self)


@dataclass
class Section(_SlotMixin):
    number: int
    owner: Optional[Owner] = None
    assigned_at: Optional[datetime] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    quarters: Optional[Quarters] = None

    @property
    def is_subdivided(self) -> bool:
        return self.quarters is not None

    @property
    def is_sub_owned(self) -> bool:
        return self.quarters is not None and self.quarters.any_owned()

    @property
    def is_taken(self) -> bool:
        return self.is_owned or self.is_sub_owned

    def subsection(self, number: int) -> Optional[SubSection]:
        if self.quarters is None:
            return None
        return self.quarters.get(number)

    def assign_whole(self, owner: Owner, now: datetime) -> None:
        if self.owner is not None:
            raise SectionLayoutError(f"Section {self.number} is already assigned")
        if self.is_sub_owned:
            raise SectionLayoutError(f"Section {self.number} is split into sub-sections")
        self.quarters = None
        self.owner = owner
        self.assigned_at = now

    def materialize_quarters(self) -> Quarters:
        if self.owner is not None:
            raise SectionLayoutError(f"Section {self.number} is assigned as a whole")
        if self.quarters is None:
            self.quarters = Quarters.empty()
        return self.quarters

    def assign_quarter(self, number: int, owner: Owner, now: datetime) -> SubSection:
        if number not in QUARTER_NUMBERS:
            raise ValidationError(f"Sub-section must be one of {list(QUARTER_NUMBERS)}")
        sub = self.materialize_quarters()[number]
        if sub.owner is not None:
            raise SectionLayoutError(f"Sub-section {self.number}/{number} is already assigned")
        sub.owner = owner
        sub.assigned_at = now
        return sub

    def refresh_completion(self, now: datetime) -> bool:
        """Roll quarter completion up to the section. True if it just became complete."""
        if self.is_completed:
            return False
        if self.quarters is not None and self.quarters.fully_done():
            self.is_completed = True
            self.completed_at = now
            return True
        return False


SlotRef = tuple[int, Optional[int], Union[Section, SubSection]]


class ReadingBoard:
    """All sections of one program, keyed by section number."""

    def __init__(
        self,
        sections: Iterable[Section],
        kind: SectionKind = SectionKind.whole,
        schema: int = PAYLOAD_SCHEMA,
    ):
        by_number: dict[int, Section] = {}
        for section in sections:
            if section.number in by_number:
                raise SectionLayoutError(f"Duplicate section {section.number}")
            by_number[section.number] = section
        if set(by_number) != set(range(1, len(by_number) + 1)):
            raise SectionLayoutError("Section numbers must run from 1 to N without gaps")
        self.kind = SectionKind(kind)
        self.schema = schema
        self._sections = by_number
        if any(s.quarters is not None for s in by_number.values()):
            if self.kind is not SectionKind.quarter or schema < PAYLOAD_SCHEMA:
                raise SectionLayoutError("Sub-sections found on a board that does not allow them")

    @classmethod
    def create(cls, count: int, kind: SectionKind = SectionKind.whole) -> "ReadingBoard":
        if count < 1:
            raise ValidationError("A program needs at least one section")
        return cls((Section(number=n) for n in range(1, count + 1)), kind=kind)

    def __len__(self) -> int:
        return len(self._sections)

    def __iter__(self) -> Iterator[Section]:
        return (self._sections[n] for n in range(1, len(self._sections) + 1))

    def __contains__(self, number: object) -> bool:
        return number in self._sections

    def section(self, number: int) -> Optional[Section]:
        return self._sections.get(number)

    def subsection(self, number: int, quarter: int) -> Optional[SubSection]:
        section = self._sections.get(number)
        return section.subsection(quarter) if section else None

    @property
    def supports_quarters(self) -> bool:
        return self.kind is SectionKind.quarter

    @property
    def is_legacy(self) -> bool:
        return self.schema < PAYLOAD_SCHEMA

    def require_quarter_support(self) -> None:
        if not self.supports_quarters:
            raise ValidationError("This program does not split sections into sub-sections")
        if self.is_legacy:
            # layout predates sub-sections; needs an explicit migration, not a silent upgrade
            raise StateError("This program was created before sub-sections were supported")

    def completed_count(self) -> int:
        return sum(1 for s in self if s.is_completed)

    def is_complete(self) -> bool:
        return len(self) > 0 and self.completed_count() == len(self)

    def iter_slots(self) -> Iterator[SlotRef]:
        for section in self:
            yield section.number, None, section
            if section.quarters is not None:
                for sub in section.quarters:
                    yield section.number, sub.number, sub

    # ------------------------------------------------------------------
    # JSON document
    # ------------------------------------------------------------------
    def to_payload(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "sections": [_section_to_dict(s) for s in self],
        }

    @classmethod
    def from_payload(cls, payload: Optional[dict], kind: SectionKind) -> "ReadingBoard":
        payload = payload or {}
        schema = int(payload.get("schema") or 1)
        sections = [_section_from_dict(raw) for raw in payload.get("sections") or []]
        return cls(sections, kind=kind, schema=schema)


def _owner_to_dict(owner: Optional[Owner]) -> Optional[dict]:
    if isinstance(owner, UserOwner):
        return {"kind": "user", "id": owner.user_id}
    if isinstance(owner, GuestOwner):
        return {"kind": "guest", "name": owner.name}
    return None


def _owner_from_dict(raw: Optional[dict]) -> Optional[Owner]:
    if not raw:
        return None
    kind = raw.get("kind")
    if kind == "user":
        return UserOwner(int(raw["id"]))
    if kind == "guest":
        return GuestOwner(raw["name"])
    raise SectionLayoutError(f"Unknown owner kind {kind!r}")


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _slot_fields(slot: _SlotMixin) -> dict[str, Any]:
    return {
        "owner": _owner_to_dict(slot.owner),
        "assigned_at": _ts(slot.assigned_at),
        "is_completed": slot.is_completed,
        "completed_at": _ts(slot.completed_at),
    }


def _slot_kwargs(raw: dict) -> dict[str, Any]:
    return {
        "owner": _owner_from_dict(raw.get("owner")),
        "assigned_at": _parse_ts(raw.get("assigned_at")),
        "is_completed": bool(raw.get("is_completed")),
        "completed_at": _parse_ts(raw.get("completed_at")),
    }


def _section_to_dict(section: Section) -> dict[str, Any]:
    out = {"number": section.number, **_slot_fields(section)}
    out["quarters"] = (
        [{"number": sub.number, **_slot_fields(sub)} for sub in section.quarters]
        if section.quarters is not None
        else None
    )
    return out


def _section_from_dict(raw: dict) -> Section:
    quarters_raw = raw.get("quarters")
    quarters = None
    if quarters_raw:
        quarters = Quarters(SubSection(number=int(q["number"]), **_slot_kwargs(q)) for q in quarters_raw)
    return Section(number=int(raw["number"]), quarters=quarters, **_slot_kwargs(raw))


__all__ = [
    "QUARTER_NUMBERS",
    "PAYLOAD_SCHEMA",
    "SectionKind",
    "UserOwner",
    "GuestOwner",
    "Owner",
    "guest_key",
    "same_owner",
    "SubSection",
    "Quarters",
    "Section",
    "ReadingBoard",
]
