"""Decide which requested sections/sub-sections are free on a board snapshot.

Nothing here mutates the board. A join validates its whole batch with
``check_availability`` first and only commits when the report has no
conflicts, so a request is applied completely or not at all.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, NamedTuple, Optional

from tertil.errors import ValidationError
from tertil.services.sections import QUARTER_NUMBERS, ReadingBoard


class Selection(NamedTuple):
    section: int
    subsection: Optional[int] = None

    @property
    def is_whole(self) -> bool:
        return self.subsection is None

    def sort_key(self) -> tuple[int, int]:
        # whole section sorts before its own quarters
        return self.section, self.subsection or 0

    def to_dict(self) -> dict[str, Any]:
        return {"section": self.section, "subsection": self.subsection}


class ConflictReason(str, enum.Enum):
    not_found = "not_found"
    whole_taken = "whole_taken"
    subsection_taken = "subsection_taken"
    partially_taken = "partially_taken"


@dataclass(frozen=True)
class Conflict:
    selection: Selection
    reason: ConflictReason

    def to_dict(self) -> dict[str, Any]:
        return {**self.selection.to_dict(), "reason": self.reason.value}


@dataclass
class AvailabilityReport:
    free: list[Selection] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicts


def _is_number(value: Any) -> bool:
    # bool is an int subclass; floats and numeric strings are refused, not truncated
    return isinstance(value, int) and not isinstance(value, bool)


def normalize_selections(board: ReadingBoard, raw: Iterable[Any], *, strict: bool = True) -> list[Selection]:
    """Coerce, dedupe and sanity-check a requested batch.

    Accepts ``Selection`` values, ``(section, subsection)`` pairs or bare section
    numbers. Raises ``ValidationError`` for input that is malformed regardless
    of current ownership. ``strict=False`` (completion batches) only checks the
    shape; slots that cannot exist are skipped later instead of rejected.
    """
    selections: list[Selection] = []
    seen: set[Selection] = set()
    for item in raw or []:
        if _is_number(item):
            sel = Selection(item)
        elif isinstance(item, (tuple, list)) and 1 <= len(item) <= 2:
            section = item[0]
            subsection = item[1] if len(item) > 1 else None
            if not _is_number(section) or not (subsection is None or _is_number(subsection)):
                raise ValidationError(f"Invalid selection: {item!r}")
            sel = Selection(section, subsection)
        else:
            raise ValidationError(f"Invalid selection: {item!r}")
        if sel in seen:
            continue
        seen.add(sel)
        selections.append(sel)

    if not selections:
        raise ValidationError("Select at least one section")

    for sel in selections:
        if sel.subsection is not None and sel.subsection not in QUARTER_NUMBERS:
            raise ValidationError(f"Sub-section must be one of {list(QUARTER_NUMBERS)}")
    if not strict:
        return selections

    whole = {s.section for s in selections if s.is_whole}
    quartered = {s.section for s in selections if not s.is_whole}
    if quartered:
        board.require_quarter_support()
    mixed = sorted(whole & quartered)
    if mixed:
        raise ValidationError(
            f"Sections {mixed} were requested both whole and by sub-section in the same request"
        )
    return selections


def check_selection(board: ReadingBoard, sel: Selection) -> Optional[ConflictReason]:
    section = board.section(sel.section)
    if section is None:
        return ConflictReason.not_found
    if sel.is_whole:
        if section.is_owned:
            return ConflictReason.whole_taken
        if section.is_sub_owned:
            return ConflictReason.partially_taken
        return None
    if section.is_owned:
        return ConflictReason.whole_taken
    sub = section.subsection(sel.subsection)
    # quarters are created lazily, so a missing one is simply free
    if sub is not None and sub.is_owned:
        return ConflictReason.subsection_taken
    return None


def check_availability(board: ReadingBoard, selections: Iterable[Selection]) -> AvailabilityReport:
    report = AvailabilityReport()
    for sel in selections:
        reason = check_selection(board, sel)
        if reason is None:
            report.free.append(sel)
        else:
            report.conflicts.append(Conflict(sel, reason))
    return report


__all__ = [
    "Selection",
    "ConflictReason",
    "Conflict",
    "AvailabilityReport",
    "normalize_selections",
    "check_selection",
    "check_availability",
]
