from datetime import datetime
from typing import Sequence

from tertil.errors import ConflictError, SectionLayoutError
from tertil.services.availability import Selection, check_availability
from tertil.services.sections import Owner, ReadingBoard


def assign_selections(board: ReadingBoard, selections: Sequence[Selection], owner: Owner, now: datetime) -> list[int]:
    """
    Hand every selection to ``owner``. The caller must have checked the batch;
    this only enforces the structural rules of the section model.
    Returns the touched section numbers, ascending and unique.
    """
    touched: set[int] = set()
    for sel in selections:
        section = board.section(sel.section)
        if section is None:
            raise SectionLayoutError(f"Section {sel.section} does not exist")
        if sel.is_whole:
            section.assign_whole(owner, now)
        else:
            section.assign_quarter(sel.subsection, owner, now)
        touched.add(sel.section)
    return sorted(touched)


def reserve(board: ReadingBoard, selections: Sequence[Selection], owner: Owner, now: datetime) -> list[int]:
    """
    Check-and-set on one board snapshot: re-check the batch against this copy,
    then assign. Any conflict rejects the whole batch before anything changes.
    """
    report = check_availability(board, selections)
    if not report.ok:
        raise ConflictError("Some of the selected sections are no longer available", report.conflicts)
    return assign_selections(board, selections, owner, now)
