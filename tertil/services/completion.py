"""Completion cascade: sub-section -> section -> program.

Requested slots are flagged first, then every section is re-evaluated, so a
batch that finishes the last quarter of a section also finishes the section
in the same call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from tertil.services.availability import Selection
from tertil.services.sections import Owner, ReadingBoard, same_owner


@dataclass(frozen=True)
class Actor:
    """Who is asking: their own slot identity plus whether they hold owner rights."""

    owner: Optional[Owner] = None
    privileged: bool = False  # program creator or admin
    # set by a privileged caller completing for one named participant only
    on_behalf_of: Optional[Owner] = None

    def may_complete(self, slot_owner: Optional[Owner]) -> bool:
        if slot_owner is None:
            return False
        if self.privileged:
            return self.on_behalf_of is None or same_owner(slot_owner, self.on_behalf_of)
        return same_owner(slot_owner, self.owner)


@dataclass
class CompletionOutcome:
    marked: list[Selection] = field(default_factory=list)
    already_completed: list[Selection] = field(default_factory=list)
    skipped: list[Selection] = field(default_factory=list)
    newly_completed_sections: list[int] = field(default_factory=list)
    credited_owners: list[Owner] = field(default_factory=list)
    completed_parts: int = 0
    total_parts: int = 0

    @property
    def program_complete(self) -> bool:
        return self.total_parts > 0 and self.completed_parts == self.total_parts

    @property
    def changed(self) -> bool:
        return bool(self.marked or self.newly_completed_sections)


def mark_selections_complete(
    board: ReadingBoard,
    selections: Iterable[Selection],
    actor: Actor,
    now: datetime,
) -> CompletionOutcome:
    outcome = CompletionOutcome(total_parts=len(board))

    for sel in selections:
        if sel.is_whole:
            slot = board.section(sel.section)
        else:
            slot = board.subsection(sel.section, sel.subsection)
        # missing, unassigned or someone else's: skipped, the batch goes on
        if slot is None or not actor.may_complete(slot.owner):
            outcome.skipped.append(sel)
            continue
        if slot.mark_completed(now):
            outcome.marked.append(sel)
        else:
            outcome.already_completed.append(sel)
        if not any(same_owner(slot.owner, o) for o in outcome.credited_owners):
            outcome.credited_owners.append(slot.owner)

    for section in board:
        if section.refresh_completion(now):
            outcome.newly_completed_sections.append(section.number)

    outcome.completed_parts = board.completed_count()
    return outcome


__all__ = ["Actor", "CompletionOutcome", "mark_selections_complete"]
