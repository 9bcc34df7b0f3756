"""Read-side projections of a reading board: who holds what."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from tertil.services.sections import GuestOwner, Owner, ReadingBoard, SectionKind, UserOwner, guest_key, same_owner
from tertil.settings.config import settings


@dataclass(frozen=True, slots=True)
class HeldSelection:
    section: int
    subsection: Optional[int]
    completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {"section": self.section, "subsection": self.subsection, "completed": self.completed}


@dataclass(slots=True)
class ParticipantEntry:
    name: str
    key: str
    is_guest: bool = True
    selections: list[HeldSelection] = field(default_factory=list)

    @property
    def lowest_section(self) -> int:
        return min(s.section for s in self.selections)

    @property
    def is_done(self) -> bool:
        return bool(self.selections) and all(s.completed for s in self.selections)


def display_name(owner: Owner, user_names: Mapping[int, str]) -> str:
    if isinstance(owner, GuestOwner):
        return owner.name
    name = (user_names.get(owner.user_id) or "").strip()
    return name or f"User {owner.user_id}"


def aggregate_participants(board: ReadingBoard, user_names: Mapping[int, str]) -> list[ParticipantEntry]:
    """
    Bucket every owned slot under the case-insensitive display name.
    Output order only depends on board state: participants by lowest section
    (then name key), selections by (section, subsection) with whole first.
    """
    buckets: dict[str, ParticipantEntry] = {}
    for number, quarter, slot in board.iter_slots():
        if slot.owner is None:
            continue
        name = display_name(slot.owner, user_names)
        key = guest_key(name)
        entry = buckets.get(key)
        if entry is None:
            entry = buckets[key] = ParticipantEntry(name=name, key=key)
        entry.is_guest = entry.is_guest and isinstance(slot.owner, GuestOwner)
        entry.selections.append(HeldSelection(number, quarter, slot.is_completed))

    entries = list(buckets.values())
    for entry in entries:
        entry.selections.sort(key=lambda s: (s.section, s.subsection or 0))
    entries.sort(key=lambda e: (e.lowest_section, e.key))
    return entries


def mask_name(name: str, mask: Optional[str] = None) -> str:
    """'Ahmet Yilmaz' -> 'A*** Y***'."""
    mask = settings.NAME_MASK if mask is None else mask
    return " ".join(word[0] + mask for word in (name or "").split())


def participation_sets(board: ReadingBoard, owner: Owner) -> tuple[list[int], list[int]]:
    """
    (sections touched, sections finished) for one owner, derived from the board.
    A section counts as finished for them once every slot they hold in it is complete.
    """
    held: dict[int, bool] = {}
    for number, _quarter, slot in board.iter_slots():
        if same_owner(slot.owner, owner):
            held[number] = held.get(number, True) and slot.is_completed
    parts = sorted(held)
    return parts, [n for n in parts if held[n]]


def board_owners(board: ReadingBoard) -> list[Owner]:
    owners: list[Owner] = []
    for _number, _quarter, slot in board.iter_slots():
        if slot.owner is not None and not any(same_owner(slot.owner, o) for o in owners):
            owners.append(slot.owner)
    return owners


def user_ids_on_board(board: ReadingBoard) -> set[int]:
    return {o.user_id for o in board_owners(board) if isinstance(o, UserOwner)}


def availability_snapshot(board: ReadingBoard) -> dict[str, Any]:
    total = len(board)
    assigned = sum(1 for s in board if s.is_taken)
    partial = sum(1 for s in board if s.is_sub_owned and not all(q.is_owned for q in s.quarters))
    completed = board.completed_count()
    return {
        "assigned": assigned,
        "partially_assigned": partial,
        "completed": completed,
        "available": total - assigned,
        "total": total,
        "percentage": round(completed / total * 100) if total else 0,
    }


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------
_SECTION_LABELS = {
    SectionKind.whole: "Juz",
    SectionKind.quarter: "Juz",
    SectionKind.piece: "Part",
}


def _selection_label(sel: HeldSelection, kind: SectionKind) -> str:
    label = f"{sel.section}. {_SECTION_LABELS.get(kind, 'Part')}"
    if sel.subsection is not None:
        label += f" ({sel.subsection}/4)"
    return label


def render_export(
    title: str,
    participants: list[ParticipantEntry],
    *,
    kind: SectionKind,
    dedicated_to: Optional[str] = None,
    style: str = "text",
    names: Optional[Mapping[str, str]] = None,
) -> str:
    """Plain text or WhatsApp-flavoured listing. ``names`` maps key -> shown name (masking)."""
    whatsapp = style == "whatsapp"
    lines = [f"📖 *{title}*" if whatsapp else f"📖 {title}"]
    if dedicated_to:
        lines.append(f"❤️ _{dedicated_to}_" if whatsapp else f"❤️ {dedicated_to}")
    lines.append("" if whatsapp else f"\n{'─' * 30}\n")

    for p in participants:
        shown = (names or {}).get(p.key, p.name)
        status = "✅" if p.is_done else "⏳"
        parts = ", ".join(_selection_label(s, kind) for s in p.selections)
        lines.append(f"{status} *{shown}* - {parts}" if whatsapp else f"{status} {shown} - {parts}")

    if whatsapp:
        lines.append(f"\n📊 Total: {len(participants)} participants")
    else:
        lines.append(f"\n{'─' * 30}")
        lines.append(f"Total: {len(participants)} participants")
    return "\n".join(lines)


__all__ = [
    "HeldSelection",
    "ParticipantEntry",
    "display_name",
    "aggregate_participants",
    "mask_name",
    "participation_sets",
    "board_owners",
    "user_ids_on_board",
    "availability_snapshot",
    "render_export",
]
