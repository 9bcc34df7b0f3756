# services/assignment.py
"""Join and completion flows against the program store.

Every write follows the same shape: re-read the program row (locked where the
database supports it), rebuild the board, decide on that fresh copy, write the
program and the participation rows in one transaction. The program row carries
a version counter, so a writer that read an older version gets a
``StaleDataError`` instead of silently overwriting; the flow is then retried
from the read.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tertil.background import spawn
from tertil.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from tertil.models import Participation, Program, ProgramStatus, User
from tertil.services.assignment_core import reserve
from tertil.services.availability import Selection, normalize_selections
from tertil.services.completion import Actor, mark_selections_complete
from tertil.services.identity import Identity, has_owner_rights
from tertil.services.notifications import notify_program_completed
from tertil.services.participants import (
    ParticipantEntry,
    aggregate_participants,
    availability_snapshot,
    board_owners,
    mask_name,
    participation_sets,
    render_export,
    user_ids_on_board,
)
from tertil.services.sections import GuestOwner, Owner, ReadingBoard, UserOwner
from tertil.settings.config import settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_program_id(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        pid = value
    else:
        text = str(value or "").strip()
        if not text.isdigit():
            raise ValidationError("Invalid program ID")
        pid = int(text)
    if pid <= 0:
        raise ValidationError("Invalid program ID")
    return pid


# ---------------------------------------------
# Store helpers
# ---------------------------------------------
async def load_program(db: AsyncSession, program_id: int, *, for_update: bool = False) -> Program:
    program = await db.get(Program, program_id, populate_existing=True, with_for_update=for_update or None)
    if program is None:
        raise NotFoundError("Program not found")
    return program


async def participation_for(db: AsyncSession, program_id: int, owner: Owner) -> Optional[Participation]:
    stmt = select(Participation).where(Participation.program_id == program_id)
    if isinstance(owner, UserOwner):
        stmt = stmt.where(Participation.user_id == owner.user_id)
    else:
        stmt = stmt.where(Participation.guest_key == owner.key)
    return (await db.execute(stmt)).scalars().first()


def _new_participation(program_id: int, owner: Owner, added_by: Optional[int] = None) -> Participation:
    if isinstance(owner, UserOwner):
        return Participation(program_id=program_id, user_id=owner.user_id, is_guest=False, parts=[], completed_parts=[])
    return Participation(
        program_id=program_id,
        guest_name=owner.name,
        guest_key=owner.key,
        is_guest=True,
        added_by=added_by,
        parts=[],
        completed_parts=[],
    )


def _union(existing: Optional[Iterable[int]], extra: Iterable[int]) -> list[int]:
    return sorted(set(existing or []) | set(extra))


async def user_names(db: AsyncSession, user_ids: Iterable[int]) -> dict[int, str]:
    ids = list(user_ids)
    if not ids:
        return {}
    rows = (await db.execute(select(User).where(User.id.in_(ids)))).scalars().all()
    return {u.id: (u.full_name or u.email) for u in rows}


# ---------------------------------------------
# Join
# ---------------------------------------------
@dataclass
class JoinResult:
    applied: list[Selection]
    participant: str
    is_guest: bool
    total_participants: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "applied": [s.to_dict() for s in self.applied],
            "participant": self.participant,
            "is_guest": self.is_guest,
            "total_participants": self.total_participants,
        }


def _ensure_joinable(program: Program, identity: Identity) -> None:
    if not program.is_approved or program.status != ProgramStatus.active:
        raise StateError("Program is not active")
    if not program.is_public and not has_owner_rights(identity, program):
        raise AuthorizationError("This is a private program; only its owner can add participants")


def resolve_join_owner(
    identity: Identity,
    program: Program,
    guest_name: Optional[str] = None,
    participant_name: Optional[str] = None,
) -> tuple[Owner, bool]:
    """Who the sections go to, and whether the caller is assigning for someone else."""
    privileged = has_owner_rights(identity, program)
    proxy_name = (participant_name or "").strip() or ((guest_name or "").strip() if privileged else "")
    if proxy_name and not identity.is_anonymous:
        if not privileged:
            raise AuthorizationError("Only the program owner can add participants by name")
        return GuestOwner(proxy_name), True
    if identity.user_id is not None:
        return UserOwner(identity.user_id), False
    if not (guest_name or "").strip():
        raise ValidationError("Name is required to join as a guest")
    return GuestOwner(guest_name), False


async def check_and_join(
    db: AsyncSession,
    program_id: Any,
    identity: Identity,
    selections: Iterable[Any],
    *,
    guest_name: Optional[str] = None,
    participant_name: Optional[str] = None,
) -> JoinResult:
    pid = parse_program_id(program_id)
    requested = list(selections or [])
    if not requested:
        raise ValidationError("Select at least one section")
    if identity.is_anonymous and not (guest_name or "").strip():
        raise ValidationError("Name is required to join as a guest")

    attempts = settings.JOIN_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        program = await load_program(db, pid, for_update=True)
        try:
            _ensure_joinable(program, identity)
            owner, proxied = resolve_join_owner(identity, program, guest_name, participant_name)
            board = program.board()
            batch = normalize_selections(board, requested)
            touched = reserve(board, batch, owner, _now())
        except ConflictError as exc:
            await db.rollback()
            logger.info(
                "Join on program %s rejected, %d conflicting selection(s): %s",
                pid, len(exc.conflicts), [c.to_dict() for c in exc.conflicts],
            )
            raise
        except Exception:
            await db.rollback()
            raise

        program.store_board(board)
        participation = await participation_for(db, pid, owner)
        if participation is None:
            participation = _new_participation(pid, owner, identity.user_id if proxied else None)
            db.add(participation)
            program.total_participants = (program.total_participants or 0) + 1
        participation.parts = _union(participation.parts, touched)
        total = program.total_participants

        try:
            await db.commit()
        except (StaleDataError, IntegrityError):
            await db.rollback()
            logger.warning("Join on program %s lost a write race (attempt %d/%d)", pid, attempt, attempts)
            continue

        logger.info("Program %s: %s joined sections %s", pid, _owner_label(owner), touched)
        return JoinResult(
            applied=sorted(batch, key=Selection.sort_key),
            participant=owner.name if isinstance(owner, GuestOwner) else str(owner.user_id),
            is_guest=isinstance(owner, GuestOwner),
            total_participants=total,
        )

    raise ConflictError("The program changed while you were joining; reload and try again")


def _owner_label(owner: Owner) -> str:
    return f"guest {owner.name!r}" if isinstance(owner, GuestOwner) else f"user {owner.user_id}"


# ---------------------------------------------
# Completion
# ---------------------------------------------
@dataclass
class CompletionResult:
    completed_count: int
    completed_parts: int
    total_parts: int
    program_now_complete: bool
    status: str
    skipped: list[Selection] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed_count": self.completed_count,
            "completed_parts": self.completed_parts,
            "total_parts": self.total_parts,
            "program_now_complete": self.program_now_complete,
            "status": self.status,
            "skipped": [s.to_dict() for s in self.skipped],
        }


def _completion_actor(
    identity: Identity,
    program: Program,
    guest_name: Optional[str],
    acting_as_owner_for: Optional[str],
) -> Actor:
    privileged = has_owner_rights(identity, program)
    if identity.user_id is not None:
        own: Optional[Owner] = UserOwner(identity.user_id)
    elif (guest_name or "").strip():
        own = GuestOwner(guest_name)
    else:
        own = None
    on_behalf = GuestOwner(acting_as_owner_for) if privileged and (acting_as_owner_for or "").strip() else None
    return Actor(owner=own, privileged=privileged, on_behalf_of=on_behalf)


async def _credit_owners(db: AsyncSession, program: Program, board: ReadingBoard, owners: Iterable[Owner]) -> None:
    for owner in owners:
        parts, done = participation_sets(board, owner)
        participation = await participation_for(db, program.id, owner)
        if participation is None:
            # cache drifted; the board is authoritative, so re-create the row
            logger.warning("Program %s: no participation for %s, re-creating", program.id, _owner_label(owner))
            participation = _new_participation(program.id, owner)
            db.add(participation)
            program.total_participants = (program.total_participants or 0) + 1
        participation.parts = _union(participation.parts, parts)
        participation.completed_parts = _union(participation.completed_parts, done)


async def mark_complete(
    db: AsyncSession,
    program_id: Any,
    identity: Identity,
    selections: Iterable[Any],
    *,
    guest_name: Optional[str] = None,
    acting_as_owner_for: Optional[str] = None,
) -> CompletionResult:
    pid = parse_program_id(program_id)
    requested = list(selections or [])
    if not requested:
        raise ValidationError("Select at least one section")

    attempts = settings.JOIN_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        program = await load_program(db, pid, for_update=True)
        try:
            if program.status == ProgramStatus.completed:
                raise StateError("Program is already completed")
            if not program.is_approved or program.status != ProgramStatus.active:
                raise StateError("Program is not active")
            board = program.board()
            batch = normalize_selections(board, requested, strict=False)
            actor = _completion_actor(identity, program, guest_name, acting_as_owner_for)
        except Exception:
            await db.rollback()
            raise

        outcome = mark_selections_complete(board, batch, actor, _now())
        result = CompletionResult(
            completed_count=len(outcome.marked),
            completed_parts=outcome.completed_parts,
            total_parts=outcome.total_parts,
            program_now_complete=outcome.program_complete,
            status=(ProgramStatus.completed if outcome.program_complete else program.status).value,
            skipped=outcome.skipped,
        )
        if outcome.skipped:
            logger.info("Program %s: skipped %d selection(s) the caller may not complete", pid, len(outcome.skipped))
        if not outcome.changed:
            # nothing new; release the row lock without writing
            await db.rollback()
            return result

        program.store_board(board)
        became_complete = outcome.program_complete
        if became_complete:
            program.status = ProgramStatus.completed
        await _credit_owners(db, program, board, outcome.credited_owners)

        try:
            await db.commit()
        except (StaleDataError, IntegrityError):
            await db.rollback()
            logger.warning("Completion on program %s lost a write race (attempt %d/%d)", pid, attempt, attempts)
            continue

        logger.info(
            "Program %s: %d selection(s) completed, %d/%d sections done",
            pid, result.completed_count, result.completed_parts, result.total_parts,
        )
        if became_complete:
            logger.info("Program %s completed", pid)
            spawn(notify_program_completed(pid), name=f"notify-completed-{pid}")
        return result

    raise ConflictError("The program changed while saving; reload and try again")


# ---------------------------------------------
# Read side
# ---------------------------------------------
@dataclass
class ParticipantsView:
    title: str
    dedicated_to: Optional[str]
    kind: Any
    entries: list[ParticipantEntry]
    can_see_full_names: bool

    def shown_name(self, entry: ParticipantEntry) -> str:
        return entry.name if self.can_see_full_names else mask_name(entry.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "participants": [
                {
                    "name": self.shown_name(e),
                    "is_guest": e.is_guest,
                    "selections": [s.to_dict() for s in e.selections],
                }
                for e in self.entries
            ],
            "total_participants": len(self.entries),
            "can_see_full_names": self.can_see_full_names,
        }

    def export(self, style: str = "text") -> str:
        return render_export(
            self.title,
            self.entries,
            kind=self.kind,
            dedicated_to=self.dedicated_to,
            style=style,
            names={e.key: self.shown_name(e) for e in self.entries},
        )


async def get_participants(db: AsyncSession, program_id: Any, identity: Identity) -> ParticipantsView:
    program = await load_program(db, parse_program_id(program_id))
    privileged = has_owner_rights(identity, program)
    if not program.is_approved and not privileged:
        raise AuthorizationError("Program not accessible")
    board = program.board()
    names = await user_names(db, user_ids_on_board(board))
    return ParticipantsView(
        title=program.title,
        dedicated_to=program.dedicated_to,
        kind=program.section_kind,
        entries=aggregate_participants(board, names),
        can_see_full_names=privileged,
    )


async def get_availability_snapshot(db: AsyncSession, program_id: Any, identity: Identity) -> dict[str, Any]:
    program = await load_program(db, parse_program_id(program_id))
    if not program.is_approved and not has_owner_rights(identity, program):
        raise AuthorizationError("Program not accessible")
    return availability_snapshot(program.board())


async def rebuild_participations(db: AsyncSession, program_id: Any, identity: Identity) -> dict[str, int]:
    """Re-derive every Participation row of a program from its section document."""
    pid = parse_program_id(program_id)
    program = await load_program(db, pid, for_update=True)
    if not has_owner_rights(identity, program):
        await db.rollback()
        raise AuthorizationError("Only the program owner or an admin can repair participations")

    board = program.board()
    existing = (await db.execute(select(Participation).where(Participation.program_id == pid))).scalars().all()
    owners = board_owners(board)
    kept: set[int] = set()
    created = 0
    for owner in owners:
        parts, done = participation_sets(board, owner)
        participation = await participation_for(db, pid, owner)
        if participation is None:
            participation = _new_participation(pid, owner)
            db.add(participation)
            created += 1
        participation.parts = parts
        participation.completed_parts = done
        if participation.id is not None:
            kept.add(participation.id)

    removed = 0
    for row in existing:
        if row.id not in kept:
            await db.delete(row)
            removed += 1
    program.total_participants = len(owners)

    try:
        await db.commit()
    except (StaleDataError, IntegrityError):
        await db.rollback()
        raise ConflictError("The program changed during the rebuild; try again")
    logger.info("Program %s: participations rebuilt (%d created, %d removed)", pid, created, removed)
    return {"participants": len(owners), "created": created, "removed": removed}


__all__ = [
    "parse_program_id",
    "load_program",
    "participation_for",
    "user_names",
    "JoinResult",
    "resolve_join_owner",
    "check_and_join",
    "CompletionResult",
    "mark_complete",
    "ParticipantsView",
    "get_participants",
    "get_availability_snapshot",
    "rebuild_participations",
]
