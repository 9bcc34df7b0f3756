# services/programs.py
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tertil.background import spawn
from tertil.errors import AuthorizationError, StateError, ValidationError
from tertil.models import Participation, Program, ProgramStatus, ProgramType, User
from tertil.services.assignment import load_program, parse_program_id, participation_for
from tertil.services.identity import Identity, has_owner_rights, is_creator
from tertil.services.notifications import notify_program_approved
from tertil.services.participants import availability_snapshot
from tertil.services.sections import ReadingBoard, SectionKind, UserOwner
from tertil.settings.config import settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def create_program(
    db: AsyncSession,
    identity: Identity,
    *,
    title: str,
    program_type: ProgramType,
    start_date: datetime,
    end_date: datetime,
    target_count: int,
    section_kind: SectionKind,
    description: Optional[str] = None,
    custom_type: Optional[str] = None,
    dedicated_to: Optional[str] = None,
    is_public: bool = True,
) -> Program:
    if identity.is_anonymous:
        raise AuthorizationError("Authentication required")
    title = (title or "").strip()
    if not title:
        raise ValidationError("Program title is required")
    if not 1 <= int(target_count) <= settings.MAX_SECTIONS:
        raise ValidationError(f"Target count must be between 1 and {settings.MAX_SECTIONS}")
    if _aware(start_date) >= _aware(end_date):
        raise ValidationError("End date must be after start date")

    board = ReadingBoard.create(int(target_count), SectionKind(section_kind))
    auto_approve = identity.is_admin
    now = _now()
    program = Program(
        title=title,
        description=(description or "").strip() or None,
        program_type=ProgramType(program_type),
        custom_type=(custom_type or "").strip() or None,
        created_by=identity.user_id,
        start_date=start_date,
        end_date=end_date,
        target_count=int(target_count),
        section_kind=SectionKind(section_kind),
        sections=board.to_payload(),
        dedicated_to=(dedicated_to or "").strip() or None,
        is_public=is_public,
        is_approved=auto_approve,
        status=ProgramStatus.active if auto_approve else ProgramStatus.pending,
        approved_by=identity.user_id if auto_approve else None,
        approved_at=now if auto_approve else None,
        total_participants=0,
        completed_parts=0,
    )
    db.add(program)
    await db.commit()
    logger.info("Program %s created by user %s (%s)", program.id, identity.user_id, program.status.value)
    return program


async def approve_program(db: AsyncSession, program_id: Any, identity: Identity) -> Program:
    if not identity.is_admin:
        raise AuthorizationError("Admin access required")
    program = await load_program(db, parse_program_id(program_id), for_update=True)
    if program.is_approved:
        await db.rollback()
        raise StateError("Program is already approved")
    program.is_approved = True
    program.approved_by = identity.user_id
    program.approved_at = _now()
    program.status = ProgramStatus.active
    await db.commit()
    logger.info("Program %s approved by admin %s", program.id, identity.user_id)
    spawn(notify_program_approved(program.id), name=f"notify-approved-{program.id}")
    return program


async def reject_program(db: AsyncSession, program_id: Any, identity: Identity) -> Program:
    if not identity.is_admin:
        raise AuthorizationError("Admin access required")
    program = await load_program(db, parse_program_id(program_id), for_update=True)
    if program.status == ProgramStatus.completed:
        await db.rollback()
        raise StateError("A completed program cannot be cancelled")
    program.status = ProgramStatus.cancelled
    await db.commit()
    logger.info("Program %s cancelled by admin %s", program.id, identity.user_id)
    return program


async def delete_program(db: AsyncSession, program_id: Any, identity: Identity) -> None:
    pid = parse_program_id(program_id)
    program = await load_program(db, pid)
    if not has_owner_rights(identity, program):
        raise AuthorizationError("Not authorized to delete this program")
    await db.execute(delete(Participation).where(Participation.program_id == pid))
    await db.delete(program)
    await db.commit()
    logger.info("Program %s deleted by user %s", pid, identity.user_id)


async def list_programs(
    db: AsyncSession,
    *,
    status: str = "active",
    program_type: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
) -> dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    preds = [Program.is_approved.is_(True), Program.is_public.is_(True)]
    if status in ("active", "completed"):
        preds.append(Program.status == ProgramStatus(status))
    elif status != "all":
        raise ValidationError("status must be one of active, completed, all")
    if program_type and program_type != "all":
        try:
            preds.append(Program.program_type == ProgramType(program_type))
        except ValueError:
            raise ValidationError(f"Unknown program type {program_type!r}") from None

    total = (await db.execute(select(func.count(Program.id)).where(*preds))).scalar_one()
    rows = (
        await db.execute(
            select(Program)
            .where(*preds)
            .order_by(Program.created_at.desc(), Program.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return {
        "programs": [program_summary(p) for p in rows],
        "total": total,
        "page": page,
        "total_pages": -(-total // limit),
    }


def program_summary(program: Program) -> dict[str, Any]:
    return {
        "id": program.id,
        "title": program.title,
        "description": program.description,
        "program_type": program.program_type.value,
        "custom_type": program.custom_type,
        "section_kind": program.section_kind.value,
        "target_count": program.target_count,
        "status": program.status.value,
        "is_approved": program.is_approved,
        "is_public": program.is_public,
        "dedicated_to": program.dedicated_to,
        "start_date": program.start_date,
        "end_date": program.end_date,
        "total_participants": program.total_participants,
        "completed_parts": program.completed_parts,
        "progress": program.progress,
    }


def masked_sections(board: ReadingBoard) -> list[dict[str, Any]]:
    """Section states without owner identities."""
    out = []
    for section in board:
        item: dict[str, Any] = {
            "number": section.number,
            "is_assigned": section.is_owned,
            "is_completed": section.is_completed,
            "subsections": None,
        }
        if section.quarters is not None:
            item["subsections"] = [
                {"number": q.number, "is_assigned": q.is_owned, "is_completed": q.is_completed}
                for q in section.quarters
            ]
        out.append(item)
    return out


async def program_detail(db: AsyncSession, program_id: Any, identity: Identity) -> dict[str, Any]:
    pid = parse_program_id(program_id)
    program = await load_program(db, pid)
    if not program.is_approved and not has_owner_rights(identity, program):
        raise AuthorizationError("Program not accessible")

    board = program.board()
    mine = None
    if identity.user_id is not None:
        participation = await participation_for(db, pid, UserOwner(identity.user_id))
        if participation is not None:
            mine = {
                "parts": list(participation.parts or []),
                "completed_parts": list(participation.completed_parts or []),
                "joined_at": participation.joined_at,
            }
    return {
        "program": {
            **program_summary(program),
            "sections": masked_sections(board),
            "availability": availability_snapshot(board),
            "is_creator": is_creator(identity, program),
        },
        "my_participation": mine,
    }


async def user_dashboard(db: AsyncSession, identity: Identity) -> dict[str, Any]:
    if identity.is_anonymous:
        raise AuthorizationError("Authentication required")
    uid = identity.user_id

    created = (
        await db.execute(select(Program).where(Program.created_by == uid).order_by(Program.created_at.desc()))
    ).scalars().all()
    joined_rows = (
        await db.execute(
            select(Participation, Program)
            .join(Program, Program.id == Participation.program_id)
            .where(Participation.user_id == uid)
            .order_by(Participation.joined_at.desc())
        )
    ).all()
    active_count = (
        await db.execute(
            select(func.count(Program.id)).where(Program.is_approved.is_(True), Program.status == ProgramStatus.active)
        )
    ).scalar_one()
    completed_count = (
        await db.execute(select(func.count(Program.id)).where(Program.status == ProgramStatus.completed))
    ).scalar_one()

    joined = [
        {
            "program": program_summary(program),
            "my_parts": list(part.parts or []),
            "completed_parts": list(part.completed_parts or []),
            "joined_at": part.joined_at,
        }
        for part, program in joined_rows
    ]
    return {
        "my_created_programs": [program_summary(p) for p in created],
        "my_joined_programs": joined,
        "stats": {
            "active_programs": active_count,
            "completed_programs": completed_count,
            "total_participations": len(joined),
            "completed_readings": sum(len(j["completed_parts"]) for j in joined),
            "my_created_count": len(created),
            "my_joined_count": len(joined),
        },
        "is_admin": identity.is_admin,
    }


async def admin_overview(db: AsyncSession, identity: Identity) -> dict[str, Any]:
    """Programs waiting for approval, every program, and counts per status."""
    if not identity.is_admin:
        raise AuthorizationError("Admin access required")

    rows = (
        await db.execute(
            select(Program, User)
            .join(User, User.id == Program.created_by)
            .order_by(Program.created_at.desc(), Program.id.desc())
        )
    ).all()
    counts = dict(
        (await db.execute(select(Program.status, func.count(Program.id)).group_by(Program.status))).all()
    )

    def _with_creator(program: Program, creator: User) -> dict[str, Any]:
        return {
            **program_summary(program),
            "created_by": {
                "id": creator.id,
                "first_name": creator.first_name,
                "last_name": creator.last_name,
                "email": creator.email,
            },
        }

    all_programs = [_with_creator(p, u) for p, u in rows]
    pending = [
        item
        for item, (program, _creator) in zip(all_programs, rows)
        if not program.is_approved and program.status != ProgramStatus.cancelled
    ]
    return {
        "pending_programs": pending,
        "all_programs": all_programs,
        "stats": {
            **{status.value: counts.get(status, 0) for status in ProgramStatus},
            "total": len(all_programs),
        },
    }
