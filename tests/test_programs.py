from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from tertil.errors import AuthorizationError, StateError, ValidationError
from tertil.models import ProgramStatus, ProgramType
from tertil.schemas import ProgramCreated
from tertil.services import programs as program_service
from tertil.services.identity import ANONYMOUS, Identity
from tertil.services.sections import SectionKind

START = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _fields(**overrides):
    fields = dict(
        title="  Yasin for Ali  ",
        program_type=ProgramType.yasin,
        start_date=START,
        end_date=START + timedelta(days=7),
        target_count=41,
        section_kind=SectionKind.piece,
    )
    fields.update(overrides)
    return fields


async def test_user_programs_wait_for_approval(db, make_user):
    user = await make_user()
    program = await program_service.create_program(db, Identity.from_user(user), **_fields())
    assert program.title == "Yasin for Ali"
    assert program.status == ProgramStatus.pending
    assert not program.is_approved
    board = program.board()
    assert len(board) == 41 and board.kind is SectionKind.piece
    assert program.version == 1


async def test_admin_programs_start_active(db, make_user):
    admin = await make_user(admin=True)
    program = await program_service.create_program(db, Identity.from_user(admin), **_fields())
    assert program.status == ProgramStatus.active
    assert program.approved_by == admin.id


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"target_count": 0},
        {"target_count": 100000},
        {"end_date": START},
    ],
)
async def test_create_validation(db, make_user, overrides):
    user = await make_user()
    with pytest.raises(ValidationError):
        await program_service.create_program(db, Identity.from_user(user), **_fields(**overrides))


async def test_anonymous_cannot_create(db):
    with pytest.raises(AuthorizationError):
        await program_service.create_program(db, ANONYMOUS, **_fields())


async def test_approve_twice_and_reject_completed(db, make_user, make_program, sent_notifications):
    admin = await make_user(admin=True)
    creator = await make_user()
    program = await make_program(creator, status=ProgramStatus.pending, approved=False)
    boss = Identity.from_user(admin)

    with pytest.raises(AuthorizationError):
        await program_service.approve_program(db, program.id, Identity.from_user(creator))
    await program_service.approve_program(db, program.id, boss)
    with pytest.raises(StateError):
        await program_service.approve_program(db, program.id, boss)

    done = await make_program(creator, status=ProgramStatus.completed)
    with pytest.raises(StateError):
        await program_service.reject_program(db, done.id, boss)


async def test_listing_filters_and_pages(db, make_user, make_program):
    creator = await make_user()
    for n in range(3):
        await make_program(creator, title=f"Active {n}")
    await make_program(creator, title="Done", status=ProgramStatus.completed)
    await make_program(creator, title="Hidden", is_public=False)
    await make_program(creator, title="Waiting", status=ProgramStatus.pending, approved=False)

    page = await program_service.list_programs(db, status="active", limit=2)
    assert page["total"] == 3 and page["total_pages"] == 2 and len(page["programs"]) == 2
    everything = await program_service.list_programs(db, status="all")
    assert everything["total"] == 4
    with pytest.raises(ValidationError):
        await program_service.list_programs(db, status="bogus")
    with pytest.raises(ValidationError):
        await program_service.list_programs(db, program_type="bogus")


async def test_unapproved_program_detail_is_owner_only(db, make_user, make_program):
    creator = await make_user()
    program = await make_program(creator, status=ProgramStatus.pending, approved=False)
    with pytest.raises(AuthorizationError):
        await program_service.program_detail(db, program.id, ANONYMOUS)
    detail = await program_service.program_detail(db, program.id, Identity.from_user(creator))
    assert detail["program"]["is_creator"] is True
    assert detail["program"]["availability"]["available"] == 30


async def test_admin_overview_lists_pending_programs_and_counts(db, make_user, make_program):
    admin = await make_user("Admin", "User", admin=True)
    creator = await make_user("Zehra", "Kaya")
    waiting = await make_program(creator, title="Waiting", status=ProgramStatus.pending, approved=False)
    await make_program(creator, title="Rejected", status=ProgramStatus.cancelled, approved=False)
    await make_program(creator, title="Running")
    await make_program(creator, title="Private", is_public=False)

    with pytest.raises(AuthorizationError):
        await program_service.admin_overview(db, Identity.from_user(creator))

    overview = await program_service.admin_overview(db, Identity.from_user(admin))
    assert [p["id"] for p in overview["pending_programs"]] == [waiting.id]
    assert overview["pending_programs"][0]["created_by"]["first_name"] == "Zehra"
    assert len(overview["all_programs"]) == 4
    assert overview["stats"] == {"pending": 1, "active": 2, "completed": 0, "cancelled": 1, "total": 4}


def test_created_schema_reads_orm_attributes():
    row = SimpleNamespace(id=7, title="Hatim", status="pending", is_approved=False)
    assert ProgramCreated.model_validate(row).model_dump() == {
        "id": 7,
        "title": "Hatim",
        "status": "pending",
        "is_approved": False,
    }
