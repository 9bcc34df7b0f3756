from datetime import datetime, timezone

from tertil.services.assignment_core import reserve
from tertil.services.availability import Selection
from tertil.services.participants import (
    aggregate_participants,
    availability_snapshot,
    board_owners,
    mask_name,
    participation_sets,
    render_export,
)
from tertil.services.sections import GuestOwner, ReadingBoard, SectionKind, UserOwner

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _board():
    board = ReadingBoard.create(6, SectionKind.quarter)
    reserve(board, [Selection(4), Selection(2)], UserOwner(1), NOW)
    reserve(board, [Selection(1, 3)], GuestOwner("zeynep arslan"), NOW)
    reserve(board, [Selection(5, 1)], GuestOwner("Zeynep  Arslan"), NOW)
    reserve(board, [Selection(1, 1)], GuestOwner("Bekir"), NOW)
    return board


def test_participants_are_grouped_by_name_and_ordered_by_lowest_section():
    entries = aggregate_participants(_board(), {1: "Ahmet Yilmaz"})
    assert [e.name for e in entries] == ["Bekir", "zeynep arslan", "Ahmet Yilmaz"]
    zeynep = entries[1]
    assert [(s.section, s.subsection) for s in zeynep.selections] == [(1, 3), (5, 1)]
    assert zeynep.is_guest
    assert not entries[2].is_guest
    assert [s.section for s in entries[2].selections] == [2, 4]


def test_unknown_user_gets_placeholder_name():
    entries = aggregate_participants(_board(), {})
    assert entries[-1].name == "User 1"


def test_user_and_guest_with_same_name_share_a_bucket():
    board = ReadingBoard.create(3, SectionKind.whole)
    reserve(board, [Selection(3)], UserOwner(9), NOW)
    reserve(board, [Selection(1)], GuestOwner("ali veli"), NOW)
    entries = aggregate_participants(board, {9: "Ali Veli"})
    assert len(entries) == 1
    assert [s.section for s in entries[0].selections] == [1, 3]
    assert entries[0].is_guest is False


def test_mask_name():
    assert mask_name("Ahmet Yilmaz") == "A*** Y***"
    assert mask_name("  Bekir ") == "B***"
    assert mask_name("Ali Can", mask="..") == "A.. C.."
    assert mask_name("") == ""


def test_participation_sets_need_every_held_slot_done():
    board = ReadingBoard.create(3, SectionKind.quarter)
    owner = GuestOwner("Hasan")
    reserve(board, [Selection(1, 1), Selection(1, 2), Selection(2)], owner, NOW)
    board.subsection(1, 1).mark_completed(NOW)
    board.section(2).mark_completed(NOW)
    assert participation_sets(board, owner) == ([1, 2], [2])
    board.subsection(1, 2).mark_completed(NOW)
    assert participation_sets(board, owner) == ([1, 2], [1, 2])


def test_board_owners_are_distinct():
    owners = board_owners(_board())
    assert UserOwner(1) in owners
    assert sum(1 for o in owners if isinstance(o, GuestOwner) and o.key == "zeynep arslan") == 1
    assert len(owners) == 3


def test_availability_snapshot():
    board = _board()
    board.section(2).mark_completed(NOW)
    snap = availability_snapshot(board)
    assert snap == {
        "assigned": 4,
        "partially_assigned": 2,
        "completed": 1,
        "available": 2,
        "total": 6,
        "percentage": 17,
    }


def test_export_text_and_whatsapp():
    board = _board()
    board.section(2).mark_completed(NOW)
    board.section(4).mark_completed(NOW)
    entries = aggregate_participants(board, {1: "Ahmet Yilmaz"})

    text = render_export("Hatim for Grandma", entries, kind=SectionKind.quarter, dedicated_to="Grandma")
    assert text.startswith("📖 Hatim for Grandma")
    assert "❤️ Grandma" in text
    assert "✅ Ahmet Yilmaz - 2. Juz, 4. Juz" in text
    assert "⏳ zeynep arslan - 1. Juz (3/4), 5. Juz (1/4)" in text
    assert text.endswith("Total: 3 participants")

    masked = {e.key: mask_name(e.name) for e in entries}
    wa = render_export("Hatim", entries, kind=SectionKind.quarter, style="whatsapp", names=masked)
    assert wa.startswith("📖 *Hatim*")
    assert "⏳ *B***" in wa
    assert "Ahmet" not in wa
    assert "📊 Total: 3 participants" in wa


def test_export_labels_pieces():
    board = ReadingBoard.create(2, SectionKind.piece)
    reserve(board, [Selection(1)], GuestOwner("Omer"), NOW)
    text = render_export("Yasin x2", aggregate_participants(board, {}), kind=SectionKind.piece)
    assert "⏳ Omer - 1. Part" in text
