from datetime import datetime, timedelta, timezone

from tertil.models import ProgramStatus
from tertil.services.sections import SectionKind


def _window():
    start = datetime.now(timezone.utc)
    return start.isoformat(), (start + timedelta(days=30)).isoformat()


async def test_create_requires_login(client):
    start, end = _window()
    resp = await client.post(
        "/api/programs", json={"title": "Hatim", "start_date": start, "end_date": end, "target_count": 30}
    )
    assert resp.status_code == 401


async def test_program_lifecycle_from_creation_to_approval(client, make_user, sent_notifications):
    admin = await make_user("Admin", "User", admin=True)
    creator = await make_user("Zehra", "Kaya")
    start, end = _window()

    client.user = creator
    resp = await client.post(
        "/api/programs",
        json={
            "title": "Hatim for Grandma",
            "start_date": start,
            "end_date": end,
            "target_count": 30,
            "section_kind": "quarter",
            "dedicated_to": "Grandma",
        },
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "pending" and created["is_approved"] is False

    # pending programs are not listed and cannot be joined
    assert (await client.get("/api/programs")).json()["total"] == 0
    client.user = None
    resp = await client.post(
        f"/api/programs/{created['id']}/join", json={"selections": [{"section": 1}], "guest_name": "Ali"}
    )
    assert resp.status_code == 400

    client.user = creator
    assert (await client.post(f"/api/programs/{created['id']}/approve")).status_code == 403

    client.user = admin
    resp = await client.post(f"/api/programs/{created['id']}/approve")
    assert resp.status_code == 200
    assert resp.json()["program"]["status"] == "active"
    assert sent_notifications == [("approved", created["id"])]

    listing = (await client.get("/api/programs")).json()
    assert [p["id"] for p in listing["programs"]] == [created["id"]]


async def test_join_conflict_returns_409_with_conflicts(client, make_user, make_program):
    creator = await make_user()
    program = await make_program(creator)

    resp = await client.post(
        f"/api/programs/{program.id}/join",
        json={"selections": [{"section": 1}, {"section": 2}, {"section": 3}], "guest_name": "Bekir"},
    )
    assert resp.status_code == 200
    assert resp.json()["total_participants"] == 1

    resp = await client.post(
        f"/api/programs/{program.id}/join",
        json={"selections": [{"section": 3}, {"section": 4}], "guest_name": "Fatma"},
    )
    assert resp.status_code == 409
    body = resp.json()
    assert body["refresh"] is True
    assert body["conflicts"] == [{"section": 3, "subsection": None, "reason": "whole_taken"}]

    snap = (await client.get(f"/api/programs/{program.id}/availability")).json()
    assert snap["assigned"] == 3 and snap["available"] == 27


async def test_join_errors(client, make_user, make_program):
    creator = await make_user()
    program = await make_program(creator)

    resp = await client.post(f"/api/programs/{program.id}/join", json={"selections": [{"section": 1}]})
    assert resp.status_code == 400
    assert "error" in resp.json()

    resp = await client.post(
        f"/api/programs/{program.id}/join",
        json={"selections": [{"section": 1, "subsection": 2}], "guest_name": "Ali"},
    )
    assert resp.status_code == 400

    resp = await client.post("/api/programs/4242/join", json={"selections": [{"section": 1}], "guest_name": "Ali"})
    assert resp.status_code == 404

    resp = await client.post("/api/programs/abc/join", json={"selections": [{"section": 1}], "guest_name": "Ali"})
    assert resp.status_code == 400


async def test_complete_and_participants_export(client, make_user, make_program, sent_notifications):
    creator = await make_user("Zehra", "Kaya")
    member = await make_user("Ahmet", "Yilmaz")
    program = await make_program(creator, count=2, kind=SectionKind.quarter)

    client.user = member
    resp = await client.post(f"/api/programs/{program.id}/join", json={"selections": [{"section": 1}]})
    assert resp.status_code == 200
    client.user = None
    resp = await client.post(
        f"/api/programs/{program.id}/join",
        json={"selections": [{"section": 2, "subsection": q} for q in (1, 2, 3, 4)], "guest_name": "Musa"},
    )
    assert resp.status_code == 200

    client.user = member
    resp = await client.put(f"/api/programs/{program.id}/join", json={"selections": [{"section": 1}]})
    assert resp.json()["completed_count"] == 1
    assert resp.json()["program_now_complete"] is False

    client.user = None
    text = (await client.get(f"/api/programs/{program.id}/participants", params={"format": "whatsapp"})).text
    assert "✅ *A*** Y****" in text
    assert "Ahmet" not in text

    resp = await client.put(
        f"/api/programs/{program.id}/join",
        json={"selections": [{"section": 2, "subsection": q} for q in (1, 2, 3, 4)], "guest_name": "musa"},
    )
    body = resp.json()
    assert body["program_now_complete"] is True and body["status"] == "completed"
    assert sent_notifications == [("completed", program.id)]

    resp = await client.put(
        f"/api/programs/{program.id}/join", json={"selections": [{"section": 2, "subsection": 1}], "guest_name": "musa"}
    )
    assert resp.status_code == 400

    client.user = creator
    listing = (await client.get(f"/api/programs/{program.id}/participants")).json()
    assert [p["name"] for p in listing["participants"]] == ["Ahmet Yilmaz", "Musa"]
    assert listing["participants"][1]["selections"][0] == {"section": 2, "subsection": 1, "completed": True}


async def test_program_detail_hides_owners(client, make_user, make_program):
    creator = await make_user()
    program = await make_program(creator, count=4)
    await client.post(f"/api/programs/{program.id}/join", json={"selections": [{"section": 2}], "guest_name": "Ali"})

    detail = (await client.get(f"/api/programs/{program.id}")).json()
    sections = detail["program"]["sections"]
    assert sections[1] == {"number": 2, "is_assigned": True, "is_completed": False, "subsections": None}
    assert "owner" not in sections[1]
    assert detail["program"]["is_creator"] is False
    assert detail["my_participation"] is None


async def test_dashboard_lists_joined_programs(client, make_user, make_program):
    creator = await make_user()
    member = await make_user("Ahmet", "Yilmaz")
    program = await make_program(creator)

    client.user = member
    await client.post(f"/api/programs/{program.id}/join", json={"selections": [{"section": 5}]})
    dash = (await client.get("/api/user/dashboard")).json()
    assert dash["stats"]["my_joined_count"] == 1
    assert dash["my_joined_programs"][0]["my_parts"] == [5]

    client.user = None
    assert (await client.get("/api/user/dashboard")).status_code == 401


async def test_admin_rebuild_and_delete(client, make_user, make_program):
    admin = await make_user("Admin", "User", admin=True)
    creator = await make_user()
    program = await make_program(creator)
    await client.post(f"/api/programs/{program.id}/join", json={"selections": [{"section": 1}], "guest_name": "Ali"})

    client.user = creator
    assert (await client.post(f"/api/admin/programs/{program.id}/participations/rebuild")).status_code == 403

    client.user = admin
    resp = await client.post(f"/api/admin/programs/{program.id}/participations/rebuild")
    assert resp.json() == {"participants": 1, "created": 0, "removed": 0}

    client.user = creator
    assert (await client.delete(f"/api/programs/{program.id}")).status_code == 200
    assert (await client.get(f"/api/programs/{program.id}")).status_code == 404


async def test_reject_cancels_program(client, make_user, make_program):
    admin = await make_user("Admin", "User", admin=True)
    creator = await make_user()
    program = await make_program(creator, status=ProgramStatus.pending, approved=False)

    client.user = admin
    resp = await client.delete(f"/api/programs/{program.id}/approve")
    assert resp.status_code == 200
    assert resp.json()["program"]["status"] == "cancelled"


async def test_admin_overview_endpoint(client, make_user, make_program):
    admin = await make_user("Admin", "User", admin=True)
    creator = await make_user()
    waiting = await make_program(creator, status=ProgramStatus.pending, approved=False)

    client.user = creator
    assert (await client.get("/api/admin/programs")).status_code == 403

    client.user = admin
    body = (await client.get("/api/admin/programs")).json()
    assert [p["id"] for p in body["pending_programs"]] == [waiting.id]
    assert body["stats"]["pending"] == 1 and body["stats"]["total"] == 1


async def test_availability_of_unapproved_program_is_owner_only(client, make_user, make_program):
    creator = await make_user()
    program = await make_program(creator, status=ProgramStatus.pending, approved=False)

    assert (await client.get(f"/api/programs/{program.id}/availability")).status_code == 403

    client.user = creator
    resp = await client.get(f"/api/programs/{program.id}/availability")
    assert resp.status_code == 200
    assert resp.json()["available"] == 30
