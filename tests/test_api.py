"""End-to-end tests for the editor session HTTP flow."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from timetable.domain.models import TimeRange
from timetable.main import activity_repo, app, schedule_store, session_repo
from timetable.services.ranges import to_seconds, week_num

MONDAY_9AM = to_seconds(datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc))
HOUR = 3600


def _range(offset_hours: int = 0, hours: int = 1) -> dict:
    start = MONDAY_9AM + offset_hours * HOUR
    return {"start": start, "end": start + hours * HOUR}


@pytest.fixture(autouse=True)
def _reset_state():
    """Replace the demo data with a small fixed timetable."""
    schedule_store.clear()
    session_repo._store.clear()
    activity_repo._entries.clear()

    schedule_store.add_room(1, "Room 101")
    schedule_store.add_room(2, "Room 102")
    schedule_store.topics["1"] = "Mathematics"
    schedule_store.add_staff(100, "Ms. Chen")
    schedule_store.add_staff(101, "Mr. Okafor")
    schedule_store.add_subject(10, class_id=1, name="Mathematics", teacher_id=100)
    schedule_store.add_subject(11, class_id=1, name="Physics", teacher_id=101)
    yield
    schedule_store.clear()
    session_repo._store.clear()
    activity_repo._entries.clear()


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def maths_series():
    """Three weekly Mathematics lessons in Room 101, Mondays 09:00."""
    return schedule_store.add_lessons(1, 10, TimeRange(**_range()), room_id=1, repeat_num=3)


def _open(client, **body) -> dict:
    body.setdefault("kind", "lesson")
    body.setdefault("range", _range())
    resp = client.post("/sessions", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Snapshots and conflict queries
# ---------------------------------------------------------------------------


def test_class_snapshot_for_week(client, maths_series):
    resp = client.get("/classes/1/snapshot", params={"week": week_num(MONDAY_9AM)})

    assert resp.status_code == 200
    bookings = resp.json()["room_bookings"]
    assert [(b["resource"], b["owner_event_id"]) for b in bookings] == [
        (1, f"lesson_{maths_series[0].id}")
    ]


def test_conflict_check_with_self_exclusion(client):
    booking = {"resource": 1, "range": _range(), "owner_event_id": "lesson_1"}
    body = {"bookings": [booking], "resource": 1, "range": _range()}

    clash = client.post("/conflicts/check", json=body).json()
    own = client.post(
        "/conflicts/check", json={**body, "exclude_owner_event_id": "lesson_1"}
    ).json()

    assert clash["conflicting"] is True
    assert own == {"resource": 1, "conflicting": False, "overlapping": []}


def test_annotate_lists_free_rooms_first(client):
    body = {
        "bookings": [{"resource": 1, "range": _range()}],
        "resources": [1, 2],
        "range": _range(),
    }

    flags = client.post("/conflicts/annotate", json=body).json()

    assert flags == [
        {"resource": 2, "conflicting": False},
        {"resource": 1, "conflicting": True},
    ]


# ---------------------------------------------------------------------------
# Lesson sessions
# ---------------------------------------------------------------------------


def test_add_over_booked_room_is_refused(client, maths_series):
    session = _open(client, class_id=1)
    client.patch(f"/sessions/{session['id']}/form", json={"room_id": 1, "subject_id": 11})

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.status_code == 422
    assert resp.json()["errors"] == [
        "Room 101 is already booked at the selected time; choose another room or time"
    ]
    assert len(schedule_store.lessons) == 3


def test_unchanged_edit_saves(client, maths_series):
    lesson = maths_series[0]
    session = _open(
        client,
        mode="edit",
        class_id=1,
        initial_event={
            "id": f"lesson_{lesson.id}",
            "kind": "lesson",
            "range": _range(),
            "room_id": 1,
            "subject_id": 10,
        },
    )
    assert session["state"] == "open_edit"
    assert session["errors"] == []

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.status_code == 200
    assert resp.json() == {"status": "saved"}
    assert client.get(f"/sessions/{session['id']}").status_code == 404
    assert [e["type"] for e in client.get("/activity").json()] == ["saved"]


def test_backend_rejection_keeps_session_open(client, maths_series):
    """The class already has a lesson at that time; only the backend knows."""
    session = _open(client, class_id=1)
    client.patch(f"/sessions/{session['id']}/form", json={"room_id": 2, "subject_id": 11})

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.status_code == 409
    data = resp.json()["details"]["data"]
    assert data["room_error"] == []
    assert data["teacher_error"] == []
    assert len(data["student_error"]) == 1
    assert client.get(f"/sessions/{session['id']}").status_code == 200
    assert [e["type"] for e in client.get("/activity").json()] == ["rejected"]


def test_delete_with_repeat_count(client, maths_series):
    lesson = maths_series[0]
    session = _open(
        client,
        mode="edit",
        class_id=1,
        initial_event={"id": f"lesson_{lesson.id}", "kind": "lesson", "range": _range(), "room_id": 1},
    )

    resp = client.post(f"/sessions/{session['id']}/delete", json={"repeat_num": 2})

    assert resp.json() == {"status": "deleted"}
    assert list(schedule_store.lessons) == [maths_series[2].id]


def test_patch_with_unknown_field_is_rejected(client):
    session = _open(client, class_id=1)

    resp = client.patch(f"/sessions/{session['id']}/form", json={"colour": "red"})

    assert resp.status_code == 422
    assert resp.json()["details"]["errors"]


def test_move_range_updates_room_annotations(client, maths_series):
    session = _open(client, class_id=1)
    client.patch(f"/sessions/{session['id']}/form", json={"room_id": 1, "subject_id": 10})

    moved = client.put(f"/sessions/{session['id']}/range", json=_range(offset_hours=2)).json()

    assert moved["errors"] == []
    room_field = next(f for f in moved["description"]["fields"] if f["name"] == "room_id")
    assert all(not option["conflicting"] for option in room_field["options"])


def test_cancel_closes_session(client):
    session = _open(client, class_id=1)

    assert client.delete(f"/sessions/{session['id']}").json() == {"status": "cancelled"}
    assert client.get(f"/sessions/{session['id']}").status_code == 404


def test_open_requires_exactly_one_owner(client):
    resp = client.post(
        "/sessions", json={"kind": "lesson", "range": _range(), "class_id": 1, "staff_id": 100}
    )
    assert resp.status_code == 422


def test_class_api_cannot_save_invigilations(client):
    session = _open(client, class_id=1)
    client.put(f"/sessions/{session['id']}/kind", json={"kind": "invigilate"})
    client.patch(f"/sessions/{session['id']}/form", json={"topic_id": "1"})

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.status_code == 500
    assert "staff schedule API" in resp.json()["message"]


# ---------------------------------------------------------------------------
# Staff sessions
# ---------------------------------------------------------------------------


def test_add_invigilation_for_staff(client):
    session = _open(client, kind="invigilate", staff_id=101)
    assert session["form"] == {"topic_id": "1", "note": ""}

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.json() == {"status": "saved"}
    (record,) = schedule_store.invigilations.values()
    assert (record.staff_id, record.range.start) == (101, MONDAY_9AM)


def test_invigilation_over_own_lesson_is_refused(client, maths_series):
    session = _open(client, kind="invigilate", staff_id=100)

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.status_code == 422
    assert resp.json()["errors"] == ["A lesson is already scheduled at the selected time"]


def test_mark_unavailable_for_week(client):
    session = _open(client, kind="unavailable", staff_id=100, range=_range(offset_hours=3))

    resp = client.post(f"/sessions/{session['id']}/confirm")

    assert resp.json() == {"status": "saved"}
    week = week_num(MONDAY_9AM)
    assert [r.start for r in schedule_store.staff[100].unavailable[week]] == [
        MONDAY_9AM + 3 * HOUR
    ]

    snapshot = client.get("/staff/100/snapshot", params={"week": week}).json()
    assert snapshot["unavailable"] == [_range(offset_hours=3)]


def test_selection_over_unavailable_slot_is_flagged(client):
    schedule_store.set_unavailable(100, week_num(MONDAY_9AM), [TimeRange(**_range())])

    session = _open(client, kind="invigilate", staff_id=100)

    assert session["unavailable_conflicts"] == [_range()]


def test_activity_filtered_by_session(client, maths_series):
    rejected = _open(client, class_id=1)
    client.patch(f"/sessions/{rejected['id']}/form", json={"room_id": 2, "subject_id": 11})
    client.post(f"/sessions/{rejected['id']}/confirm")
    saved = _open(client, class_id=1, range=_range(offset_hours=2))
    client.patch(f"/sessions/{saved['id']}/form", json={"room_id": 2, "subject_id": 11})
    client.post(f"/sessions/{saved['id']}/confirm")

    entries = client.get("/activity", params={"session_id": saved["id"]}).json()

    assert [(e["session_id"], e["type"]) for e in entries] == [(saved["id"], "saved")]
    assert len(client.get("/activity").json()) == 2
