"""Tests for the in-memory schedule backend and its two client shapes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from timetable.domain.errors import ConflictDetail
from timetable.domain.models import TimeRange
from timetable.repos.memory import (
    MemoryClassScheduleClient,
    MemoryStaffScheduleClient,
    ScheduleStore,
    weekly_occurrences,
)
from timetable.services.ranges import SECONDS_PER_WEEK, to_seconds, week_num, week_window
from timetable.services.snapshot import snapshot_from_payload

MONDAY_9AM = to_seconds(datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc))
HOUR = 3600


def _slot(offset_hours: int = 0, hours: int = 1) -> TimeRange:
    start = MONDAY_9AM + offset_hours * HOUR
    return TimeRange(start=start, end=start + hours * HOUR)


@pytest.fixture()
def store() -> ScheduleStore:
    store = ScheduleStore()
    store.add_room(1, "Room 101")
    store.add_room(2, "Room 102")
    store.add_staff(100, "Ms. Chen")
    store.add_staff(101, "Mr. Okafor")
    store.add_subject(10, class_id=1, name="Mathematics", teacher_id=100)
    store.add_subject(11, class_id=2, name="Physics", teacher_id=101)
    store.topics["1"] = "Mathematics"
    return store


# ---------------------------------------------------------------------------
# Weekly expansion
# ---------------------------------------------------------------------------


def test_weekly_occurrences_step_one_week():
    spans = weekly_occurrences(_slot(), 3)
    assert [s.start - MONDAY_9AM for s in spans] == [0, SECONDS_PER_WEEK, 2 * SECONDS_PER_WEEK]
    assert all(s.end - s.start == HOUR for s in spans)


def test_weekly_occurrences_always_yields_one():
    assert weekly_occurrences(_slot(), 0) == [_slot()]


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------


def test_add_lessons_creates_a_series(store):
    created = store.add_lessons(1, 10, _slot(), room_id=1, repeat_num=4)

    assert len(created) == 4
    assert len({rec.series_id for rec in created}) == 1
    assert all(rec.teacher_id == 100 for rec in created)


def test_room_conflict_is_reported_per_resource(store):
    store.add_lessons(1, 10, _slot(), room_id=1)

    result = store.add_lessons(2, 11, _slot(), room_id=1)

    assert isinstance(result, ConflictDetail)
    assert result.room_error == ["Room 101 busy 2026-03-09 09:00-10:00"]
    assert result.student_error == []
    assert result.teacher_error == []


def test_class_and_teacher_conflicts(store):
    store.add_lessons(1, 10, _slot(), room_id=1)

    result = store.add_lessons(1, 10, _slot(), room_id=2)

    assert result.room_error == []
    assert len(result.student_error) == 1
    assert result.teacher_error == ["Ms. Chen busy 2026-03-09 09:00-10:00"]


def test_edit_moves_the_rest_of_the_series(store):
    first, second, third = store.add_lessons(1, 10, _slot(), room_id=1, repeat_num=3)

    moved = TimeRange(start=second.range.start + HOUR, end=second.range.end + HOUR)

    updated = store.edit_lessons(second.id, moved, room_id=2, repeat_num=2)

    assert [rec.id for rec in updated] == [second.id, third.id]
    assert store.lessons[first.id].range == first.range
    assert store.lessons[third.id].range.start == third.range.start + HOUR
    assert store.lessons[third.id].room_id == 2


def test_edit_in_place_ignores_itself(store):
    (lesson,) = store.add_lessons(1, 10, _slot(), room_id=1)
    updated = store.edit_lessons(lesson.id, lesson.range, room_id=1)
    assert [rec.id for rec in updated] == [lesson.id]


def test_delete_respects_repeat_count(store):
    created = store.add_lessons(1, 10, _slot(), room_id=1, repeat_num=3)

    removed = store.delete_lessons(created[0].id, repeat_num=2)

    assert removed == [created[0].id, created[1].id]
    assert list(store.lessons) == [created[2].id]


# ---------------------------------------------------------------------------
# Client shapes
# ---------------------------------------------------------------------------


def test_class_client_answers_with_code(store):
    client = MemoryClassScheduleClient(store, class_id=1)
    payload = {
        "class_id": 1,
        "subject_id": 10,
        "start_time": _slot().start,
        "end_time": _slot().end,
        "room_id": 1,
        "repeat_num": 1,
    }

    ok = asyncio.run(client.add_class_lesson(payload))
    clash = asyncio.run(client.add_class_lesson(payload))

    assert ok["code"] == 200
    assert clash["code"] == 409
    assert clash["data"]["room_error"]


def test_class_client_reports_missing_lesson(store):
    client = MemoryClassScheduleClient(store, class_id=1)
    response = asyncio.run(client.delete_class_lesson({"record_id": 999, "repeat_num": 1}))
    assert response["code"] == 404


def test_staff_client_invigilation_conflicts_with_lessons(store):
    store.add_lessons(1, 10, _slot(), room_id=1)
    client = MemoryStaffScheduleClient(store, staff_id=100)

    response = asyncio.run(
        client.add_staff_invigilate(
            {
                "staff_id": 100,
                "start_time": _slot().start,
                "end_time": _slot().end,
                "topic_id": "1",
            }
        )
    )

    assert response["status"] == 1
    assert response["data"]["teacher_error"]


def test_staff_client_replaces_unavailable_week(store):
    client = MemoryStaffScheduleClient(store, staff_id=100)
    week = week_num(MONDAY_9AM)
    rows = [{"start_time": _slot().start, "end_time": _slot().end}]

    asyncio.run(client.update_staff_unavailable(100, {"week_num": week, "time_list": rows}))
    asyncio.run(client.update_staff_unavailable(100, {"week_num": week, "time_list": []}))

    assert store.staff[100].unavailable[week] == []


def test_staff_client_deletes_prefixed_ids(store):
    created = store.add_lessons(1, 10, _slot(), room_id=1, repeat_num=2)
    client = MemoryStaffScheduleClient(store, staff_id=100)

    response = asyncio.run(
        client.delete_staff_lesson(100, {"lesson_ids": [f"lesson_{created[0].id}"], "repeat_num": 1})
    )

    assert response["status"] == 0
    assert list(store.lessons) == [created[1].id]


# ---------------------------------------------------------------------------
# Payloads feed the snapshot
# ---------------------------------------------------------------------------


def test_class_payload_round_trips_into_snapshot(store):
    (lesson,) = store.add_lessons(1, 10, _slot(), room_id=1)
    window = week_window(week_num(MONDAY_9AM))

    snapshot = snapshot_from_payload(store.class_payload(1, window))

    assert [(b.resource, b.owner_event_id) for b in snapshot.room_bookings] == [
        (1, f"lesson_{lesson.id}")
    ]
    assert [s.id for s in snapshot.subjects] == [10]


def test_payload_is_limited_to_the_window(store):
    store.add_lessons(1, 10, _slot(), room_id=1, repeat_num=3)
    window = week_window(week_num(MONDAY_9AM))

    payload = store.class_payload(1, window)

    assert len(payload["lessons"]) == 1
    assert payload["room_taken"] == {"1": [[_slot().start, _slot().end]]}
