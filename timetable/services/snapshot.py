"""Build a ScheduleSnapshot from the backend's raw schedule payload.

Two payload flavours exist. The class schedule carries ``room_taken``
(room id -> ``[[start, end], ...]``), ``all_rooms``, ``class_subjects`` and
``teacher_invigilate``. The staff schedule carries ``invigilate``,
``unavailable``, ``class_topics`` and ``room_info``. Both carry ``lessons``.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from timetable.domain.models import (
    Booking,
    ResourceId,
    RoomOption,
    ScheduleSnapshot,
    SubjectOption,
    TimeRange,
)
from timetable.services.ranges import INVIGILATE_PREFIX, LESSON_PREFIX, event_id


def _range(start: Any, end: Any) -> TimeRange | None:
    try:
        return TimeRange(start=int(start), end=int(end))
    except (TypeError, ValueError):
        # Zero-length or malformed rows cannot occupy anything.
        return None


def _lesson_event_id(lesson: dict) -> str | None:
    record_id = lesson.get("id", lesson.get("lesson_id"))
    return event_id(LESSON_PREFIX, record_id) if record_id is not None else None


def _rooms(payload: dict) -> list[RoomOption]:
    rooms = payload.get("all_rooms") or payload.get("room_info") or {}
    if isinstance(rooms, dict):
        return [RoomOption(id=int(rid), name=str(name)) for rid, name in rooms.items()]
    return [RoomOption(id=int(r["id"]), name=str(r.get("name", r["id"]))) for r in rooms]


def _subjects(payload: dict) -> list[SubjectOption]:
    subjects = []
    for row in payload.get("class_subjects") or []:
        teacher_id = row.get("teacher_id")
        subjects.append(
            SubjectOption(
                id=int(row["id"]),
                name=str(row.get("topic_name") or row.get("name") or row["id"]),
                teacher_id=int(teacher_id) if teacher_id is not None else None,
                teacher_name=row.get("teacher_name") or "",
            )
        )
    return subjects


def _visible_lessons(payload: dict) -> list[Booking]:
    """Room bookings of the lessons listed in the payload, with their owner ids."""
    bookings = []
    for lesson in payload.get("lessons") or []:
        owner = _lesson_event_id(lesson)
        span = _range(lesson.get("start_time"), lesson.get("end_time"))
        try:
            room_id = int(lesson.get("room_id"))
        except (TypeError, ValueError):
            continue
        if owner is None or span is None or room_id < 0:
            continue
        bookings.append(Booking(resource=room_id, range=span, owner_event_id=owner))
    return bookings


def _room_bookings(payload: dict) -> list[Booking]:
    lessons = _visible_lessons(payload)
    room_taken = payload.get("room_taken")
    if room_taken is None:
        # No per-room occupancy: fall back to the lessons we can see.
        return lessons

    # Each owner id goes to exactly one matching interval; identical intervals
    # of other events stay anonymous.
    owners: dict[tuple[int, int, int], list[str]] = defaultdict(list)
    for lesson in lessons:
        owners[(lesson.resource, *lesson.range.as_pair())].append(lesson.owner_event_id)

    bookings: list[Booking] = []
    for room_key, pairs in room_taken.items():
        room_id = int(room_key)
        for start, end in pairs:
            span = _range(start, end)
            if span is None:
                continue
            candidates = owners.get((room_id, span.start, span.end))
            bookings.append(
                Booking(
                    resource=room_id,
                    range=span,
                    owner_event_id=candidates.pop(0) if candidates else None,
                )
            )
    return bookings


def _teacher_invigilations(payload: dict, staff_id: ResourceId | None) -> list[Booking]:
    bookings: list[Booking] = []
    for teacher_key, pairs in (payload.get("teacher_invigilate") or {}).items():
        for start, end in pairs:
            span = _range(start, end)
            if span is not None:
                bookings.append(Booking(resource=int(teacher_key), range=span))

    if staff_id is not None:
        for row in payload.get("invigilate") or []:
            span = _range(row.get("start_time"), row.get("end_time"))
            if span is None:
                continue
            record_id = row.get("id", f"{row.get('start_time')}_{row.get('topic_id')}")
            bookings.append(
                Booking(
                    resource=staff_id,
                    range=span,
                    owner_event_id=event_id(INVIGILATE_PREFIX, record_id),
                )
            )
    return bookings


def _teacher_lessons(payload: dict, staff_id: ResourceId | None) -> list[Booking]:
    if staff_id is None:
        return []
    bookings = []
    for lesson in payload.get("lessons") or []:
        span = _range(lesson.get("start_time"), lesson.get("end_time"))
        if span is not None:
            bookings.append(
                Booking(resource=staff_id, range=span, owner_event_id=_lesson_event_id(lesson))
            )
    return bookings


def snapshot_from_payload(
    payload: dict, staff_id: ResourceId | None = None
) -> ScheduleSnapshot:
    """Translate a raw schedule payload into a :class:`ScheduleSnapshot`.

    Pass *staff_id* when the payload is a staff schedule, so the staff
    member's own lessons and invigilations are indexed under that id.
    """
    unavailable = []
    for row in payload.get("unavailable") or []:
        span = _range(row.get("start_time"), row.get("end_time"))
        if span is not None:
            unavailable.append(span)

    return ScheduleSnapshot(
        room_bookings=_room_bookings(payload),
        teacher_invigilations=_teacher_invigilations(payload, staff_id),
        teacher_lessons=_teacher_lessons(payload, staff_id),
        unavailable=unavailable,
        rooms=_rooms(payload),
        subjects=_subjects(payload),
        topics={str(k): str(v) for k, v in (payload.get("class_topics") or {}).items()},
        staff_id=staff_id,
    )
