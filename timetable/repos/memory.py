"""In-memory schedule backend speaking both the class and staff API shapes.

The store is authoritative for conflicts: every mutation re-checks room,
teacher and class occupancy against its own data and rejects with
``teacher_error`` / ``student_error`` / ``room_error`` detail lists.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from dateutil.rrule import WEEKLY, rrule
from pydantic import BaseModel, Field

from timetable.core.logging import get_logger
from timetable.domain.errors import ConflictDetail
from timetable.domain.models import (
    ActivityEntry,
    Booking,
    ResourceId,
    TimeRange,
)
from timetable.services.conflicts import build_index, overlapping_ranges
from timetable.services.editor import EditorSession
from timetable.services.ranges import (
    INVIGILATE_PREFIX,
    LESSON_PREFIX,
    from_seconds,
    parse_record_id,
    to_seconds,
    week_num,
    week_window,
)

logger = get_logger(__name__)

NO_ROOM = -1


class SubjectRecord(BaseModel):
    id: int
    class_id: int
    name: str
    teacher_id: ResourceId | None = None
    teacher_name: str = ""


class LessonRecord(BaseModel):
    id: int
    series_id: int
    class_id: int
    subject_id: int | None = None
    teacher_id: ResourceId | None = None
    room_id: ResourceId = NO_ROOM
    range: TimeRange


class InvigilationRecord(BaseModel):
    id: int
    staff_id: ResourceId
    topic_id: str
    note: str = ""
    range: TimeRange


class StaffRecord(BaseModel):
    id: ResourceId
    name: str
    unavailable: dict[int, list[TimeRange]] = Field(default_factory=dict)


def weekly_occurrences(first: TimeRange, count: int) -> list[TimeRange]:
    """Expand *first* into *count* consecutive weekly ranges."""
    duration = first.end - first.start
    rule = rrule(WEEKLY, dtstart=from_seconds(first.start), count=max(count, 1))
    occurrences = []
    for dt in rule:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        start = to_seconds(dt)
        occurrences.append(TimeRange(start=start, end=start + duration))
    return occurrences


def _fmt(span: TimeRange) -> str:
    start, end = from_seconds(span.start), from_seconds(span.end)
    return f"{start:%Y-%m-%d %H:%M}-{end:%H:%M}"


def _in_window(span: TimeRange, window: TimeRange | None) -> bool:
    return window is None or bool(overlapping_ranges([span], window))


class ScheduleStore:
    """Dict-backed store for rooms, subjects, lessons and invigilations."""

    def __init__(self) -> None:
        self.rooms: dict[ResourceId, str] = {}
        self.topics: dict[str, str] = {}
        self.staff: dict[ResourceId, StaffRecord] = {}
        self.subjects: dict[int, SubjectRecord] = {}
        self.lessons: dict[int, LessonRecord] = {}
        self.invigilations: dict[int, InvigilationRecord] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def clear(self) -> None:
        self.rooms.clear()
        self.topics.clear()
        self.staff.clear()
        self.subjects.clear()
        self.lessons.clear()
        self.invigilations.clear()

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_room(self, room_id: ResourceId, name: str) -> None:
        self.rooms[room_id] = name

    def add_staff(self, staff_id: ResourceId, name: str) -> StaffRecord:
        record = StaffRecord(id=staff_id, name=name)
        self.staff[staff_id] = record
        return record

    def add_subject(
        self, subject_id: int, class_id: int, name: str, teacher_id: ResourceId | None = None
    ) -> SubjectRecord:
        teacher = self.staff.get(teacher_id) if teacher_id is not None else None
        record = SubjectRecord(
            id=subject_id,
            class_id=class_id,
            name=name,
            teacher_id=teacher_id,
            teacher_name=teacher.name if teacher else "",
        )
        self.subjects[subject_id] = record
        return record

    # ------------------------------------------------------------------
    # Conflict detection
    # ------------------------------------------------------------------

    def lesson_conflicts(
        self,
        spans: list[TimeRange],
        class_id: int,
        teacher_id: ResourceId | None,
        room_id: ResourceId,
        ignore_ids: set[int] | None = None,
    ) -> ConflictDetail | None:
        ignore_ids = ignore_ids or set()
        others = [rec for rec in self.lessons.values() if rec.id not in ignore_ids]
        rooms = build_index(
            Booking(resource=rec.room_id, range=rec.range)
            for rec in others
            if rec.room_id != NO_ROOM
        )
        classes = build_index(Booking(resource=rec.class_id, range=rec.range) for rec in others)
        teachers = build_index(
            [
                Booking(resource=rec.teacher_id, range=rec.range)
                for rec in others
                if rec.teacher_id is not None
            ]
            + [Booking(resource=i.staff_id, range=i.range) for i in self.invigilations.values()]
        )

        detail = ConflictDetail()
        for span in spans:
            if room_id != NO_ROOM:
                for hit in overlapping_ranges(rooms.ranges(room_id), span):
                    detail.room_error.append(
                        f"{self.rooms.get(room_id, room_id)} busy {_fmt(hit)}"
                    )
            for hit in overlapping_ranges(classes.ranges(class_id), span):
                detail.student_error.append(f"Class {class_id} already has a lesson {_fmt(hit)}")
            if teacher_id is not None:
                for hit in overlapping_ranges(teachers.ranges(teacher_id), span):
                    name = self.staff[teacher_id].name if teacher_id in self.staff else teacher_id
                    detail.teacher_error.append(f"{name} busy {_fmt(hit)}")

        if detail.room_error or detail.student_error or detail.teacher_error:
            return detail
        return None

    def staff_conflicts(
        self, staff_id: ResourceId, span: TimeRange, ignore_invigilation: int | None = None
    ) -> list[str]:
        busy = [rec.range for rec in self.lessons.values() if rec.teacher_id == staff_id]
        busy += [
            i.range
            for i in self.invigilations.values()
            if i.staff_id == staff_id and i.id != ignore_invigilation
        ]
        return [f"busy {_fmt(hit)}" for hit in overlapping_ranges(busy, span)]

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def series_from(self, record_id: int, count: int) -> list[LessonRecord]:
        """Return the lesson and the following ``count - 1`` in its series."""
        lesson = self.lessons.get(record_id)
        if lesson is None:
            return []
        series = sorted(
            (
                rec
                for rec in self.lessons.values()
                if rec.series_id == lesson.series_id and rec.range.start >= lesson.range.start
            ),
            key=lambda rec: rec.range.start,
        )
        return series[: max(count, 1)]

    def add_lessons(
        self,
        class_id: int,
        subject_id: int | None,
        span: TimeRange,
        room_id: ResourceId = NO_ROOM,
        repeat_num: int = 1,
    ) -> list[LessonRecord] | ConflictDetail:
        subject = self.subjects.get(subject_id) if subject_id is not None else None
        teacher_id = subject.teacher_id if subject else None
        spans = weekly_occurrences(span, repeat_num)
        conflicts = self.lesson_conflicts(spans, class_id, teacher_id, room_id)
        if conflicts is not None:
            return conflicts

        series_id = self.next_id()
        created = []
        for occurrence in spans:
            record = LessonRecord(
                id=self.next_id(),
                series_id=series_id,
                class_id=class_id,
                subject_id=subject_id,
                teacher_id=teacher_id,
                room_id=room_id,
                range=occurrence,
            )
            self.lessons[record.id] = record
            created.append(record)
        logger.info("lessons_added", class_id=class_id, count=len(created), room_id=room_id)
        return created

    def edit_lessons(
        self, record_id: int, span: TimeRange, room_id: ResourceId, repeat_num: int = 1
    ) -> list[LessonRecord] | ConflictDetail | None:
        targets = self.series_from(record_id, repeat_num)
        if not targets:
            return None
        first = targets[0]
        shift = span.start - first.range.start
        duration = span.end - span.start
        moved = [
            TimeRange(start=t.range.start + shift, end=t.range.start + shift + duration)
            for t in targets
        ]
        conflicts = self.lesson_conflicts(
            moved, first.class_id, first.teacher_id, room_id, ignore_ids={t.id for t in targets}
        )
        if conflicts is not None:
            return conflicts

        updated = []
        for target, new_range in zip(targets, moved):
            record = target.model_copy(update={"range": new_range, "room_id": room_id})
            self.lessons[record.id] = record
            updated.append(record)
        logger.info("lessons_edited", record_id=record_id, count=len(updated), room_id=room_id)
        return updated

    def delete_lessons(self, record_id: int, repeat_num: int = 1) -> list[int]:
        removed = [rec.id for rec in self.series_from(record_id, repeat_num)]
        for lesson_id in removed:
            del self.lessons[lesson_id]
        logger.info("lessons_deleted", record_id=record_id, count=len(removed))
        return removed

    # ------------------------------------------------------------------
    # Invigilations and unavailability
    # ------------------------------------------------------------------

    def save_invigilation(self, record: InvigilationRecord) -> list[str]:
        errors = self.staff_conflicts(record.staff_id, record.range, ignore_invigilation=record.id)
        if errors:
            return errors
        self.invigilations[record.id] = record
        logger.info("invigilation_saved", record_id=record.id, staff_id=record.staff_id)
        return []

    def delete_invigilation(self, record_id: int) -> bool:
        removed = self.invigilations.pop(record_id, None)
        logger.info("invigilation_deleted", record_id=record_id, found=removed is not None)
        return removed is not None

    def set_unavailable(self, staff_id: ResourceId, week: int, ranges: list[TimeRange]) -> None:
        record = self.staff.get(staff_id) or self.add_staff(staff_id, str(staff_id))
        record.unavailable[week] = list(ranges)
        logger.info("unavailable_replaced", staff_id=staff_id, week=week, count=len(ranges))

    # ------------------------------------------------------------------
    # Schedule payloads
    # ------------------------------------------------------------------

    def _room_taken(self, window: TimeRange | None) -> dict[str, list[list[int]]]:
        taken: dict[str, list[list[int]]] = defaultdict(list)
        for lesson in self.lessons.values():
            if lesson.room_id != NO_ROOM and _in_window(lesson.range, window):
                taken[str(lesson.room_id)].append([lesson.range.start, lesson.range.end])
        return dict(taken)

    def _lesson_row(self, lesson: LessonRecord, id_key: str) -> dict:
        subject = self.subjects.get(lesson.subject_id) if lesson.subject_id is not None else None
        return {
            id_key: lesson.id,
            "start_time": lesson.range.start,
            "end_time": lesson.range.end,
            "room_id": lesson.room_id,
            "room_name": self.rooms.get(lesson.room_id, ""),
            "class_id": lesson.class_id,
            "subject_id": lesson.subject_id,
            "subject_name": subject.name if subject else "",
            "teacher": subject.teacher_name if subject else "",
        }

    def class_payload(self, class_id: int, window: TimeRange | None = None) -> dict:
        """Raw class-schedule payload, as the class timetable page receives it."""
        subjects = [s for s in self.subjects.values() if s.class_id == class_id]
        teacher_ids = {s.teacher_id for s in subjects if s.teacher_id is not None}
        teacher_invigilate: dict[str, list[list[int]]] = defaultdict(list)
        for record in self.invigilations.values():
            if record.staff_id in teacher_ids and _in_window(record.range, window):
                teacher_invigilate[str(record.staff_id)].append(
                    [record.range.start, record.range.end]
                )
        return {
            "lessons": [
                self._lesson_row(rec, "id")
                for rec in self.lessons.values()
                if rec.class_id == class_id and _in_window(rec.range, window)
            ],
            "room_taken": self._room_taken(window),
            "all_rooms": [{"id": rid, "name": name} for rid, name in self.rooms.items()],
            "class_subjects": [
                {
                    "id": s.id,
                    "topic_name": s.name,
                    "teacher_id": s.teacher_id,
                    "teacher_name": s.teacher_name,
                }
                for s in subjects
            ],
            "teacher_invigilate": dict(teacher_invigilate),
        }

    def staff_payload(self, staff_id: ResourceId, window: TimeRange | None = None) -> dict:
        """Raw staff-schedule payload for one week."""
        record = self.staff.get(staff_id)
        week = week_num(window.start) if window else None
        unavailable = record.unavailable.get(week, []) if record and week is not None else []
        return {
            "lessons": [
                self._lesson_row(rec, "lesson_id")
                for rec in self.lessons.values()
                if rec.teacher_id == staff_id and _in_window(rec.range, window)
            ],
            "invigilate": [
                {
                    "id": i.id,
                    "start_time": i.range.start,
                    "end_time": i.range.end,
                    "topic_id": i.topic_id,
                    "note": i.note,
                }
                for i in self.invigilations.values()
                if i.staff_id == staff_id and _in_window(i.range, window)
            ],
            "unavailable": [{"start_time": r.start, "end_time": r.end} for r in unavailable],
            "room_taken": self._room_taken(window),
            "room_info": {str(rid): name for rid, name in self.rooms.items()},
            "class_topics": dict(self.topics),
        }


# ---------------------------------------------------------------------------
# API clients over the store
# ---------------------------------------------------------------------------


def _class_ok(data: object = None) -> dict:
    return {"code": 200, "message": "ok", "data": data}


def _staff_ok(data: object = None) -> dict:
    return {"status": 0, "message": "ok", "data": data}


class MemoryClassScheduleClient:
    """Class-schedule call shape: lessons keyed by class id, ``code == 200``."""

    def __init__(self, store: ScheduleStore, class_id: int) -> None:
        self.store = store
        self.class_id = class_id

    async def add_class_lesson(self, payload: dict) -> dict:
        span = TimeRange(start=payload["start_time"], end=payload["end_time"])
        result = self.store.add_lessons(
            class_id=payload["class_id"],
            subject_id=payload.get("subject_id"),
            span=span,
            room_id=payload.get("room_id", NO_ROOM),
            repeat_num=payload.get("repeat_num", 1),
        )
        if isinstance(result, ConflictDetail):
            return {"code": 409, "message": "Schedule conflict", "data": result.model_dump()}
        return _class_ok({"lesson_ids": [rec.id for rec in result]})

    async def edit_class_lesson(self, payload: dict) -> dict:
        span = TimeRange(start=payload["start_time"], end=payload["end_time"])
        result = self.store.edit_lessons(
            record_id=payload["record_id"],
            span=span,
            room_id=payload.get("room_id", NO_ROOM),
            repeat_num=payload.get("repeat_num", 1),
        )
        if result is None:
            return {"code": 404, "message": "Lesson not found"}
        if isinstance(result, ConflictDetail):
            return {"code": 409, "message": "Schedule conflict", "data": result.model_dump()}
        return _class_ok({"lesson_ids": [rec.id for rec in result]})

    async def delete_class_lesson(self, payload: dict) -> dict:
        removed = self.store.delete_lessons(payload["record_id"], payload.get("repeat_num", 1))
        if not removed:
            return {"code": 404, "message": "Lesson not found"}
        return _class_ok({"lesson_ids": removed})


class MemoryStaffScheduleClient:
    """Legacy staff-schedule call shape: keyed by staff id, ``status == 0``."""

    def __init__(self, store: ScheduleStore, staff_id: ResourceId) -> None:
        self.store = store
        self.staff_id = staff_id

    async def edit_staff_lesson(self, staff_id: ResourceId, payload: dict) -> dict:
        room_id = payload.get("room_id")
        result = self.store.edit_lessons(
            record_id=int(parse_record_id(payload["lesson_id"], LESSON_PREFIX)),
            span=TimeRange(start=payload["start_time"], end=payload["end_time"]),
            room_id=int(room_id) if room_id not in (None, "") else NO_ROOM,
            repeat_num=payload.get("repeat_num", 1),
        )
        if result is None:
            return {"status": 1, "message": "Lesson not found"}
        if isinstance(result, ConflictDetail):
            return {"status": 1, "message": "Schedule conflict", "data": result.model_dump()}
        return _staff_ok()

    async def delete_staff_lesson(self, staff_id: ResourceId, payload: dict) -> dict:
        removed: list[int] = []
        for lesson_id in payload.get("lesson_ids", []):
            removed += self.store.delete_lessons(
                int(parse_record_id(lesson_id, LESSON_PREFIX)), payload.get("repeat_num", 1)
            )
        if not removed:
            return {"status": 1, "message": "Lesson not found"}
        return _staff_ok({"lesson_ids": removed})

    async def add_staff_invigilate(self, payload: dict) -> dict:
        record = InvigilationRecord(
            id=self.store.next_id(),
            staff_id=payload["staff_id"],
            topic_id=payload["topic_id"],
            note=payload.get("note", ""),
            range=TimeRange(start=payload["start_time"], end=payload["end_time"]),
        )
        errors = self.store.save_invigilation(record)
        if errors:
            return {"status": 1, "message": "Invigilation conflict", "data": {"teacher_error": errors}}
        return _staff_ok({"id": record.id})

    async def update_staff_invigilate(self, payload: dict) -> dict:
        record_id = int(parse_record_id(payload["record_id"], INVIGILATE_PREFIX))
        if record_id not in self.store.invigilations:
            return {"status": 1, "message": "Invigilation not found"}
        record = InvigilationRecord(
            id=record_id,
            staff_id=payload["staff_id"],
            topic_id=payload["topic_id"],
            note=payload.get("note", ""),
            range=TimeRange(start=payload["start_time"], end=payload["end_time"]),
        )
        errors = self.store.save_invigilation(record)
        if errors:
            return {"status": 1, "message": "Invigilation conflict", "data": {"teacher_error": errors}}
        return _staff_ok({"id": record.id})

    async def delete_staff_invigilate(self, payload: dict) -> dict:
        record_id = int(parse_record_id(payload["record_id"], INVIGILATE_PREFIX))
        if not self.store.delete_invigilation(record_id):
            return {"status": 1, "message": "Invigilation not found"}
        return _staff_ok()

    async def update_staff_unavailable(self, staff_id: ResourceId, payload: dict) -> dict:
        ranges = [
            TimeRange(start=row["start_time"], end=row["end_time"])
            for row in payload.get("time_list", [])
        ]
        self.store.set_unavailable(staff_id, payload["week_num"], ranges)
        return _staff_ok()


# ---------------------------------------------------------------------------
# Activity log of editor outcomes
# ---------------------------------------------------------------------------


class ActivityRepository:
    """List-backed store for ActivityEntry instances."""

    def __init__(self) -> None:
        self._entries: list[ActivityEntry] = []

    def add(self, entry: ActivityEntry) -> None:
        self._entries.append(entry)

    def list_all(self) -> list[ActivityEntry]:
        return sorted(self._entries, key=lambda e: e.timestamp)

    def list_for_session(self, session_id: str) -> list[ActivityEntry]:
        return [e for e in self.list_all() if e.session_id == session_id]


# ---------------------------------------------------------------------------
# Seed data – one class, two teachers, a few lessons in the current week
# ---------------------------------------------------------------------------


def _seed(store: ScheduleStore) -> None:
    store.add_room(1, "Room 101")
    store.add_room(2, "Room 102")
    store.add_room(3, "Science Lab")
    store.topics.update({"1": "Mathematics", "2": "Physics", "3": "English"})
    store.add_staff(100, "Ms. Chen")
    store.add_staff(101, "Mr. Okafor")
    store.add_subject(10, class_id=1, name="Mathematics", teacher_id=100)
    store.add_subject(11, class_id=1, name="Physics", teacher_id=101)

    week = week_window(week_num(datetime.now(timezone.utc)))
    monday = from_seconds(week.start)

    def at(day: int, hour: int, hours: int = 1) -> TimeRange:
        start = monday + timedelta(days=day, hours=hour)
        return TimeRange(start=to_seconds(start), end=to_seconds(start + timedelta(hours=hours)))

    store.add_lessons(1, 10, at(0, 9), room_id=1, repeat_num=4)
    store.add_lessons(1, 11, at(1, 10), room_id=3, repeat_num=4)
    store.save_invigilation(
        InvigilationRecord(
            id=store.next_id(), staff_id=101, topic_id="2", note="Mid-term", range=at(2, 14, 2)
        )
    )


def create_schedule_store(seed: bool = True) -> ScheduleStore:
    """Return a ScheduleStore, optionally pre-loaded with sample data."""
    store = ScheduleStore()
    if seed:
        _seed(store)
    return store


class SessionRepository:
    """Dict-backed store for open editor sessions, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, EditorSession] = {}

    def add(self, session: EditorSession) -> None:
        self._store[session.id] = session

    def get(self, session_id: str) -> EditorSession | None:
        return self._store.get(session_id)

    def delete(self, session_id: str) -> None:
        self._store.pop(session_id, None)

    def list_all(self) -> list[EditorSession]:
        return list(self._store.values())

    def purge(self, max_age: timedelta, now: datetime | None = None) -> list[str]:
        """Drop closed sessions and idle ones opened more than *max_age* ago.

        Sessions with a save or delete in flight are kept regardless of age.
        """
        now = now or datetime.now(timezone.utc)
        stale = [
            session.id
            for session in self.list_all()
            if not session.busy
            and (
                not session.is_open
                or session.opened_at is None
                or now - session.opened_at > max_age
            )
        ]
        for session_id in stale:
            self.delete(session_id)
        if stale:
            logger.info("sessions_purged", count=len(stale))
        return stale
