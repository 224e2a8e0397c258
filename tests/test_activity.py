"""Tests for event dispatch, the activity log and session housekeeping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from timetable.domain.bus import EventBus
from timetable.domain.errors import ConflictDetail
from timetable.domain.events import EditorEvent, EventDeleted, EventSaved, SaveRejected
from timetable.domain.handlers import HandlerRegistry
from timetable.domain.models import (
    ActivityType,
    EventKind,
    ScheduleSnapshot,
    SessionContext,
    SessionMode,
    TimeRange,
)
from timetable.repos.memory import ActivityRepository, SessionRepository
from timetable.services.editor import EditorSession

SPAN = TimeRange(start=1000, end=2000)


class _ClassClient:
    class_id = 1

    async def add_class_lesson(self, payload):
        return {"code": 200}

    async def edit_class_lesson(self, payload):
        return {"code": 200}

    async def delete_class_lesson(self, payload):
        return {"code": 200}


def _saved(session_id: str = "s1") -> EventSaved:
    return EventSaved(
        session_id=session_id, kind=EventKind.LESSON, mode=SessionMode.ADD, range=SPAN, class_id=1
    )


def _open_session() -> EditorSession:
    session = EditorSession()
    session.open(
        EventKind.LESSON,
        SessionContext(mode=SessionMode.ADD, range=SPAN, snapshot=ScheduleSnapshot()),
        _ClassClient(),
    )
    return session


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


def test_base_class_subscriber_sees_every_editor_event():
    bus = EventBus()
    seen: list = []
    bus.subscribe(EditorEvent, seen.append)

    bus.publish(_saved())
    bus.publish(EventDeleted(session_id="s1", kind=EventKind.LESSON, event_id="lesson_7"))

    assert [type(e) for e in seen] == [EventSaved, EventDeleted]


def test_specific_subscriber_runs_before_base_subscriber():
    bus = EventBus()
    order: list[str] = []
    bus.subscribe(EditorEvent, lambda e: order.append("any"))
    bus.subscribe(EventSaved, lambda e: order.append("saved"))

    bus.publish(_saved())

    assert order == ["saved", "any"]


def test_unrelated_subscriber_is_not_called():
    bus = EventBus()
    seen: list = []
    bus.subscribe(SaveRejected, seen.append)

    bus.publish(_saved())

    assert seen == []


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


def test_registry_records_each_outcome_type():
    bus = EventBus()
    repo = ActivityRepository()
    HandlerRegistry(bus=bus, activity_repo=repo)

    bus.publish(_saved("s1"))
    bus.publish(
        SaveRejected(
            session_id="s2",
            kind=EventKind.LESSON,
            message="Schedule conflict",
            detail=ConflictDetail(room_error=["R1 busy"]),
        )
    )

    entries = repo.list_all()
    assert [e.type for e in entries] == [ActivityType.SAVED, ActivityType.REJECTED]
    assert entries[1].payload["detail"]["room_error"] == ["R1 busy"]


def test_activity_can_be_listed_per_session():
    bus = EventBus()
    repo = ActivityRepository()
    HandlerRegistry(bus=bus, activity_repo=repo)

    bus.publish(_saved("s1"))
    bus.publish(_saved("s2"))

    assert [e.session_id for e in repo.list_for_session("s2")] == ["s2"]


# ---------------------------------------------------------------------------
# Session housekeeping
# ---------------------------------------------------------------------------


def test_purge_drops_closed_and_expired_sessions():
    repo = SessionRepository()
    fresh, expired, closed = _open_session(), _open_session(), _open_session()
    expired.opened_at = datetime.now(timezone.utc) - timedelta(hours=2)
    closed.cancel()
    for session in (fresh, expired, closed):
        repo.add(session)

    purged = repo.purge(timedelta(hours=1))

    assert set(purged) == {expired.id, closed.id}
    assert repo.list_all() == [fresh]


def test_purge_keeps_busy_sessions():
    repo = SessionRepository()
    session = _open_session()
    session.opened_at = datetime.now(timezone.utc) - timedelta(days=1)
    session.busy = True
    repo.add(session)

    assert repo.purge(timedelta(hours=1)) == []
    assert repo.get(session.id) is session
