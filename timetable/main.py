"""FastAPI application: entry point for the timetable event editor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse

from timetable.core.config import get_settings
from timetable.core.logging import get_logger, setup_logging
from timetable.domain.bus import EventBus
from timetable.domain.errors import EditorError, SessionNotFoundError
from timetable.domain.handlers import HandlerRegistry
from timetable.domain.models import (
    ActivityEntry,
    AnnotateRequest,
    ConflictCheckRequest,
    ConflictResult,
    DeleteRequest,
    KindChangeRequest,
    OpenSessionRequest,
    ResourceFlag,
    ResourceId,
    ScheduleSnapshot,
    SessionContext,
    SessionView,
    TimeRange,
)
from timetable.repos.memory import (
    ActivityRepository,
    MemoryClassScheduleClient,
    MemoryStaffScheduleClient,
    SessionRepository,
    create_schedule_store,
)
from timetable.services.conflicts import (
    annotate_conflicts,
    build_index,
    exclude_own,
    find_conflicts,
)
from timetable.services.editor import EditorSession
from timetable.services.ranges import week_num, week_window
from timetable.services.snapshot import snapshot_from_payload

settings = get_settings()
setup_logging(json_output=settings.log_json, log_level=settings.log_level)
logger = get_logger(__name__)

app = FastAPI(title=settings.project_name)


async def editor_error_handler(request: Request, exc: EditorError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app.add_exception_handler(EditorError, editor_error_handler)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
schedule_store = create_schedule_store(seed=settings.seed_demo_data)
session_repo = SessionRepository()
activity_repo = ActivityRepository()

handler_registry = HandlerRegistry(bus=event_bus, activity_repo=activity_repo)


# ── Helpers ───────────────────────────────────────────────────────────


def _window(week: int | None, anchor: int | None = None) -> TimeRange:
    if week is None:
        week = week_num(anchor) if anchor is not None else week_num(datetime.now(timezone.utc))
    return week_window(week)


def _snapshot(
    class_id: int | None, staff_id: ResourceId | None, window: TimeRange
) -> ScheduleSnapshot:
    if class_id is not None:
        return snapshot_from_payload(schedule_store.class_payload(class_id, window))
    return snapshot_from_payload(
        schedule_store.staff_payload(staff_id, window), staff_id=staff_id
    )


def _client(class_id: int | None, staff_id: ResourceId | None) -> object:
    if class_id is not None:
        return MemoryClassScheduleClient(schedule_store, class_id)
    return MemoryStaffScheduleClient(schedule_store, staff_id)


def _owner(session: EditorSession) -> tuple[int | None, ResourceId | None]:
    class_id = getattr(session.api, "class_id", None)
    return class_id, None if class_id is not None else session.api.staff_id


def _purge_sessions() -> None:
    session_repo.purge(timedelta(minutes=settings.session_max_age_minutes))


def _get_session(session_id: str) -> EditorSession:
    _purge_sessions()
    session = session_repo.get(session_id)
    if session is None or not session.is_open:
        raise SessionNotFoundError(session_id)
    return session


def _view(session: EditorSession) -> SessionView:
    return SessionView(
        id=session.id,
        state=session.state,
        kind=session.kind,
        busy=session.busy,
        range=session.context.range,
        form=session.form.model_dump(),
        errors=session.validate(),
        unavailable_conflicts=session.unavailable_conflicts(),
        description=session.describe(),
    )


# ── Routes: snapshots and conflict queries ────────────────────────────


@app.get("/classes/{class_id}/snapshot", response_model=ScheduleSnapshot)
def get_class_snapshot(class_id: int, week: int | None = None) -> ScheduleSnapshot:
    """Return the occupancy snapshot for one class and week."""
    return _snapshot(class_id, None, _window(week))


@app.get("/staff/{staff_id}/snapshot", response_model=ScheduleSnapshot)
def get_staff_snapshot(staff_id: int, week: int | None = None) -> ScheduleSnapshot:
    """Return the occupancy snapshot for one staff member and week."""
    return _snapshot(None, staff_id, _window(week))


@app.post("/conflicts/check", response_model=ConflictResult)
def check_conflicts(payload: ConflictCheckRequest) -> ConflictResult:
    """Report which supplied bookings overlap the range on one resource."""
    index = build_index(payload.bookings)
    if payload.exclude_owner_event_id:
        index = exclude_own(index, payload.exclude_owner_event_id)
    return find_conflicts(index, payload.resource, payload.range)


@app.post("/conflicts/annotate", response_model=list[ResourceFlag])
def annotate(payload: AnnotateRequest) -> list[ResourceFlag]:
    """Flag candidate resources, non-conflicting ones first."""
    return annotate_conflicts(build_index(payload.bookings), payload.resources, payload.range)


# ── Routes: editor sessions ───────────────────────────────────────────


@app.post("/sessions", response_model=SessionView, status_code=201)
def open_session(payload: OpenSessionRequest) -> SessionView:
    """Open an editor session on a fresh snapshot of the selected week."""
    window = _window(None, anchor=payload.range.start)
    context = SessionContext(
        mode=payload.mode,
        range=payload.range,
        read_only=payload.read_only,
        window_start=window.start,
        window_end=window.end,
        initial_event=payload.initial_event,
        snapshot=_snapshot(payload.class_id, payload.staff_id, window),
    )
    session = EditorSession(bus=event_bus, settings=settings)
    session.open(payload.kind, context, _client(payload.class_id, payload.staff_id))
    _purge_sessions()
    session_repo.add(session)
    return _view(session)


@app.get("/sessions/{session_id}", response_model=SessionView)
def get_session(session_id: str) -> SessionView:
    return _view(_get_session(session_id))


@app.patch("/sessions/{session_id}/form", response_model=SessionView)
def patch_form(session_id: str, changes: dict[str, Any] = Body(...)) -> SessionView:
    """Merge a partial form into the session's active form."""
    session = _get_session(session_id)
    session.patch(**changes)
    return _view(session)


@app.put("/sessions/{session_id}/range", response_model=SessionView)
def move_range(session_id: str, payload: TimeRange) -> SessionView:
    session = _get_session(session_id)
    session.set_range(payload)
    return _view(session)


@app.put("/sessions/{session_id}/kind", response_model=SessionView)
def change_kind(session_id: str, payload: KindChangeRequest) -> SessionView:
    session = _get_session(session_id)
    session.select_kind(payload.kind)
    return _view(session)


@app.post("/sessions/{session_id}/confirm")
async def confirm_session(session_id: str) -> Any:
    """Validate against the latest occupancy and save.

    Answers 422 with the validation errors when the form is not
    acceptable; the session stays open so the form can be corrected.
    """
    session = _get_session(session_id)
    class_id, staff_id = _owner(session)
    window = TimeRange(start=session.context.window_start, end=session.context.window_end)
    session.refresh_snapshot(_snapshot(class_id, staff_id, window))

    errors = await session.confirm()
    if errors:
        return JSONResponse(
            status_code=422,
            content={"errors": errors, "session": _view(session).model_dump(mode="json")},
        )
    session_repo.delete(session_id)
    return {"status": "saved"}


@app.post("/sessions/{session_id}/delete")
async def delete_event(session_id: str, payload: DeleteRequest | None = None) -> dict:
    """Delete the event the session was opened on."""
    session = _get_session(session_id)
    await session.delete(repeat_num=payload.repeat_num if payload else None)
    session_repo.delete(session_id)
    return {"status": "deleted"}


@app.delete("/sessions/{session_id}")
def cancel_session(session_id: str) -> dict:
    session = _get_session(session_id)
    session.cancel()
    session_repo.delete(session_id)
    return {"status": "cancelled"}


@app.get("/activity", response_model=list[ActivityEntry])
def list_activity(session_id: str | None = None) -> list[ActivityEntry]:
    """Return recorded editor outcomes, oldest first, optionally for one session."""
    if session_id is not None:
        return activity_repo.list_for_session(session_id)
    return activity_repo.list_all()
