"""Domain events emitted by editor sessions."""

from __future__ import annotations

from pydantic import BaseModel

from timetable.domain.errors import ConflictDetail
from timetable.domain.models import EventKind, SessionMode, TimeRange


class EditorEvent(BaseModel):
    """Common shape of everything an editor session publishes."""

    session_id: str
    kind: EventKind


class EventSaved(EditorEvent):
    """Fired after a strategy's save resolved successfully."""

    mode: SessionMode
    range: TimeRange
    class_id: int | None = None
    staff_id: int | None = None


class EventDeleted(EditorEvent):
    """Fired after a strategy's delete resolved successfully."""

    event_id: str
    repeat_num: int | None = None
    class_id: int | None = None
    staff_id: int | None = None


class SaveRejected(EditorEvent):
    """Fired when the backend refused a save or delete."""

    message: str
    detail: ConflictDetail | None = None
