"""Domain models for the timetable event editor."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ResourceId = int


class EventKind(StrEnum):
    LESSON = "lesson"
    UNAVAILABLE = "unavailable"
    INVIGILATE = "invigilate"


class SessionMode(StrEnum):
    ADD = "add"
    EDIT = "edit"


class SessionState(StrEnum):
    CLOSED = "closed"
    OPEN_ADD = "open_add"
    OPEN_EDIT = "open_edit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Time and occupancy
# ---------------------------------------------------------------------------


class TimeRange(BaseModel):
    """Half-open ``[start, end)`` range in epoch seconds."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @model_validator(mode="after")
    def _end_after_start(self) -> TimeRange:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def as_pair(self) -> tuple[int, int]:
        return self.start, self.end


class Booking(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource: ResourceId
    range: TimeRange
    owner_event_id: str | None = None


class ConflictResult(BaseModel):
    resource: ResourceId
    conflicting: bool
    overlapping: list[TimeRange] = Field(default_factory=list)


class ResourceFlag(BaseModel):
    resource: ResourceId
    conflicting: bool


# ---------------------------------------------------------------------------
# Snapshot of one viewing window
# ---------------------------------------------------------------------------


class RoomOption(BaseModel):
    id: ResourceId
    name: str


class SubjectOption(BaseModel):
    id: int
    name: str
    teacher_id: ResourceId | None = None
    teacher_name: str = ""


class ScheduleSnapshot(BaseModel):
    """Read-only occupancy data for the calendar window being edited.

    ``room_bookings`` is keyed by room id; ``teacher_invigilations`` and
    ``teacher_lessons`` are keyed by staff id. The three are independent
    resource namespaces and are never mixed in one index.
    """

    model_config = ConfigDict(frozen=True)

    room_bookings: list[Booking] = Field(default_factory=list)
    teacher_invigilations: list[Booking] = Field(default_factory=list)
    teacher_lessons: list[Booking] = Field(default_factory=list)
    unavailable: list[TimeRange] = Field(default_factory=list)
    rooms: list[RoomOption] = Field(default_factory=list)
    subjects: list[SubjectOption] = Field(default_factory=list)
    topics: dict[str, str] = Field(default_factory=dict)
    staff_id: ResourceId | None = None

    def room_name(self, room_id: ResourceId) -> str | None:
        for room in self.rooms:
            if room.id == room_id:
                return room.name
        return None

    def subject(self, subject_id: int | None) -> SubjectOption | None:
        if subject_id is None:
            return None
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject
        return None


# ---------------------------------------------------------------------------
# Editor session
# ---------------------------------------------------------------------------


class InitialEvent(BaseModel):
    """The calendar event an edit session was opened on."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: EventKind
    range: TimeRange
    room_id: ResourceId | None = None
    subject_id: int | None = None
    topic_id: str | None = None
    note: str | None = None

    def booking(self, resource: ResourceId | None = None) -> Booking | None:
        """Return this event's own booking on *resource* (its room by default)."""
        target = resource if resource is not None else self.room_id
        if target is None:
            return None
        return Booking(resource=target, range=self.range, owner_event_id=self.id)


class SessionContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: SessionMode
    range: TimeRange
    read_only: bool = False
    window_start: int | None = None
    window_end: int | None = None
    initial_event: InitialEvent | None = None
    snapshot: ScheduleSnapshot = Field(default_factory=ScheduleSnapshot)

    @model_validator(mode="after")
    def _edit_needs_event(self) -> SessionContext:
        if self.mode == SessionMode.EDIT and self.initial_event is None:
            raise ValueError("edit sessions require the initial event")
        return self


class CurrentEvent(BaseModel):
    """Target of a delete: the event id plus how many weekly occurrences."""

    id: str
    repeat_num: int | None = None


# ---------------------------------------------------------------------------
# Strategy forms
# ---------------------------------------------------------------------------


class LessonForm(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    room_id: ResourceId | None = None
    subject_id: int | None = None
    repeat_num: int = Field(default=1, ge=1, le=52)


class InvigilateForm(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    topic_id: str = ""
    note: str = ""


class UnavailableForm(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repeat: Literal["none", "weekly"] = "none"


FormState = LessonForm | InvigilateForm | UnavailableForm


class FieldOption(BaseModel):
    value: str
    label: str
    conflicting: bool = False


class FieldSpec(BaseModel):
    name: str
    label: str
    widget: Literal["select", "number", "textarea", "static"]
    value: Any = None
    options: list[FieldOption] = Field(default_factory=list)
    read_only: bool = False
    warning: str | None = None


class FormDescription(BaseModel):
    kind: EventKind
    label: str
    allow_repeat: bool
    fields: list[FieldSpec] = Field(default_factory=list)


class ActivityType(StrEnum):
    SAVED = "saved"
    DELETED = "deleted"
    REJECTED = "rejected"


class ActivityEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    session_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: ActivityType
    kind: EventKind
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class OpenSessionRequest(BaseModel):
    kind: EventKind
    mode: SessionMode = SessionMode.ADD
    range: TimeRange
    class_id: int | None = None
    staff_id: ResourceId | None = None
    read_only: bool = False
    initial_event: InitialEvent | None = None

    @model_validator(mode="after")
    def _one_owner(self) -> OpenSessionRequest:
        if (self.class_id is None) == (self.staff_id is None):
            raise ValueError("exactly one of class_id or staff_id is required")
        return self


class SessionView(BaseModel):
    id: str
    state: SessionState
    kind: EventKind
    busy: bool
    range: TimeRange
    form: dict[str, Any]
    errors: list[str] = Field(default_factory=list)
    unavailable_conflicts: list[TimeRange] = Field(default_factory=list)
    description: FormDescription | None = None


class KindChangeRequest(BaseModel):
    kind: EventKind


class DeleteRequest(BaseModel):
    repeat_num: int | None = Field(default=None, ge=1, le=52)


class ConflictCheckRequest(BaseModel):
    bookings: list[Booking] = Field(default_factory=list)
    resource: ResourceId
    range: TimeRange
    exclude_owner_event_id: str | None = None


class AnnotateRequest(BaseModel):
    bookings: list[Booking] = Field(default_factory=list)
    resources: list[ResourceId]
    range: TimeRange
