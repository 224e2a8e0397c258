"""Lesson strategy: room, subject and weekly repeat count."""

from __future__ import annotations

from typing import ClassVar

from timetable.domain.api import (
    ApiBundle,
    ApiShape,
    ClassScheduleApi,
    check_envelope,
)
from timetable.domain.errors import CapabilityMismatch
from timetable.domain.models import (
    Booking,
    CurrentEvent,
    EventKind,
    FieldOption,
    FieldSpec,
    FormDescription,
    LessonForm,
    SessionContext,
    SessionMode,
)
from timetable.services.conflicts import (
    OccupancyIndex,
    annotate_conflicts,
    build_index,
    exclude_booking,
    has_conflict,
)
from timetable.services.ranges import LESSON_PREFIX, parse_record_id

NO_ROOM = -1


def _room_index(form: LessonForm, context: SessionContext) -> OccupancyIndex:
    """Room occupancy with the edited lesson's own booking removed."""
    index = build_index(context.snapshot.room_bookings)
    initial = context.initial_event
    if context.mode != SessionMode.EDIT or initial is None:
        return index
    own: Booking | None = initial.booking(
        initial.room_id if initial.room_id is not None else form.room_id
    )
    return exclude_booking(index, own) if own is not None else index


def _lesson_record_id(event_id: str) -> int:
    return int(parse_record_id(event_id, LESSON_PREFIX))


class LessonStrategy:
    key: ClassVar[EventKind] = EventKind.LESSON
    label: ClassVar[str] = "Lesson"
    allow_repeat: ClassVar[bool] = True
    form_model: ClassVar[type[LessonForm]] = LessonForm

    def init(self, context: SessionContext) -> LessonForm:
        initial = context.initial_event
        return LessonForm(
            room_id=initial.room_id if initial else None,
            subject_id=initial.subject_id if initial else None,
            repeat_num=1,
        )

    def describe(self, form: LessonForm, context: SessionContext) -> FormDescription:
        snapshot = context.snapshot
        fields: list[FieldSpec] = []

        if snapshot.subjects and not context.read_only:
            fields.append(
                FieldSpec(
                    name="subject_id",
                    label="Subject",
                    widget="select",
                    value=form.subject_id,
                    options=[
                        FieldOption(
                            value=str(s.id),
                            label=f"{s.name} - {s.teacher_name}" if s.teacher_name else s.name,
                        )
                        for s in snapshot.subjects
                    ],
                )
            )

        if context.read_only:
            room_label = snapshot.room_name(form.room_id) if form.room_id is not None else None
            fields.append(
                FieldSpec(
                    name="room_id",
                    label="Room",
                    widget="static",
                    value=room_label or "-",
                    read_only=True,
                )
            )
        else:
            flags = annotate_conflicts(
                _room_index(form, context), [r.id for r in snapshot.rooms], context.range
            )
            options = [
                FieldOption(
                    value=str(flag.resource),
                    label=(snapshot.room_name(flag.resource) or str(flag.resource))
                    + (" (time conflict)" if flag.conflicting else ""),
                    conflicting=flag.conflicting,
                )
                for flag in flags
            ]
            selected_conflicting = any(
                flag.conflicting and flag.resource == form.room_id for flag in flags
            )
            fields.append(
                FieldSpec(
                    name="room_id",
                    label="Room",
                    widget="select",
                    value=form.room_id,
                    options=options,
                    warning=(
                        "This room is already booked at the selected time"
                        if selected_conflicting
                        else None
                    ),
                )
            )
            fields.append(
                FieldSpec(name="repeat_num", label="Weeks", widget="number", value=form.repeat_num)
            )

        return FormDescription(
            kind=self.key, label=self.label, allow_repeat=self.allow_repeat, fields=fields
        )

    def validate(self, form: LessonForm, context: SessionContext) -> list[str]:
        snapshot = context.snapshot
        errors: list[str] = []

        # 1. Subject selection
        if snapshot.subjects and form.subject_id is None:
            errors.append("Please select a subject")

        # 2. The subject's teacher must not be invigilating at the same time
        subject = snapshot.subject(form.subject_id)
        if subject is not None and subject.teacher_id is not None:
            invigilations = build_index(snapshot.teacher_invigilations)
            if has_conflict(invigilations, subject.teacher_id, context.range):
                teacher = subject.teacher_name or "The subject's teacher"
                errors.append(f"{teacher} is invigilating during the selected time")

        # 3. Room occupancy, minus this lesson's own booking when editing
        if form.room_id is not None and form.room_id != NO_ROOM:
            if has_conflict(_room_index(form, context), form.room_id, context.range):
                room = snapshot.room_name(form.room_id) or "The selected room"
                errors.append(
                    f"{room} is already booked at the selected time; "
                    "choose another room or time"
                )

        return errors

    async def on_save(self, form: LessonForm, context: SessionContext, api: ApiBundle) -> None:
        room_id = form.room_id if form.room_id is not None else NO_ROOM
        start_time, end_time = context.range.as_pair()

        if isinstance(api, ClassScheduleApi):
            if context.mode == SessionMode.ADD:
                raw = await api.add_lesson(
                    {
                        "class_id": api.class_id,
                        "subject_id": form.subject_id,
                        "start_time": start_time,
                        "end_time": end_time,
                        "room_id": room_id,
                        "repeat_num": form.repeat_num,
                    }
                )
                check_envelope(raw, ApiShape.CLASS, "Failed to add lesson")
            else:
                raw = await api.edit_lesson(
                    {
                        "record_id": _lesson_record_id(context.initial_event.id),
                        "start_time": start_time,
                        "end_time": end_time,
                        "room_id": room_id,
                        "repeat_num": form.repeat_num,
                    }
                )
                check_envelope(raw, ApiShape.CLASS, "Failed to edit lesson")
            return

        if context.mode != SessionMode.EDIT:
            raise CapabilityMismatch("The staff schedule API cannot add lessons")
        initial = context.initial_event
        raw = await api.edit_lesson(
            api.staff_id,
            {
                "lesson_id": parse_record_id(initial.id, LESSON_PREFIX),
                "subject_id": initial.subject_id,
                "start_time": start_time,
                "end_time": end_time,
                "room_id": room_id,
                "repeat_num": form.repeat_num,
            },
        )
        check_envelope(raw, ApiShape.STAFF, "Failed to save lesson")

    async def on_delete(
        self, current: CurrentEvent, context: SessionContext, api: ApiBundle
    ) -> None:
        repeat_num = current.repeat_num or 1
        if isinstance(api, ClassScheduleApi):
            raw = await api.delete_lesson(
                {"record_id": _lesson_record_id(current.id), "repeat_num": repeat_num}
            )
            check_envelope(raw, ApiShape.CLASS, "Failed to delete lesson")
            return

        raw = await api.delete_lesson(
            api.staff_id,
            {
                "lesson_ids": [parse_record_id(current.id, LESSON_PREFIX)],
                "repeat_num": repeat_num,
            },
        )
        check_envelope(raw, ApiShape.STAFF, "Failed to delete lesson")
