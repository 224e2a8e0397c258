"""Invigilation strategy: a single exam-supervision slot for one staff member."""

from __future__ import annotations

from typing import ClassVar

from timetable.domain.api import ApiBundle, ApiShape, StaffScheduleApi, check_envelope
from timetable.domain.errors import CapabilityMismatch
from timetable.domain.models import (
    CurrentEvent,
    EventKind,
    FieldOption,
    FieldSpec,
    FormDescription,
    InvigilateForm,
    SessionContext,
    SessionMode,
)
from timetable.services.conflicts import build_index, exclude_booking, has_conflict
from timetable.services.ranges import INVIGILATE_PREFIX, parse_record_id


def _staff_api(api: ApiBundle, *names: str) -> StaffScheduleApi:
    if not isinstance(api, StaffScheduleApi):
        raise CapabilityMismatch("Invigilation requires the staff schedule API")
    api.require(*names)
    return api


class InvigilateStrategy:
    key: ClassVar[EventKind] = EventKind.INVIGILATE
    label: ClassVar[str] = "Invigilation"
    allow_repeat: ClassVar[bool] = False
    form_model: ClassVar[type[InvigilateForm]] = InvigilateForm

    def init(self, context: SessionContext) -> InvigilateForm:
        initial = context.initial_event
        default_topic = next(iter(context.snapshot.topics), "")
        return InvigilateForm(
            topic_id=(initial.topic_id if initial else None) or default_topic,
            note=(initial.note if initial else None) or "",
        )

    def describe(self, form: InvigilateForm, context: SessionContext) -> FormDescription:
        topics = context.snapshot.topics
        if context.read_only:
            fields = [
                FieldSpec(
                    name="topic_id",
                    label="Subject",
                    widget="static",
                    value=topics.get(form.topic_id) or form.topic_id or "-",
                    read_only=True,
                ),
                FieldSpec(
                    name="note", label="Note", widget="static", value=form.note or "-", read_only=True
                ),
            ]
        else:
            fields = [
                FieldSpec(
                    name="topic_id",
                    label="Subject",
                    widget="select",
                    value=form.topic_id,
                    options=[FieldOption(value=tid, label=name) for tid, name in topics.items()],
                ),
                FieldSpec(name="note", label="Note", widget="textarea", value=form.note),
            ]
        return FormDescription(
            kind=self.key, label=self.label, allow_repeat=self.allow_repeat, fields=fields
        )

    def validate(self, form: InvigilateForm, context: SessionContext) -> list[str]:
        errors: list[str] = []
        if not form.topic_id:
            errors.append("Please select the invigilated subject")

        staff_id = context.snapshot.staff_id
        if staff_id is None:
            return errors

        invigilations = build_index(context.snapshot.teacher_invigilations)
        if context.mode == SessionMode.EDIT and context.initial_event is not None:
            own = context.initial_event.booking(staff_id)
            invigilations = exclude_booking(invigilations, own)
        if has_conflict(invigilations, staff_id, context.range):
            errors.append("Another invigilation is already scheduled at the selected time")

        lessons = build_index(context.snapshot.teacher_lessons)
        if has_conflict(lessons, staff_id, context.range):
            errors.append("A lesson is already scheduled at the selected time")

        return errors

    async def on_save(
        self, form: InvigilateForm, context: SessionContext, api: ApiBundle
    ) -> None:
        staff = _staff_api(api, "add_invigilate", "update_invigilate")
        start_time, end_time = context.range.as_pair()
        payload = {
            "staff_id": staff.staff_id,
            "start_time": start_time,
            "end_time": end_time,
            "topic_id": form.topic_id,
            "note": form.note or "",
        }

        if context.mode == SessionMode.EDIT and context.initial_event is not None:
            record_id = parse_record_id(context.initial_event.id, INVIGILATE_PREFIX)
            raw = await staff.update_invigilate({"record_id": record_id, **payload})
            check_envelope(raw, ApiShape.STAFF, "Failed to update invigilation")
        else:
            raw = await staff.add_invigilate(payload)
            check_envelope(raw, ApiShape.STAFF, "Failed to save invigilation")

    async def on_delete(
        self, current: CurrentEvent, context: SessionContext, api: ApiBundle
    ) -> None:
        staff = _staff_api(api, "delete_invigilate")
        # Invigilations are single occurrences: never send a repeat count.
        record_id = parse_record_id(current.id, INVIGILATE_PREFIX)
        raw = await staff.delete_invigilate({"record_id": record_id})
        check_envelope(raw, ApiShape.STAFF, "Failed to delete invigilation")
