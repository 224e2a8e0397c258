"""Unavailability strategy: blocks of time a staff member cannot be scheduled.

The backend stores a week's unavailable slots as one list, so both save and
delete send the complete replacement list for the viewed week.
"""

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
    SessionContext,
    TimeRange,
    UnavailableForm,
)
from timetable.services.ranges import week_num

UNAVAILABLE_EVENT_TYPE = 1


def _staff_api(api: ApiBundle) -> StaffScheduleApi:
    if not isinstance(api, StaffScheduleApi):
        raise CapabilityMismatch("Unavailable slots require the staff schedule API")
    api.require("update_unavailable")
    return api


def _time_list(ranges: list[TimeRange]) -> list[dict[str, int]]:
    return [{"start_time": r.start, "end_time": r.end} for r in ranges]


def _viewed_week(context: SessionContext) -> int:
    anchor = context.window_start if context.window_start is not None else context.range.start
    return week_num(anchor)


class UnavailableStrategy:
    key: ClassVar[EventKind] = EventKind.UNAVAILABLE
    label: ClassVar[str] = "Unavailable"
    allow_repeat: ClassVar[bool] = True
    form_model: ClassVar[type[UnavailableForm]] = UnavailableForm

    def init(self, context: SessionContext) -> UnavailableForm:
        return UnavailableForm(repeat="none")

    def describe(self, form: UnavailableForm, context: SessionContext) -> FormDescription:
        fields = []
        if not context.read_only:
            fields.append(
                FieldSpec(
                    name="repeat",
                    label="Repeat weekly",
                    widget="select",
                    value=form.repeat,
                    options=[
                        FieldOption(value="none", label="Does not repeat"),
                        FieldOption(value="weekly", label="Every week"),
                    ],
                )
            )
        return FormDescription(
            kind=self.key, label=self.label, allow_repeat=self.allow_repeat, fields=fields
        )

    def validate(self, form: UnavailableForm, context: SessionContext) -> list[str]:
        return []

    async def on_save(
        self, form: UnavailableForm, context: SessionContext, api: ApiBundle
    ) -> None:
        staff = _staff_api(api)
        # TODO: expand weekly repeats into one slot per remaining week once the
        # backend accepts multi-week time lists; today both options save one slot.
        time_list = [*context.snapshot.unavailable, context.range]
        raw = await staff.update_unavailable(
            staff.staff_id,
            {
                "week_num": _viewed_week(context),
                "event_type": UNAVAILABLE_EVENT_TYPE,
                "time_list": _time_list(time_list),
            },
        )
        check_envelope(raw, ApiShape.STAFF, "Failed to save unavailable time")

    async def on_delete(
        self, current: CurrentEvent, context: SessionContext, api: ApiBundle
    ) -> None:
        staff = _staff_api(api)
        original = context.initial_event.range if context.initial_event else None
        kept = [r for r in context.snapshot.unavailable if r != original]
        raw = await staff.update_unavailable(
            staff.staff_id,
            {
                "week_num": _viewed_week(context),
                "event_type": UNAVAILABLE_EVENT_TYPE,
                "time_list": _time_list(kept),
            },
        )
        check_envelope(raw, ApiShape.STAFF, "Failed to delete unavailable time")
