"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

from timetable.core.logging import get_logger
from timetable.domain.bus import EventBus
from timetable.domain.events import EditorEvent, EventDeleted, EventSaved, SaveRejected
from timetable.domain.models import ActivityEntry, ActivityType
from timetable.repos.memory import ActivityRepository

logger = get_logger(__name__)

_ACTIVITY_TYPES: dict[type[EditorEvent], ActivityType] = {
    EventSaved: ActivityType.SAVED,
    EventDeleted: ActivityType.DELETED,
    SaveRejected: ActivityType.REJECTED,
}


class HandlerRegistry:
    """Records every editor outcome in the activity log."""

    def __init__(self, bus: EventBus, activity_repo: ActivityRepository) -> None:
        self.bus = bus
        self.activity_repo = activity_repo
        bus.subscribe(EditorEvent, self.on_editor_event)

    def on_editor_event(self, event: EditorEvent) -> None:
        activity_type = _ACTIVITY_TYPES.get(type(event))
        if activity_type is None:
            return
        if activity_type == ActivityType.REJECTED:
            logger.info("save_rejection_recorded", session_id=event.session_id)
        self.activity_repo.add(
            ActivityEntry(
                session_id=event.session_id,
                type=activity_type,
                kind=event.kind,
                payload=event.model_dump(mode="json", exclude={"session_id", "kind"}),
            )
        )
