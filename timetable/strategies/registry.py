"""Lookup table from event kind to its strategy."""

from __future__ import annotations

from timetable.domain.models import EventKind
from timetable.strategies.base import EventTypeStrategy
from timetable.strategies.invigilate import InvigilateStrategy
from timetable.strategies.lesson import LessonStrategy
from timetable.strategies.unavailable import UnavailableStrategy

STRATEGIES: dict[EventKind, EventTypeStrategy] = {
    EventKind.LESSON: LessonStrategy(),
    EventKind.UNAVAILABLE: UnavailableStrategy(),
    EventKind.INVIGILATE: InvigilateStrategy(),
}


def get_strategy(kind: EventKind | str) -> EventTypeStrategy:
    return STRATEGIES[EventKind(kind)]
