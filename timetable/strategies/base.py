"""Shape shared by every event-type strategy."""

from __future__ import annotations

from typing import ClassVar, Protocol

from pydantic import BaseModel

from timetable.domain.api import ApiBundle
from timetable.domain.models import (
    CurrentEvent,
    EventKind,
    FormDescription,
    SessionContext,
)


class EventTypeStrategy(Protocol):
    """One event kind's form init, render description, validation, save and delete.

    ``validate`` must stay pure. Callers must not invoke ``on_save`` while
    ``validate`` reports errors; strategies do not re-check.
    """

    key: ClassVar[EventKind]
    label: ClassVar[str]
    allow_repeat: ClassVar[bool]
    form_model: ClassVar[type[BaseModel]]

    def init(self, context: SessionContext) -> BaseModel: ...

    def describe(self, form: BaseModel, context: SessionContext) -> FormDescription: ...

    def validate(self, form: BaseModel, context: SessionContext) -> list[str]: ...

    async def on_save(
        self, form: BaseModel, context: SessionContext, api: ApiBundle
    ) -> None: ...

    async def on_delete(
        self, current: CurrentEvent, context: SessionContext, api: ApiBundle
    ) -> None: ...
