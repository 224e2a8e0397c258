"""Editor session controller: one add/edit interaction on the calendar.

``closed -> open_add | open_edit -> closed``. The session owns the form
state and the context for its lifetime, routes every operation to the
strategy of the active event kind, and only closes after a save or delete
has resolved successfully.

The conflict checks run against the snapshot the session was opened with.
They are a best-effort pre-filter; the backend stays authoritative and may
still reject a save when the schedule changed underneath.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import ValidationError

from timetable.core.config import Settings, get_settings
from timetable.core.logging import get_logger
from timetable.domain.api import ApiBundle, ClassScheduleApi, resolve_api_bundle
from timetable.domain.bus import EventBus
from timetable.domain.errors import (
    BackendRejection,
    EditorError,
    FormPatchError,
    ReadOnlySessionError,
    SessionBusyError,
    SessionClosedError,
)
from timetable.domain.events import EventDeleted, EventSaved, SaveRejected
from timetable.domain.models import (
    CurrentEvent,
    EventKind,
    FormDescription,
    FormState,
    ScheduleSnapshot,
    SessionContext,
    SessionMode,
    SessionState,
    TimeRange,
)
from timetable.services.conflicts import overlapping_ranges
from timetable.services.ranges import merge_ranges
from timetable.strategies.base import EventTypeStrategy
from timetable.strategies.registry import get_strategy

logger = get_logger(__name__)


class EditorSession:
    def __init__(
        self,
        bus: EventBus | None = None,
        settings: Settings | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.bus = bus or EventBus()
        self.settings = settings or get_settings()
        self.state = SessionState.CLOSED
        self.busy = False
        self.kind: EventKind | None = None
        self.context: SessionContext | None = None
        self.api: ApiBundle | None = None
        self.opened_at: datetime | None = None
        self._forms: dict[EventKind, FormState] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, kind: EventKind, context: SessionContext, client: object) -> FormState:
        """Open the editor for *kind* and seed its form from *context*."""
        if self.state != SessionState.CLOSED:
            raise EditorError("The editor session is already open", status_code=409)
        kind = EventKind(kind)
        self._check_allowed(kind)

        # Resolve the client once; strategies only see the resolved bundle.
        self.api = resolve_api_bundle(client)
        self.context = context
        self.kind = kind
        self._forms = {}
        self.opened_at = datetime.now(timezone.utc)
        self.state = (
            SessionState.OPEN_EDIT if context.mode == SessionMode.EDIT else SessionState.OPEN_ADD
        )
        form = self._init_form(kind)
        logger.info(
            "editor_opened",
            session_id=self.id,
            kind=kind.value,
            mode=context.mode.value,
            api_shape=self.api.shape.value,
        )
        return form

    def cancel(self) -> None:
        """Close without saving. A no-op on a closed session."""
        self._ensure_idle()
        if self.state == SessionState.CLOSED:
            return
        logger.info("editor_cancelled", session_id=self.id)
        self._close()

    # ------------------------------------------------------------------
    # Form state
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.state != SessionState.CLOSED

    @property
    def strategy(self) -> EventTypeStrategy:
        self._ensure_open()
        return get_strategy(self.kind)

    @property
    def form(self) -> FormState:
        self._ensure_open()
        return self._forms[self.kind]

    def patch(self, **changes: object) -> FormState:
        """Merge *changes* into the active form, producing a new form value."""
        self._ensure_open()
        self._ensure_idle()
        self._ensure_writable()
        model = self.strategy.form_model
        try:
            form = model.model_validate({**self.form.model_dump(), **changes})
        except ValidationError as exc:
            raise FormPatchError(
                f"Invalid {self.kind.value} form",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

        repeat_num = getattr(form, "repeat_num", None)
        if repeat_num is not None and repeat_num > self.settings.max_repeat_num:
            raise FormPatchError(
                f"repeat_num must not exceed {self.settings.max_repeat_num}"
            )
        self._forms[self.kind] = form
        return form

    def select_kind(self, kind: EventKind) -> FormState:
        """Switch strategy, keeping each kind's form across switches."""
        self._ensure_open()
        self._ensure_idle()
        kind = EventKind(kind)
        self._check_allowed(kind)
        self.kind = kind
        if kind not in self._forms:
            return self._init_form(kind)
        return self._forms[kind]

    def set_range(self, range: TimeRange) -> SessionContext:
        """Move the selected time range."""
        self._ensure_open()
        self._ensure_idle()
        self._ensure_writable()
        self.context = self.context.model_copy(update={"range": range})
        return self.context

    def refresh_snapshot(self, snapshot: ScheduleSnapshot) -> SessionContext:
        """Swap in fresher occupancy data, e.g. right before confirming."""
        self._ensure_open()
        self._ensure_idle()
        self.context = self.context.model_copy(update={"snapshot": snapshot})
        return self.context

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        return self.strategy.validate(self.form, self.context)

    def describe(self) -> FormDescription:
        return self.strategy.describe(self.form, self.context)

    def unavailable_conflicts(self) -> list[TimeRange]:
        """Unavailable blocks the current selection falls on.

        Adjacent or overlapping slots are reported as one merged block.
        """
        self._ensure_open()
        blocks = merge_ranges(self.context.snapshot.unavailable)
        return overlapping_ranges(blocks, self.context.range)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def confirm(self) -> list[str]:
        """Validate and save.

        Returns the validation errors and leaves the session open when
        there are any. Otherwise awaits the strategy's save and closes only
        once it resolved; a :class:`BackendRejection` propagates with the
        session still open.
        """
        self._ensure_open()
        self._ensure_idle()
        self._ensure_writable()

        errors = self.validate()
        if errors:
            logger.info("editor_validation_failed", session_id=self.id, errors=errors)
            return errors

        strategy, form, context = self.strategy, self.form, self.context
        self.busy = True
        try:
            await strategy.on_save(form, context, self.api)
        except BackendRejection as exc:
            self._rejected(exc)
            raise
        finally:
            self.busy = False

        self.bus.publish(
            EventSaved(
                session_id=self.id,
                kind=self.kind,
                mode=context.mode,
                range=context.range,
                **self._owner(),
            )
        )
        logger.info("editor_saved", session_id=self.id, kind=self.kind.value)
        self._close()
        return []

    async def delete(self, repeat_num: int | None = None) -> None:
        """Delete the event the session was opened on. No validation runs."""
        self._ensure_open()
        self._ensure_idle()
        self._ensure_writable()
        initial = self.context.initial_event
        if initial is None:
            raise EditorError("Only edit sessions can delete", status_code=409)

        strategy = get_strategy(initial.kind)
        current = CurrentEvent(
            id=initial.id,
            repeat_num=(repeat_num or self.settings.default_repeat_num)
            if strategy.allow_repeat
            else None,
        )
        self.busy = True
        try:
            await strategy.on_delete(current, self.context, self.api)
        except BackendRejection as exc:
            self._rejected(exc)
            raise
        finally:
            self.busy = False

        self.bus.publish(
            EventDeleted(
                session_id=self.id,
                kind=initial.kind,
                event_id=initial.id,
                repeat_num=current.repeat_num,
                **self._owner(),
            )
        )
        logger.info("editor_deleted", session_id=self.id, event_id=initial.id)
        self._close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _init_form(self, kind: EventKind) -> FormState:
        strategy = get_strategy(kind)
        form = strategy.init(self.context)
        if hasattr(form, "repeat_num"):
            form = form.model_copy(update={"repeat_num": self.settings.default_repeat_num})
        self._forms[kind] = form
        return form

    def _check_allowed(self, kind: EventKind) -> None:
        if kind not in self.settings.allowed_kinds:
            raise EditorError(f"Event kind {kind.value} is not enabled", status_code=400)

    def _owner(self) -> dict:
        if isinstance(self.api, ClassScheduleApi):
            return {"class_id": self.api.class_id}
        return {"staff_id": self.api.staff_id}

    def _rejected(self, exc: BackendRejection) -> None:
        logger.warning(
            "editor_backend_rejected",
            session_id=self.id,
            kind=self.kind.value,
            message=exc.message,
            detail=exc.data.model_dump() if exc.data else None,
        )
        self.bus.publish(
            SaveRejected(session_id=self.id, kind=self.kind, message=exc.message, detail=exc.data)
        )

    def _close(self) -> None:
        self.state = SessionState.CLOSED
        self.kind = None
        self.context = None
        self._forms = {}

    def _ensure_open(self) -> None:
        if self.state == SessionState.CLOSED:
            raise SessionClosedError()

    def _ensure_idle(self) -> None:
        if self.busy:
            raise SessionBusyError()

    def _ensure_writable(self) -> None:
        if self.context is not None and self.context.read_only:
            raise ReadOnlySessionError()
