"""Exception hierarchy for the event editor.

Validation and scheduling conflicts are not exceptions: strategies return
them as message lists. Only failures the user cannot fix by editing the
form are raised.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

CONFLICT_DETAIL_KEYS = ("teacher_error", "student_error", "room_error")


class ConflictDetail(BaseModel):
    """Per-resource conflicts reported by the backend on a rejected save."""

    teacher_error: list[str] = Field(default_factory=list)
    student_error: list[str] = Field(default_factory=list)
    room_error: list[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> ConflictDetail | None:
        if not isinstance(data, dict):
            return None
        if not any(key in data for key in CONFLICT_DETAIL_KEYS):
            return None
        return cls(**{key: _as_messages(data.get(key)) for key in CONFLICT_DETAIL_KEYS})


def _as_messages(value: Any) -> list[str]:
    """Normalise one detail entry: missing -> [], scalar -> [str], list -> [str, ...]."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return [str(value)]


class EditorError(Exception):
    """Base class for all editor exceptions."""

    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class BackendRejection(EditorError):
    """The backend answered without its success code.

    ``data`` is set when the backend reported structured per-resource
    conflicts; otherwise only the message is meaningful.
    """

    def __init__(self, message: str, data: ConflictDetail | None = None):
        details = {"data": data.model_dump()} if data is not None else {}
        super().__init__(message, status_code=409, details=details)
        self.data = data


class CapabilityMismatch(EditorError):
    """The API bundle lacks an operation the active strategy needs."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class SessionBusyError(EditorError):
    def __init__(self, message: str = "A save or delete is still in flight"):
        super().__init__(message, status_code=409)


class SessionClosedError(EditorError):
    def __init__(self, message: str = "The editor session is closed"):
        super().__init__(message, status_code=409)


class ReadOnlySessionError(EditorError):
    def __init__(self, message: str = "The editor session is read-only"):
        super().__init__(message, status_code=409)


class FormPatchError(EditorError):
    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message, status_code=422, details={"errors": errors or []})


class SessionNotFoundError(EditorError):
    def __init__(self, session_id: str):
        super().__init__(f"Session with id {session_id} not found", status_code=404)
