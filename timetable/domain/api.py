"""Backend API bundles handed to the strategies.

The host page supplies a client object exposing one of two call shapes:
the class schedule (lessons keyed by class id, ``code == 200`` on success)
or the legacy staff schedule (lessons keyed by staff id, ``status == 0`` on
success, plus invigilation and unavailability operations). The client is
resolved once by :func:`resolve_api_bundle` and the strategies only ever see
the resolved, discriminated bundle.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from timetable.domain.errors import BackendRejection, CapabilityMismatch, ConflictDetail

ApiCall = Callable[..., Awaitable[dict]]


class ApiShape(StrEnum):
    CLASS = "class"
    STAFF = "staff"


class ApiEnvelope(BaseModel):
    """``{code|status, message, data?}`` as returned by every backend call."""

    model_config = ConfigDict(extra="allow")

    code: int | None = None
    status: int | None = None
    message: str | None = None
    data: Any = None

    def succeeded(self, shape: ApiShape) -> bool:
        if shape == ApiShape.CLASS:
            return self.code == 200
        return self.status == 0


def check_envelope(raw: dict, shape: ApiShape, fallback_message: str) -> ApiEnvelope:
    """Raise :class:`BackendRejection` unless *raw* carries the shape's success code."""
    if not isinstance(raw, dict):
        raise BackendRejection(fallback_message)
    envelope = ApiEnvelope.model_validate(raw)
    if envelope.succeeded(shape):
        return envelope
    detail = ConflictDetail.from_payload(envelope.data)
    raise BackendRejection(envelope.message or fallback_message, data=detail)


class ClassScheduleApi(BaseModel):
    model_config = ConfigDict(frozen=True)

    shape: Literal[ApiShape.CLASS] = ApiShape.CLASS
    class_id: int
    add_lesson: ApiCall
    edit_lesson: ApiCall
    delete_lesson: ApiCall


class StaffScheduleApi(BaseModel):
    model_config = ConfigDict(frozen=True)

    shape: Literal[ApiShape.STAFF] = ApiShape.STAFF
    staff_id: int
    edit_lesson: ApiCall
    delete_lesson: ApiCall
    add_invigilate: ApiCall | None = None
    update_invigilate: ApiCall | None = None
    delete_invigilate: ApiCall | None = None
    update_unavailable: ApiCall | None = None

    def require(self, *names: str) -> None:
        missing = [name for name in names if getattr(self, name) is None]
        if missing:
            raise CapabilityMismatch(
                f"Staff schedule API is missing {', '.join(missing)}"
            )


ApiBundle = ClassScheduleApi | StaffScheduleApi


def _method(client: Any, name: str) -> ApiCall | None:
    candidate = getattr(client, name, None)
    return candidate if callable(candidate) else None


def resolve_api_bundle(client: Any) -> ApiBundle:
    """Inspect *client* once and return the bundle matching its call shape.

    A client exposing the full class-schedule trio wins over the staff
    shape. Raises :class:`CapabilityMismatch` if neither shape is complete.
    """
    if isinstance(client, (ClassScheduleApi, StaffScheduleApi)):
        return client

    class_calls = {
        "add_lesson": _method(client, "add_class_lesson"),
        "edit_lesson": _method(client, "edit_class_lesson"),
        "delete_lesson": _method(client, "delete_class_lesson"),
    }
    class_id = getattr(client, "class_id", None)
    if all(class_calls.values()) and class_id is not None:
        return ClassScheduleApi(class_id=class_id, **class_calls)

    edit_lesson = _method(client, "edit_staff_lesson")
    delete_lesson = _method(client, "delete_staff_lesson")
    staff_id = getattr(client, "staff_id", None)
    if edit_lesson and delete_lesson and staff_id is not None:
        return StaffScheduleApi(
            staff_id=staff_id,
            edit_lesson=edit_lesson,
            delete_lesson=delete_lesson,
            add_invigilate=_method(client, "add_staff_invigilate"),
            update_invigilate=_method(client, "update_staff_invigilate"),
            delete_invigilate=_method(client, "delete_staff_invigilate"),
            update_unavailable=_method(client, "update_staff_unavailable"),
        )

    raise CapabilityMismatch(
        f"{type(client).__name__} exposes neither the class nor the staff schedule API"
    )
