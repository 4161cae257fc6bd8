from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from session_engine.models import Case, Notification, VitalsEntry

from .sse import encode_frame

CLOSE_EVENT = "close"


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CaseCreated(_EventModel):
    type: Literal["case-created"] = "case-created"
    case: Case


class CaseUpdated(_EventModel):
    type: Literal["case-updated"] = "case-updated"
    case_id: str = Field(alias="caseId")
    updates: dict[str, Any] = Field(default_factory=dict)


class VitalsSubmitted(_EventModel):
    type: Literal["vitals-submitted"] = "vitals-submitted"
    vitals: VitalsEntry
    patient_id: str = Field(alias="patientId")


class NotificationPushed(_EventModel):
    type: Literal["notification"] = "notification"
    notification: Notification


class UrgentAlert(_EventModel):
    type: Literal["urgent-alert"] = "urgent-alert"
    message: str
    case_id: str | None = Field(default=None, alias="caseId")


class ConsultationStarted(_EventModel):
    type: Literal["consultation-started"] = "consultation-started"
    case_id: str = Field(alias="caseId")


Event = Annotated[
    Union[CaseCreated, CaseUpdated, VitalsSubmitted, NotificationPushed, UrgentAlert, ConsultationStarted],
    Field(discriminator="type"),
]

EVENT_TYPES = (
    "case-created",
    "case-updated",
    "vitals-submitted",
    "notification",
    "urgent-alert",
    "consultation-started",
)

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(name: str, data: str) -> Event:
    """Decode one SSE frame into its event model.

    The JSON body may omit ``type``; the frame's event name fills it in. A body
    whose ``type`` disagrees with the frame name is rejected.
    """
    payload = json.loads(data) if data else {}
    if not isinstance(payload, dict):
        raise ValueError(f"Event '{name}' carried a non-object payload.")
    declared = payload.setdefault("type", name)
    if declared != name:
        raise ValueError(f"Event frame '{name}' carried a '{declared}' payload.")
    return _EVENT_ADAPTER.validate_python(payload)


def encode_event(event: Event) -> str:
    return encode_frame(event.type, event.model_dump_json(by_alias=True))


def encode_close(reason: str = "server closed the stream") -> str:
    return encode_frame(CLOSE_EVENT, json.dumps({"reason": reason}))


OUTBOUND_TYPES = (
    "update-case-status",
    "urgent-consultation-request",
    "join-room",
    "leave-room",
    "room-message",
)


class ClientMessage(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
