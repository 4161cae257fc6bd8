from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .time_utils import utc_now


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return URGENCY_ORDER.index(self)

    def at_least(self, other: Urgency) -> bool:
        return self.rank >= other.rank


URGENCY_ORDER = (Urgency.LOW, Urgency.MEDIUM, Urgency.HIGH, Urgency.CRITICAL)


def max_urgency(current: Urgency, candidate: Urgency) -> Urgency:
    return candidate if candidate.rank > current.rank else current


class Speaker(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ESCALATED = "escalated"


class CaseStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in-review"
    ESCALATED = "escalated"
    CLOSED = "closed"


ACTIVE_CASE_STATUSES = {CaseStatus.PENDING, CaseStatus.IN_REVIEW, CaseStatus.ESCALATED}

DOCTOR_QUEUE = "role:doctor"
WORKER_QUEUE = "role:healthworker"
PATIENT_QUEUE = "role:patient"
USER_ROLES = {"patient", "healthworker", "doctor"}


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class ChatTurn:
    id: str
    seq: int
    speaker: Speaker
    text: str
    created_at: datetime
    attached_image_refs: tuple[str, ...] = ()
    audio_ref: str | None = None
    video_ref: str | None = None


@dataclass
class Media:
    audio_ref: str | None = None
    video_ref: str | None = None


@dataclass
class Session:
    id: str
    patient_id: str
    turns: list[ChatTurn] = field(default_factory=list)
    urgency: Urgency = Urgency.LOW
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    # Bumped when the session closes; results carrying an older value are stale.
    generation: int = 0
    media: dict[str, Media] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            patient_id=self.patient_id,
            urgency=self.urgency,
            status=self.status,
            turn_count=len(self.turns),
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class SessionSummary:
    id: str
    patient_id: str
    urgency: Urgency
    status: SessionStatus
    turn_count: int
    updated_at: datetime


@dataclass(frozen=True)
class Case:
    id: str
    session_id: str
    patient_id: str
    status: CaseStatus
    priority: Urgency
    summary: str = ""
    assigned_worker_id: str | None = None
    assigned_doctor_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CASE_STATUSES


@dataclass(frozen=True)
class Notification:
    id: str
    target_user_id: str
    title: str
    message: str
    priority: Urgency
    read: bool = False
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BloodPressure:
    systolic: int
    diastolic: int


@dataclass(frozen=True)
class Vitals:
    heart_rate: int | None = None
    blood_pressure: BloodPressure | None = None
    oxygen_saturation: float | None = None
    temperature: float | None = None
    respiratory_rate: int | None = None
    weight: float | None = None
    height: float | None = None


@dataclass(frozen=True)
class VitalsEntry:
    id: str
    patient_id: str
    vitals: Vitals
    health_worker_id: str | None = None
    session_id: str | None = None
    notes: str | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class MedicalEntity:
    text: str
    type: str = "symptom"
    confidence: float = 0.8


@dataclass
class Reply:
    text: str
    urgency: Urgency
    entities: list[MedicalEntity] = field(default_factory=list)
    source: str = "primary"

    def as_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "urgency": self.urgency.value,
            "entities": [
                {"text": entity.text, "type": entity.type, "confidence": entity.confidence}
                for entity in self.entities
            ],
            "source": self.source,
        }
