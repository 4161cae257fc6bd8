from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from .lifecycle import LifecycleError, SessionLifecycle
from .models import (
    DOCTOR_QUEUE,
    WORKER_QUEUE,
    Case,
    CaseStatus,
    ChatTurn,
    Media,
    Notification,
    Reply,
    Session,
    SessionStatus,
    Speaker,
    Urgency,
    max_urgency,
    new_id,
)
from .orchestrator import ResponseOrchestrator
from .time_utils import utc_now

if TYPE_CHECKING:
    from notifications.store import NotificationStore

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def case_created(self, case: Case, target: str | None) -> None: ...

    def case_updated(self, case: Case, updates: dict[str, Any]) -> None: ...

    def notification(self, notification: Notification) -> None: ...

    def urgent_alert(self, message: str, case_id: str | None, target: str | None) -> None: ...


@dataclass
class TurnOutcome:
    session: Session
    patient_turn: ChatTurn
    reply: Reply
    assistant_turn: ChatTurn | None = None
    case: Case | None = None
    notifications: list[Notification] = field(default_factory=list)
    enrichment: list[asyncio.Task] = field(default_factory=list)
    applied: bool = True


def _queue_for(urgency: Urgency) -> str:
    return DOCTOR_QUEUE if urgency.at_least(Urgency.HIGH) else WORKER_QUEUE


def _summarize(session: Session) -> str:
    for turn in session.turns:
        if turn.speaker == Speaker.PATIENT and turn.text:
            return turn.text[:200]
    return "Patient shared images for review."


class SessionAggregator:
    """Owns sessions and cases; the only writer of conversation state.

    Submissions for one patient run one at a time, so a transcript is always
    patient/assistant pairs in submission order. Closing a session bumps its
    generation; replies or media that were in flight for an older generation
    are dropped.
    """

    def __init__(
        self,
        *,
        store: NotificationStore,
        orchestrator: ResponseOrchestrator,
        publisher: Publisher | None = None,
        case_threshold: Urgency = Urgency.MEDIUM,
        lifecycle: SessionLifecycle | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.case_threshold = case_threshold
        self.lifecycle = lifecycle or SessionLifecycle()
        self._sessions: dict[str, Session] = {}
        self._active_by_patient: dict[str, str] = {}
        self._case_ids: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    # Queries

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def active_session_for(self, patient_id: str) -> Session | None:
        session_id = self._active_by_patient.get(patient_id)
        return self._sessions.get(session_id) if session_id else None

    def case_for_session(self, session_id: str) -> Case | None:
        case_id = self._case_ids.get(session_id)
        return self.store.get_case(case_id) if case_id else None

    def transcript(self, session_id: str) -> list[ChatTurn]:
        session = self._require(session_id)
        turns: list[ChatTurn] = []
        for turn in session.turns:
            media = session.media.get(turn.id)
            if media is None:
                turns.append(turn)
            else:
                turns.append(dataclasses.replace(turn, audio_ref=media.audio_ref, video_ref=media.video_ref))
        return turns

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session not found: {session_id}")
        return session

    # Turns

    async def submit_user_turn(self, patient_id: str, text: str, images: Iterable[str] = ()) -> TurnOutcome:
        text = (text or "").strip()
        image_refs = tuple(images)
        if not text and not image_refs:
            raise ValueError("A turn needs text or at least one image.")

        lock = self._locks.setdefault(patient_id, asyncio.Lock())
        self._lock_holders[patient_id] = self._lock_holders.get(patient_id, 0) + 1
        try:
            async with lock:
                return await self._run_turn(patient_id, text, image_refs)
        finally:
            self._lock_holders[patient_id] -= 1
            self._release_lock(patient_id)

    def _release_lock(self, patient_id: str) -> None:
        if self._lock_holders.get(patient_id, 0) or patient_id in self._active_by_patient:
            return
        self._lock_holders.pop(patient_id, None)
        self._locks.pop(patient_id, None)

    async def _run_turn(self, patient_id: str, text: str, image_refs: tuple[str, ...]) -> TurnOutcome:
        session = self.active_session_for(patient_id) or self._open_session(patient_id)
        generation = session.generation
        history = list(session.turns)
        patient_turn = self.lifecycle.append(session, speaker=Speaker.PATIENT, text=text, image_refs=image_refs)
        self.store.index_session(session.summary())

        reply = await self.orchestrator.respond(history, text, bool(image_refs))

        if session.generation != generation or not session.is_active:
            logger.info("discarding reply for session %s closed mid-turn", session.id)
            return TurnOutcome(session=session, patient_turn=patient_turn, reply=reply, applied=False)

        assistant_turn = self.lifecycle.append(session, speaker=Speaker.ASSISTANT, text=reply.text)
        previous_urgency = session.urgency
        session.urgency = max_urgency(previous_urgency, reply.urgency)
        self.store.index_session(session.summary())

        outcome = TurnOutcome(
            session=session,
            patient_turn=patient_turn,
            reply=reply,
            assistant_turn=assistant_turn,
        )
        self._follow_up(session, previous_urgency, outcome)
        outcome.enrichment = self.orchestrator.enrich(
            reply.text,
            self._media_callback(session, generation, assistant_turn.id),
        )
        return outcome

    def append_system_turn(self, session_id: str, text: str) -> ChatTurn:
        session = self._require(session_id)
        turn = self.lifecycle.append(session, speaker=Speaker.SYSTEM, text=text)
        self.store.index_session(session.summary())
        return turn

    def _open_session(self, patient_id: str) -> Session:
        session = self.lifecycle.open(patient_id)
        self._sessions[session.id] = session
        self._active_by_patient[patient_id] = session.id
        logger.info("opened session %s for patient %s", session.id, patient_id)
        return session

    def _follow_up(self, session: Session, previous_urgency: Urgency, outcome: TurnOutcome) -> None:
        case = self.case_for_session(session.id)
        if case is None and session.urgency.at_least(self.case_threshold):
            case = self._open_case(session, CaseStatus.PENDING)
            outcome.notifications.append(
                self._notify(
                    _queue_for(session.urgency),
                    title=f"New {session.urgency.value} priority case",
                    message=f"Patient {session.patient_id}: {case.summary}",
                    priority=session.urgency,
                )
            )
        elif case is not None and session.urgency.rank > case.priority.rank:
            raised_to_doctor = not case.priority.at_least(Urgency.HIGH) and session.urgency.at_least(Urgency.HIGH)
            case = self._update_case(case, priority=session.urgency)
            if raised_to_doctor:
                outcome.notifications.append(
                    self._notify(
                        DOCTOR_QUEUE,
                        title=f"Case raised to {session.urgency.value} priority",
                        message=f"Patient {session.patient_id}: {case.summary}",
                        priority=session.urgency,
                    )
                )
        outcome.case = case

        if session.urgency == Urgency.CRITICAL and previous_urgency != Urgency.CRITICAL and self.publisher:
            self.publisher.urgent_alert(
                f"Critical symptoms reported by patient {session.patient_id}",
                case.id if case else None,
                DOCTOR_QUEUE,
            )

    def _open_case(self, session: Session, status: CaseStatus) -> Case:
        case = Case(
            id=new_id("case"),
            session_id=session.id,
            patient_id=session.patient_id,
            status=status,
            priority=session.urgency,
            summary=_summarize(session),
        )
        self._save_case(case)
        logger.info("opened case %s (%s) for session %s", case.id, case.priority.value, session.id)
        if self.publisher:
            self.publisher.case_created(case, _queue_for(case.priority))
        return case

    def _save_case(self, case: Case) -> Case:
        self._case_ids[case.session_id] = case.id
        self.store.upsert_case(case)
        return case

    def _update_case(self, case: Case, **changes: Any) -> Case:
        updated = self._save_case(dataclasses.replace(case, updated_at=utc_now(), **changes))
        if self.publisher:
            self.publisher.case_updated(
                updated,
                {key: getattr(value, "value", value) for key, value in changes.items()},
            )
        return updated

    def _notify(self, target: str, *, title: str, message: str, priority: Urgency) -> Notification:
        notification = Notification(
            id=new_id("ntf"),
            target_user_id=target,
            title=title,
            message=message,
            priority=priority,
        )
        self.store.push_notification(notification)
        if self.publisher:
            self.publisher.notification(notification)
        return notification

    def _media_callback(self, session: Session, generation: int, turn_id: str):
        def _attach(kind: str, ref: str) -> None:
            if session.generation != generation or not session.is_active:
                logger.info("discarding %s for session %s closed before it arrived", kind, session.id)
                return
            media = session.media.setdefault(turn_id, Media())
            if kind == "audio":
                media.audio_ref = ref
            elif kind == "video":
                media.video_ref = ref

        return _attach

    # Lifecycle

    def close_session(self, session_id: str, final_status: SessionStatus | str) -> Session:
        session = self._require(session_id)
        try:
            status = SessionStatus(final_status)
        except ValueError as exc:
            raise LifecycleError(f"Unknown session status: {final_status}") from exc
        self.lifecycle.transition(session, status)
        if self._active_by_patient.get(session.patient_id) == session.id:
            del self._active_by_patient[session.patient_id]
            self._release_lock(session.patient_id)
        self.store.index_session(session.summary())
        logger.info("session %s closed as %s", session.id, status.value)

        if status == SessionStatus.ESCALATED:
            case = self.case_for_session(session.id)
            if case is None:
                case = self._open_case(session, CaseStatus.ESCALATED)
            elif case.status != CaseStatus.ESCALATED:
                case = self._update_case(case, status=CaseStatus.ESCALATED)
            self._notify(
                DOCTOR_QUEUE,
                title="Session escalated",
                message=f"Patient {session.patient_id} needs a doctor's review: {case.summary}",
                priority=max_urgency(case.priority, Urgency.HIGH),
            )
        return session

    def update_case_status(self, case_id: str, status: CaseStatus | str) -> Case | None:
        case = self.store.get_case(case_id)
        if case is None:
            return None
        return self._update_case(case, status=CaseStatus(status))
