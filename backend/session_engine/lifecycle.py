from __future__ import annotations

from typing import Iterable

from .models import ChatTurn, Session, SessionStatus, Speaker, new_id
from .time_utils import utc_now


class LifecycleError(Exception):
    pass


TERMINAL_SESSION_STATES = {SessionStatus.COMPLETED, SessionStatus.ESCALATED}


class SessionLifecycle:
    _TRANSITIONS = {
        SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.ESCALATED},
        SessionStatus.COMPLETED: set(),
        SessionStatus.ESCALATED: set(),
    }

    def open(self, patient_id: str) -> Session:
        if not patient_id:
            raise LifecycleError("A session needs a patient id.")
        return Session(id=new_id("ses"), patient_id=patient_id)

    def append(
        self,
        session: Session,
        *,
        speaker: Speaker,
        text: str,
        image_refs: Iterable[str] = (),
    ) -> ChatTurn:
        if not session.is_active:
            raise LifecycleError(f"Session {session.id} is {session.status.value}; no further turns may be appended.")
        now = utc_now()
        turn = ChatTurn(
            id=new_id("turn"),
            seq=len(session.turns),
            speaker=speaker,
            text=text,
            created_at=now,
            attached_image_refs=tuple(image_refs),
        )
        session.turns.append(turn)
        session.updated_at = now
        return turn

    def transition(self, session: Session, next_status: SessionStatus) -> None:
        allowed_next = self._TRANSITIONS.get(session.status, set())
        if next_status not in allowed_next:
            raise LifecycleError(f"Invalid transition: {session.status.value} -> {next_status.value}")
        session.status = next_status
        session.generation += 1
        session.updated_at = utc_now()
