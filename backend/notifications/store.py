from __future__ import annotations

import dataclasses
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from session_engine.models import (
    Case,
    CaseStatus,
    ConnectionState,
    Notification,
    SessionSummary,
    Urgency,
    VitalsEntry,
)
from session_engine.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreChange:
    kind: str
    key: str | None = None


@dataclass(frozen=True)
class Alert:
    kind: str
    message: str
    case_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)


Observer = Callable[[StoreChange], None]

_CASE_UPDATE_FIELDS = {case_field.name for case_field in dataclasses.fields(Case)} - {"id", "created_at"}
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


class NotificationStore:
    """Process-wide cache of cases, sessions, vitals and notifications.

    Every mutation finishes updating all derived views before observers run.
    Mutations made by an observer during fan-out are delivered after the
    current fan-out completes, so each observer sees changes in order.
    """

    def __init__(self) -> None:
        self._cases: dict[str, Case] = {}
        self._active_cases: list[Case] = []
        self._notifications: list[Notification] = []
        self._unread_count = 0
        self._sessions: dict[str, SessionSummary] = {}
        self._vitals: list[VitalsEntry] = []
        self._alerts: list[Alert] = []
        self._connection_state = ConnectionState.DISCONNECTED
        self._observers: list[Observer] = []
        self._pending: deque[StoreChange] = deque()
        self._notifying = False

    # Observers

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _emit(self, change: StoreChange) -> None:
        self._pending.append(change)
        if self._notifying:
            return
        self._notifying = True
        try:
            while self._pending:
                current = self._pending.popleft()
                for observer in list(self._observers):
                    try:
                        observer(current)
                    except Exception:
                        logger.exception("store observer failed on %s", current.kind)
        finally:
            self._notifying = False

    # Cases

    def upsert_case(self, case: Case) -> None:
        self._cases[case.id] = case
        self._recompute_active_cases()
        self._emit(StoreChange("case", case.id))

    def update_case(self, case_id: str, updates: dict[str, Any]) -> Case | None:
        current = self._cases.get(case_id)
        if current is None:
            logger.debug("update for unknown case %s ignored", case_id)
            return None
        changes: dict[str, Any] = {}
        for raw_key, value in updates.items():
            key = _snake(raw_key)
            if key not in _CASE_UPDATE_FIELDS:
                continue
            try:
                if key == "status":
                    value = CaseStatus(value)
                elif key == "priority":
                    value = Urgency(value)
            except ValueError:
                logger.warning("case %s update skipped invalid %s=%r", case_id, key, value)
                continue
            changes[key] = value
        if not changes:
            return current
        changes.setdefault("updated_at", utc_now())
        updated = dataclasses.replace(current, **changes)
        self._cases[case_id] = updated
        self._recompute_active_cases()
        self._emit(StoreChange("case", case_id))
        return updated

    def _recompute_active_cases(self) -> None:
        self._active_cases = [case for case in self._cases.values() if case.is_active]

    def get_case(self, case_id: str) -> Case | None:
        return self._cases.get(case_id)

    @property
    def cases(self) -> list[Case]:
        return list(self._cases.values())

    @property
    def active_cases(self) -> list[Case]:
        return list(self._active_cases)

    # Notifications

    def push_notification(self, notification: Notification) -> None:
        self._notifications.append(notification)
        self._recompute_unread()
        self._emit(StoreChange("notification", notification.id))

    def mark_read(self, notification_id: str) -> bool:
        for index, notification in enumerate(self._notifications):
            if notification.id != notification_id:
                continue
            if notification.read:
                return True
            self._notifications[index] = dataclasses.replace(notification, read=True)
            self._recompute_unread()
            self._emit(StoreChange("notification", notification_id))
            return True
        return False

    def clear_notifications(self) -> None:
        self._notifications = []
        self._unread_count = 0
        self._emit(StoreChange("notifications_cleared"))

    def _recompute_unread(self) -> None:
        self._unread_count = sum(1 for notification in self._notifications if not notification.read)

    def notifications(self, target: str | None = None) -> list[Notification]:
        if target is None:
            return list(self._notifications)
        return [notification for notification in self._notifications if notification.target_user_id == target]

    @property
    def unread_count(self) -> int:
        return self._unread_count

    # Sessions, vitals, alerts

    def index_session(self, summary: SessionSummary) -> None:
        self._sessions[summary.id] = summary
        self._emit(StoreChange("session", summary.id))

    @property
    def sessions(self) -> list[SessionSummary]:
        return list(self._sessions.values())

    def add_vitals_entry(self, entry: VitalsEntry) -> None:
        self._vitals.append(entry)
        self._emit(StoreChange("vitals", entry.id))

    @property
    def vitals_entries(self) -> list[VitalsEntry]:
        return list(self._vitals)

    def record_alert(self, alert: Alert) -> None:
        self._alerts.append(alert)
        self._emit(StoreChange("alert", alert.case_id))

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts)

    # Connection

    def set_connection_state(self, state: ConnectionState) -> None:
        if state == self._connection_state:
            return
        self._connection_state = state
        self._emit(StoreChange("connection", state.value))

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_connected(self) -> bool:
        return self._connection_state == ConnectionState.CONNECTED
