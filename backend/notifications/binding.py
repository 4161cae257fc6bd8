from __future__ import annotations

from typing import assert_never

from realtime.client import TransportClient
from realtime.events import (
    EVENT_TYPES,
    CaseCreated,
    CaseUpdated,
    ConsultationStarted,
    Event,
    NotificationPushed,
    UrgentAlert,
    VitalsSubmitted,
)
from session_engine.models import ConnectionState

from .store import Alert, NotificationStore


def apply_event(store: NotificationStore, event: Event) -> None:
    match event:
        case CaseCreated():
            store.upsert_case(event.case)
        case CaseUpdated():
            store.update_case(event.case_id, event.updates)
        case VitalsSubmitted():
            store.add_vitals_entry(event.vitals)
        case NotificationPushed():
            store.push_notification(event.notification)
        case UrgentAlert():
            store.record_alert(Alert(kind=event.type, message=event.message, case_id=event.case_id))
        case ConsultationStarted():
            store.record_alert(
                Alert(
                    kind=event.type,
                    message=f"Video consultation started for case {event.case_id}",
                    case_id=event.case_id,
                )
            )
        case _:
            assert_never(event)


def bind_transport(client: TransportClient, store: NotificationStore) -> None:
    """Feed a dashboard's store from its transport client."""
    for event_type in EVENT_TYPES:
        client.on(event_type, lambda event: apply_event(store, event))

    previous = client.on_state_change

    def _mirror(state: ConnectionState) -> None:
        store.set_connection_state(state)
        if previous is not None:
            previous(state)

    client.on_state_change = _mirror
    store.set_connection_state(client.state)
