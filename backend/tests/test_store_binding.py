from __future__ import annotations

import asyncio

import httpx

from notifications import NotificationStore, apply_event, bind_transport
from realtime import (
    CaseCreated,
    CaseUpdated,
    ConsultationStarted,
    NotificationPushed,
    TransportClient,
    UrgentAlert,
    VitalsSubmitted,
)
from realtime.events import encode_close, encode_event
from session_engine import Case, CaseStatus, ConnectionState, Notification, Urgency, Vitals, VitalsEntry


def _case() -> Case:
    return Case(id="case-1", session_id="ses-1", patient_id="pat-1", status=CaseStatus.PENDING, priority=Urgency.HIGH)


def test_apply_event_updates_every_view():
    store = NotificationStore()
    apply_event(store, CaseCreated(case=_case()))
    apply_event(store, CaseUpdated(case_id="case-1", updates={"status": "in-review"}))
    apply_event(
        store,
        VitalsSubmitted(
            vitals=VitalsEntry(id="v1", patient_id="pat-1", vitals=Vitals(heart_rate=88)),
            patient_id="pat-1",
        ),
    )
    apply_event(
        store,
        NotificationPushed(
            notification=Notification(id="n1", target_user_id="doc-1", title="t", message="m", priority=Urgency.HIGH)
        ),
    )
    apply_event(store, UrgentAlert(message="Patient unresponsive", case_id="case-1"))
    apply_event(store, ConsultationStarted(case_id="case-1"))

    assert store.get_case("case-1").status == CaseStatus.IN_REVIEW
    assert store.vitals_entries[0].vitals.heart_rate == 88
    assert store.unread_count == 1
    assert [alert.kind for alert in store.alerts] == ["urgent-alert", "consultation-started"]


def test_bind_transport_feeds_store_and_keeps_existing_state_callback():
    store = NotificationStore()
    forwarded: list[ConnectionState] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = encode_event(CaseCreated(case=_case())) + encode_close()
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

    async def scenario() -> TransportClient:
        client = TransportClient(
            "http://events.test",
            on_state_change=forwarded.append,
            transport=httpx.MockTransport(handler),
        )
        bind_transport(client, store)
        client.connect("doc-1", "doctor", "token-1")
        await client.join()
        return client

    seen_states: list[str | None] = []
    store.subscribe(lambda change: seen_states.append(change.key) if change.kind == "connection" else None)
    client = asyncio.run(scenario())

    assert [case.id for case in store.active_cases] == ["case-1"]
    assert client.state == ConnectionState.DISCONNECTED
    assert store.connection_state == ConnectionState.DISCONNECTED
    assert seen_states == ["connecting", "connected", "disconnected"]
    assert forwarded == [ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.DISCONNECTED]
