from __future__ import annotations

from notifications import NotificationStore, StoreChange
from session_engine import Case, CaseStatus, ConnectionState, Notification, Urgency


def _case(case_id: str = "case-1", status: CaseStatus = CaseStatus.PENDING) -> Case:
    return Case(id=case_id, session_id="ses-1", patient_id="pat-1", status=status, priority=Urgency.HIGH)


def _notification(notification_id: str, target: str = "role:doctor") -> Notification:
    return Notification(
        id=notification_id,
        target_user_id=target,
        title="New case",
        message="Patient needs review",
        priority=Urgency.HIGH,
    )


def test_mark_read_unknown_id_is_a_no_op():
    store = NotificationStore()
    store.push_notification(_notification("n1"))
    changes: list[StoreChange] = []
    store.subscribe(changes.append)

    assert store.mark_read("missing") is False
    assert changes == []
    assert store.unread_count == 1
    assert store.notifications()[0].read is False


def test_unread_count_tracks_unread_entries():
    store = NotificationStore()
    for notification_id in ("n1", "n2", "n3"):
        store.push_notification(_notification(notification_id))
    assert store.unread_count == 3

    assert store.mark_read("n2") is True
    assert store.mark_read("n2") is True
    assert store.unread_count == 2
    assert store.unread_count == sum(1 for item in store.notifications() if not item.read)

    store.clear_notifications()
    assert store.notifications() == []
    assert store.unread_count == 0


def test_notifications_filter_by_target():
    store = NotificationStore()
    store.push_notification(_notification("n1", "role:doctor"))
    store.push_notification(_notification("n2", "role:healthworker"))
    assert [item.id for item in store.notifications("role:healthworker")] == ["n2"]


def test_active_cases_follow_status_updates():
    store = NotificationStore()
    store.upsert_case(_case("case-1"))
    store.upsert_case(_case("case-2", CaseStatus.IN_REVIEW))
    assert {case.id for case in store.active_cases} == {"case-1", "case-2"}

    updated = store.update_case("case-1", {"status": "closed", "assignedDoctorId": "doc-7"})
    assert updated is not None
    assert updated.status == CaseStatus.CLOSED
    assert updated.assigned_doctor_id == "doc-7"
    assert [case.id for case in store.active_cases] == ["case-2"]
    assert len(store.cases) == 2


def test_update_case_skips_invalid_values_and_unknown_cases():
    store = NotificationStore()
    store.upsert_case(_case())

    unchanged = store.update_case("case-1", {"status": "archived", "unknownField": 1})
    assert unchanged is not None
    assert unchanged.status == CaseStatus.PENDING
    assert store.update_case("missing", {"status": "closed"}) is None


def test_observers_see_fully_updated_views():
    store = NotificationStore()
    seen: list[int] = []
    store.subscribe(lambda change: seen.append(store.unread_count))

    store.push_notification(_notification("n1"))
    store.push_notification(_notification("n2"))
    store.mark_read("n1")
    assert seen == [1, 2, 1]


def test_mutation_during_fan_out_is_delivered_after_it_in_order():
    store = NotificationStore()
    order: list[tuple[str, str | None]] = []

    def reacting(change: StoreChange) -> None:
        order.append(("reacting", change.key))
        if change.kind == "case":
            store.push_notification(_notification("follow-up"))

    store.subscribe(reacting)
    store.subscribe(lambda change: order.append(("watching", change.key)))

    store.upsert_case(_case())
    assert order == [
        ("reacting", "case-1"),
        ("watching", "case-1"),
        ("reacting", "follow-up"),
        ("watching", "follow-up"),
    ]


def test_failing_observer_does_not_block_others_and_unsubscribe_works():
    store = NotificationStore()
    received: list[str] = []

    def broken(change: StoreChange) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    unsubscribe = store.subscribe(lambda change: received.append(change.kind))

    store.upsert_case(_case())
    assert received == ["case"]

    unsubscribe()
    store.upsert_case(_case("case-2"))
    assert received == ["case"]


def test_connection_state_changes_only_emit_on_change():
    store = NotificationStore()
    changes: list[StoreChange] = []
    store.subscribe(changes.append)

    store.set_connection_state(ConnectionState.CONNECTING)
    store.set_connection_state(ConnectionState.CONNECTING)
    store.set_connection_state(ConnectionState.CONNECTED)

    assert [change.key for change in changes] == ["connecting", "connected"]
    assert store.is_connected
