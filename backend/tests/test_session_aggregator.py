from __future__ import annotations

import asyncio

import pytest
from fakes import ScriptedGeneration, make_aggregator

from session_engine import (
    CaseStatus,
    FunctionCapability,
    LifecycleError,
    SessionStatus,
    Speaker,
    Urgency,
)
from session_engine.models import DOCTOR_QUEUE, WORKER_QUEUE


def test_sequential_turns_produce_paired_transcript():
    aggregator, store, _ = make_aggregator(ScriptedGeneration())

    async def scenario():
        for index in range(4):
            await aggregator.submit_user_turn("pat-1", f"update {index}")

    asyncio.run(scenario())
    session = aggregator.active_session_for("pat-1")
    assert len(session.turns) == 8
    assert [turn.seq for turn in session.turns] == list(range(8))
    assert [turn.speaker for turn in session.turns] == [Speaker.PATIENT, Speaker.ASSISTANT] * 4
    assert [turn.text for turn in session.turns[1::2]] == [f"Noted: update {index}" for index in range(4)]
    assert store.sessions[0].turn_count == 8


def test_concurrent_turns_are_serialised_in_submission_order():
    generation = ScriptedGeneration(delays=(0.02, 0.0, 0.01))
    aggregator, _, _ = make_aggregator(generation)

    async def scenario():
        return await asyncio.gather(
            *(aggregator.submit_user_turn("pat-1", f"message {index}") for index in range(6))
        )

    outcomes = asyncio.run(scenario())
    session = aggregator.active_session_for("pat-1")
    assert all(outcome.session is session for outcome in outcomes)
    assert len(session.turns) == 12
    for index in range(6):
        patient, assistant = session.turns[2 * index], session.turns[2 * index + 1]
        assert patient.text == f"message {index}"
        assert assistant.text == f"Noted: message {index}"
    # Each prompt saw the full history of earlier pairs.
    assert [len(call["messages"]) for call in generation.calls] == [1, 3, 5, 7, 9, 11]


def test_session_urgency_never_decreases():
    aggregator, _, _ = make_aggregator(ScriptedGeneration(reply="Thanks for the update."))

    async def scenario():
        levels = []
        for text in ("I have a cough", "now a fever too", "feeling better", "just tired of this"):
            outcome = await aggregator.submit_user_turn("pat-1", text)
            levels.append(outcome.session.urgency)
        return levels

    levels = asyncio.run(scenario())
    assert levels == [Urgency.MEDIUM, Urgency.HIGH, Urgency.HIGH, Urgency.HIGH]


def test_chest_pain_opens_critical_case_for_doctors_even_without_generation():
    aggregator, store, publisher = make_aggregator(ScriptedGeneration(fail=True))

    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "I have chest pain and can't breathe"))

    assert outcome.reply.source == "fallback"
    assert outcome.reply.text
    assert outcome.session.urgency == Urgency.CRITICAL
    case = outcome.case
    assert case.status == CaseStatus.PENDING
    assert case.priority == Urgency.CRITICAL
    assert case.patient_id == "pat-1"
    assert store.active_cases == [case]
    assert [notification.target_user_id for notification in store.notifications()] == [DOCTOR_QUEUE]
    assert publisher.kinds() == ["case_created", "notification", "urgent_alert"]
    assert publisher.events[0][2] == DOCTOR_QUEUE
    assert publisher.events[2][2] == case.id


def test_medium_urgency_stays_below_high_threshold():
    aggregator, store, publisher = make_aggregator(ScriptedGeneration(fail=True), threshold=Urgency.HIGH)

    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "I have a severe headache and nausea"))

    assert outcome.session.urgency == Urgency.MEDIUM
    assert outcome.case is None
    assert store.cases == []
    assert store.notifications() == []
    assert publisher.events == []


def test_medium_urgency_reaches_health_workers_at_default_threshold():
    aggregator, store, _ = make_aggregator(ScriptedGeneration(fail=True))

    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "I have a severe headache and nausea"))

    assert outcome.case.priority == Urgency.MEDIUM
    assert [notification.target_user_id for notification in store.notifications()] == [WORKER_QUEUE]


def test_rising_urgency_raises_case_priority_and_alerts_doctors():
    aggregator, store, publisher = make_aggregator(ScriptedGeneration(reply="Let's keep an eye on it."))

    async def scenario():
        first = await aggregator.submit_user_turn("pat-1", "I have a cough")
        second = await aggregator.submit_user_turn("pat-1", "Now I have chest pain")
        return first, second

    first, second = asyncio.run(scenario())
    assert second.case.id == first.case.id
    assert second.case.priority == Urgency.CRITICAL
    assert len(store.cases) == 1
    assert [notification.target_user_id for notification in store.notifications()] == [WORKER_QUEUE, DOCTOR_QUEUE]
    assert "case_updated" in publisher.kinds()
    assert publisher.kinds()[-1] == "urgent_alert"


def test_closed_session_rejects_turns_and_second_close():
    aggregator, _, _ = make_aggregator(ScriptedGeneration())
    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "hello"))
    session_id = outcome.session.id

    closed = aggregator.close_session(session_id, "completed")
    assert closed.status == SessionStatus.COMPLETED
    assert aggregator.active_session_for("pat-1") is None
    with pytest.raises(LifecycleError):
        aggregator.append_system_turn(session_id, "Doctor joined")
    with pytest.raises(LifecycleError):
        aggregator.close_session(session_id, SessionStatus.ESCALATED)
    with pytest.raises(LifecycleError):
        aggregator.close_session(session_id, "archived")
    with pytest.raises(KeyError):
        aggregator.close_session("ses_missing", "completed")

    follow_up = asyncio.run(aggregator.submit_user_turn("pat-1", "hello again"))
    assert follow_up.session.id != session_id


def test_empty_turn_is_rejected():
    aggregator, _, _ = make_aggregator(ScriptedGeneration())
    with pytest.raises(ValueError):
        asyncio.run(aggregator.submit_user_turn("pat-1", "   "))


def test_image_only_turn_is_accepted():
    generation = ScriptedGeneration()
    aggregator, _, _ = make_aggregator(generation)

    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "", ["img://rash.png"]))

    assert outcome.patient_turn.attached_image_refs == ("img://rash.png",)
    assert "medical images" in generation.calls[0]["messages"][-1]["content"]


def test_reply_arriving_after_close_is_discarded():
    gate = asyncio.Event()
    generation = ScriptedGeneration(gate=gate, reply="You should see a doctor soon.")
    aggregator, store, _ = make_aggregator(generation)

    async def scenario():
        pending = asyncio.create_task(aggregator.submit_user_turn("pat-1", "hello"))
        while not generation.calls:
            await asyncio.sleep(0)
        session = aggregator.active_session_for("pat-1")
        aggregator.close_session(session.id, "completed")
        gate.set()
        return await pending

    outcome = asyncio.run(scenario())
    assert outcome.applied is False
    assert outcome.assistant_turn is None
    assert [turn.speaker for turn in outcome.session.turns] == [Speaker.PATIENT]
    assert outcome.session.urgency == Urgency.LOW
    assert store.cases == []


def test_enrichment_media_attaches_to_assistant_turn():
    async def speak(payload):
        return "https://files.test/reply.mp3"

    async def render(payload):
        return "vid-1"

    aggregator, _, _ = make_aggregator(
        ScriptedGeneration(reply="Rest and hydrate."),
        FunctionCapability("speech", speak),
        FunctionCapability("video", render),
    )

    async def scenario():
        outcome = await aggregator.submit_user_turn("pat-1", "hello")
        await asyncio.gather(*outcome.enrichment)
        return outcome

    outcome = asyncio.run(scenario())
    patient, assistant = aggregator.transcript(outcome.session.id)
    assert assistant.audio_ref == "https://files.test/reply.mp3"
    assert assistant.video_ref == "vid-1"
    assert patient.audio_ref is None
    # The stored turn itself is never mutated.
    assert outcome.assistant_turn.audio_ref is None


def test_enrichment_after_close_is_dropped():
    gate = asyncio.Event()

    async def slow_speech(payload):
        await gate.wait()
        return "https://files.test/late.mp3"

    aggregator, _, _ = make_aggregator(ScriptedGeneration(), FunctionCapability("speech", slow_speech))

    async def scenario():
        outcome = await aggregator.submit_user_turn("pat-1", "hello")
        aggregator.close_session(outcome.session.id, "completed")
        gate.set()
        await asyncio.gather(*outcome.enrichment)
        return outcome

    outcome = asyncio.run(scenario())
    assert all(turn.audio_ref is None for turn in aggregator.transcript(outcome.session.id))


def test_escalation_creates_or_escalates_case():
    aggregator, store, publisher = make_aggregator(ScriptedGeneration(reply="Okay."))

    async def scenario():
        calm = await aggregator.submit_user_turn("pat-1", "just checking in")
        worried = await aggregator.submit_user_turn("pat-2", "I have a rash")
        return calm, worried

    calm, worried = asyncio.run(scenario())
    assert calm.case is None

    aggregator.close_session(calm.session.id, SessionStatus.ESCALATED)
    created = aggregator.case_for_session(calm.session.id)
    assert created.status == CaseStatus.ESCALATED

    aggregator.close_session(worried.session.id, "escalated")
    escalated = aggregator.case_for_session(worried.session.id)
    assert escalated.id == worried.case.id
    assert escalated.status == CaseStatus.ESCALATED
    assert store.get_case(escalated.id).status == CaseStatus.ESCALATED
    assert ("case_updated", escalated, {"status": "escalated"}) in publisher.events
    doctor_notes = [n for n in store.notifications(DOCTOR_QUEUE) if n.title == "Session escalated"]
    assert len(doctor_notes) == 2


def test_update_case_status_writes_store_and_publishes():
    aggregator, store, publisher = make_aggregator(ScriptedGeneration(reply="Okay."))
    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "I have a rash"))

    updated = aggregator.update_case_status(outcome.case.id, "in-review")

    assert updated.status == CaseStatus.IN_REVIEW
    assert store.get_case(outcome.case.id).status == CaseStatus.IN_REVIEW
    assert aggregator.case_for_session(outcome.session.id) == updated
    assert ("case_updated", updated, {"status": "in-review"}) in publisher.events
    assert aggregator.update_case_status("case_missing", CaseStatus.CLOSED) is None
    with pytest.raises(ValueError):
        aggregator.update_case_status(outcome.case.id, "archived")


def test_patient_lock_is_released_once_session_closes():
    aggregator, _, _ = make_aggregator(ScriptedGeneration(reply="Okay."))

    outcome = asyncio.run(aggregator.submit_user_turn("pat-1", "hello"))
    assert "pat-1" in aggregator._locks

    aggregator.close_session(outcome.session.id, "completed")
    assert "pat-1" not in aggregator._locks
    assert aggregator._lock_holders == {}


def test_patient_lock_survives_close_while_a_turn_is_in_flight():
    gate = asyncio.Event()
    generation = ScriptedGeneration(gate=gate, reply="Okay.")
    aggregator, _, _ = make_aggregator(generation)

    async def scenario():
        pending = asyncio.create_task(aggregator.submit_user_turn("pat-1", "hello"))
        while not generation.calls:
            await asyncio.sleep(0)
        aggregator.close_session(aggregator.active_session_for("pat-1").id, "completed")
        held_during_close = "pat-1" in aggregator._locks
        gate.set()
        await pending
        return held_during_close

    assert asyncio.run(scenario()) is True
    assert "pat-1" not in aggregator._locks
