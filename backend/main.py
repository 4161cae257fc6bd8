from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from notifications import NotificationStore
from providers import register_capabilities
from realtime import OUTBOUND_TYPES, ClientMessage, EventHub, HubPublisher, UrgentAlert
from session_engine import (
    CapabilityRegistry,
    CaseStatus,
    LifecycleError,
    ResponseOrchestrator,
    SessionAggregator,
    SessionStatus,
    Settings,
)
from session_engine.models import DOCTOR_QUEUE, USER_ROLES
from session_engine.settings import bootstrap_local_env

bootstrap_local_env(Path(__file__).resolve().parents[1])

logging.basicConfig(
    level=getattr(logging, os.getenv("VIRTUDOC_LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("virtudoc")


class TurnRequest(BaseModel):
    text: str = ""
    images: list[str] = Field(default_factory=list)
    patient_id: str | None = None


class CloseRequest(BaseModel):
    status: SessionStatus


class VirtuDocApp:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self.store = NotificationStore()
        self.hub = EventHub(queue_size=self.settings.hub_queue_size)
        self.registry = register_capabilities(CapabilityRegistry(), self.settings)
        self.orchestrator = ResponseOrchestrator(
            registry=self.registry,
            assistant_name=self.settings.assistant_name,
        )
        self.aggregator = SessionAggregator(
            store=self.store,
            orchestrator=self.orchestrator,
            publisher=HubPublisher(self.hub),
            case_threshold=self.settings.case_threshold,
        )
        logger.info("capabilities: %s", self.registry.availability())


container = VirtuDocApp()
app = FastAPI(title="VirtuDoc Session Engine")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # The bearer token is opaque here; long tokens are reduced to a stable id.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user(authorization: str | None, x_user_id: str | None, x_user_role: str | None) -> tuple[str, str]:
    """Authenticated user id and role for a request.

    A bearer token is always required. ``X-User-Id`` set by a trusted upstream
    overrides the token-derived id; ``X-User-Role`` defaults to ``patient``.
    """
    user_id = get_user_id(authorization)
    if x_user_id is not None:
        user_id = _validated_trusted_user_id(x_user_id)
    role = (x_user_role or "patient").strip().lower()
    if role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid X-User-Role")
    return user_id, role


def _require_staff(role: str) -> None:
    if role == "patient":
        raise HTTPException(status_code=403, detail="Staff role required")


def _require_session(session_id: str, user_id: str, role: str):
    session = container.aggregator.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if role == "patient" and session.patient_id != user_id:
        raise HTTPException(status_code=403, detail="Not your session")
    return session


@app.post("/sessions/turns")
async def submit_turn(
    payload: TurnRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    patient_id = payload.patient_id or user_id
    if role == "patient" and patient_id != user_id:
        raise HTTPException(status_code=403, detail="Patients may only submit their own turns")
    try:
        outcome = await container.aggregator.submit_user_turn(patient_id, payload.text, payload.images)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LifecycleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {
        "session_id": outcome.session.id,
        "applied": outcome.applied,
        "urgency": outcome.session.urgency.value,
        "reply": outcome.reply.as_dict(),
        "patient_turn": outcome.patient_turn,
        "assistant_turn": outcome.assistant_turn,
        "case": outcome.case,
        "notifications": outcome.notifications,
    }


@app.post("/sessions/{session_id}/close")
async def close_session(
    session_id: str,
    payload: CloseRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    _require_session(session_id, user_id, role)
    try:
        session = container.aggregator.close_session(session_id, payload.status)
    except LifecycleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"session": session.summary(), "case": container.aggregator.case_for_session(session_id)}


@app.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    session = _require_session(session_id, user_id, role)
    return {
        "session": session.summary(),
        "turns": container.aggregator.transcript(session_id),
        "case": container.aggregator.case_for_session(session_id),
    }


@app.get("/cases")
async def list_cases(
    active: bool = False,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    cases = container.store.active_cases if active else container.store.cases
    if role == "patient":
        cases = [case for case in cases if case.patient_id == user_id]
    return {"items": cases}


@app.get("/notifications")
async def list_notifications(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    targets = {user_id, f"role:{role}"}
    items = [item for item in container.store.notifications() if item.target_user_id in targets]
    return {"items": items, "unread_count": sum(1 for item in items if not item.read)}


@app.post("/notifications/{notification_id}/read")
async def read_notification(
    notification_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    resolve_user(authorization, x_user_id, x_user_role)
    if not container.store.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True, "unread_count": container.store.unread_count}


@app.delete("/notifications")
async def clear_notifications(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    _, role = resolve_user(authorization, x_user_id, x_user_role)
    _require_staff(role)
    container.store.clear_notifications()
    return {"ok": True}


@app.get("/events")
async def events_stream(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    subscription = container.hub.subscribe(user_id, role)

    async def event_stream():
        try:
            yield ": connected\n\n"
            async for frame in subscription:
                yield frame
        finally:
            container.hub.unsubscribe(subscription)

    return StreamingResponse(event_stream(), media_type="text/event-stream")


def _case_id_from(message: ClientMessage) -> str:
    case_id = str(message.data.get("caseId") or message.data.get("case_id") or "").strip()
    if not case_id:
        raise HTTPException(status_code=400, detail="caseId is required")
    return case_id


@app.post("/events")
async def post_event(
    message: ClientMessage,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    user_id, role = resolve_user(authorization, x_user_id, x_user_role)
    if message.type not in OUTBOUND_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported event type: {message.type}")

    if message.type == "update-case-status":
        _require_staff(role)
        case_id = _case_id_from(message)
        try:
            status = CaseStatus(message.data.get("status"))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid case status") from exc
        updated = container.aggregator.update_case_status(case_id, status)
        if updated is None:
            raise HTTPException(status_code=404, detail="Case not found")
        return {"ok": True, "case": updated}

    if message.type == "urgent-consultation-request":
        case_id = _case_id_from(message)
        case = container.store.get_case(case_id)
        if case is None:
            raise HTTPException(status_code=404, detail="Case not found")
        if role == "patient" and case.patient_id != user_id:
            raise HTTPException(status_code=403, detail="Not your case")
        alert = UrgentAlert(message=f"Urgent consultation requested for case {case_id}", case_id=case_id)
        return {"ok": True, "delivered": container.hub.publish(alert, DOCTOR_QUEUE)}

    # Room signalling is accepted but not routed.
    logger.debug("room message %s from %s ignored", message.type, user_id)
    return {"ok": True, "delivered": 0}


@app.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "capabilities": container.registry.availability(),
        "streams": container.hub.subscriber_count(),
    }
