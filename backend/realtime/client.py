from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from session_engine.models import ConnectionState
from session_engine.settings import Settings

from .events import CLOSE_EVENT, EVENT_TYPES, OUTBOUND_TYPES, parse_event
from .handlers import EventHandler, HandlerRegistry
from .sse import SSEFrame, SSEFrameParser

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState], None]
Sleep = Callable[[float], Awaitable[Any]]

_LIVE_STATES = {ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.RECONNECTING}


class TransportError(Exception):
    pass


class HandshakeRejected(TransportError):
    pass


class TransportClient:
    """One authenticated server-sent-events channel per logged-in user.

    Transport errors never reach the caller. They show up as state changes
    (``on_state_change``) and, while attempts remain, as a reconnect scheduled
    ``base_delay_ms * 2 ** (attempt - 1)`` milliseconds later. A rejected
    handshake or exhausted attempts end in ``FAILED``; only a new ``connect``
    leaves that state. A ``close`` frame from the server ends in
    ``DISCONNECTED`` without retrying.
    """

    def __init__(
        self,
        base_url: str,
        *,
        base_delay_ms: int = 1000,
        max_attempts: int = 5,
        on_state_change: StateCallback | None = None,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts
        self.on_state_change = on_state_change
        self._sleep = sleep
        self._transport = transport
        self._handlers = HandlerRegistry()
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._identity: tuple[str, str, str] | None = None
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> TransportClient:
        return cls(
            settings.events_url,
            base_delay_ms=settings.reconnect_base_delay_ms,
            max_attempts=settings.reconnect_max_attempts,
            **kwargs,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.add(event_type, handler)

    def connect(self, user_id: str, role: str, auth_token: str | None) -> None:
        """Open the channel. Must be called from a running event loop."""
        if self._state in _LIVE_STATES:
            return
        if not user_id or not auth_token:
            logger.warning("event stream connect refused: missing user id or token")
            self._identity = None
            self._set_state(ConnectionState.FAILED)
            return
        self._identity = (user_id, role, auth_token)
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def disconnect(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)

    async def join(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(state)
        except Exception:
            logger.exception("connection state callback failed")

    def _headers(self) -> dict[str, str]:
        assert self._identity is not None
        user_id, role, token = self._identity
        return {
            "Authorization": f"Bearer {token}",
            "X-User-Id": user_id,
            "X-User-Role": role,
        }

    async def _run(self) -> None:
        while True:
            try:
                closed_by_server = await self._open_stream()
            except HandshakeRejected as exc:
                logger.warning("event stream handshake rejected: %s", exc)
                self._set_state(ConnectionState.FAILED)
                return
            except (TransportError, httpx.HTTPError) as exc:
                logger.info("event stream dropped: %s", exc)
            else:
                if closed_by_server:
                    logger.info("event stream closed by server")
                    self._set_state(ConnectionState.DISCONNECTED)
                    return
                logger.info("event stream ended unexpectedly")

            if self._attempts >= self.max_attempts:
                logger.error("event stream: max reconnection attempts reached (%d)", self.max_attempts)
                self._set_state(ConnectionState.FAILED)
                return
            self._attempts += 1
            delay_ms = self.base_delay_ms * 2 ** (self._attempts - 1)
            self._set_state(ConnectionState.RECONNECTING)
            logger.info("reconnecting (%d/%d) in %dms", self._attempts, self.max_attempts, delay_ms)
            await self._sleep(delay_ms / 1000)

    async def _open_stream(self) -> bool:
        timeout = httpx.Timeout(10.0, read=None)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            async with client.stream("GET", f"{self.base_url}/events", headers=self._headers()) as response:
                if response.status_code in {401, 403}:
                    raise HandshakeRejected(f"HTTP {response.status_code}")
                if response.status_code >= 400:
                    raise TransportError(f"HTTP {response.status_code}")
                self._attempts = 0
                self._set_state(ConnectionState.CONNECTED)
                parser = SSEFrameParser()
                async for line in response.aiter_lines():
                    frame = parser.feed(line)
                    if frame is None:
                        continue
                    if frame.event == CLOSE_EVENT:
                        return True
                    await self._deliver(frame)
                frame = parser.flush()
                if frame is not None:
                    if frame.event == CLOSE_EVENT:
                        return True
                    await self._deliver(frame)
        return False

    async def _deliver(self, frame: SSEFrame) -> None:
        if frame.event not in EVENT_TYPES:
            logger.debug("ignoring unsupported event %s", frame.event)
            return
        try:
            event = parse_event(frame.event, frame.data)
        except ValueError as exc:
            logger.warning("malformed %s event skipped: %s", frame.event, exc)
            return
        await self._handlers.dispatch(event)

    async def emit(self, event_type: str, data: dict[str, Any]) -> bool:
        if event_type not in OUTBOUND_TYPES:
            raise ValueError(f"Unsupported outbound event type: {event_type}")
        if not self.is_connected():
            logger.debug("emit %s skipped: not connected", event_type)
            return False
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(10.0), transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/events",
                    headers=self._headers(),
                    json={"type": event_type, "data": data},
                )
        except httpx.HTTPError as exc:
            logger.info("emit %s failed: %s", event_type, exc)
            return False
        if response.status_code >= 400:
            logger.info("emit %s rejected: HTTP %d", event_type, response.status_code)
            return False
        return True

    async def update_case_status(self, case_id: str, status: str) -> bool:
        return await self.emit("update-case-status", {"caseId": case_id, "status": status})

    async def request_urgent_consultation(self, case_id: str) -> bool:
        return await self.emit("urgent-consultation-request", {"caseId": case_id})
