from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from session_engine.models import Case, Notification

from .events import CaseCreated, CaseUpdated, Event, NotificationPushed, UrgentAlert, encode_close, encode_event

logger = logging.getLogger(__name__)

ROLE_PREFIX = "role:"


@dataclass(eq=False)
class Subscription:
    user_id: str
    role: str
    queue: asyncio.Queue = field(repr=False)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> str:
        frame = await self.queue.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class EventHub:
    """Fans encoded SSE frames out to connected dashboard streams.

    Targets are a user id, a role queue (``role:doctor``) or ``None`` for
    everyone. Each subscriber has a bounded queue; when it is full the oldest
    frame is dropped.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    def subscribe(self, user_id: str, role: str) -> Subscription:
        subscription = Subscription(user_id=user_id, role=role, queue=asyncio.Queue(maxsize=self.queue_size))
        self._subscriptions.append(subscription)
        logger.debug("stream opened for %s (%s)", user_id, role)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug("stream closed for %s", subscription.user_id)

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _recipients(self, target: str | None) -> list[Subscription]:
        if target is None:
            return list(self._subscriptions)
        if target.startswith(ROLE_PREFIX):
            role = target[len(ROLE_PREFIX):]
            return [sub for sub in self._subscriptions if sub.role == role]
        return [sub for sub in self._subscriptions if sub.user_id == target]

    def _offer(self, subscription: Subscription, frame: str | None) -> None:
        try:
            subscription.queue.put_nowait(frame)
        except asyncio.QueueFull:
            dropped = subscription.queue.get_nowait()
            logger.warning("stream queue full for %s; dropped %r", subscription.user_id, (dropped or "")[:40])
            subscription.queue.put_nowait(frame)

    def publish(self, event: Event, target: str | None = None) -> int:
        frame = encode_event(event)
        recipients = self._recipients(target)
        for subscription in recipients:
            self._offer(subscription, frame)
        return len(recipients)

    def close_user(self, user_id: str, reason: str = "server closed the stream") -> int:
        closing = [sub for sub in self._subscriptions if sub.user_id == user_id]
        for subscription in closing:
            self._offer(subscription, encode_close(reason))
            self._offer(subscription, None)
            self.unsubscribe(subscription)
        return len(closing)


class HubPublisher:
    """Publishes aggregator outcomes as push events."""

    def __init__(self, hub: EventHub) -> None:
        self.hub = hub

    def case_created(self, case: Case, target: str | None) -> None:
        self.hub.publish(CaseCreated(case=case), target)

    def case_updated(self, case: Case, updates: dict[str, Any]) -> None:
        self.hub.publish(CaseUpdated(case_id=case.id, updates=updates))

    def notification(self, notification: Notification) -> None:
        self.hub.publish(NotificationPushed(notification=notification), notification.target_user_id)

    def urgent_alert(self, message: str, case_id: str | None, target: str | None) -> None:
        self.hub.publish(UrgentAlert(message=message, case_id=case_id), target)
