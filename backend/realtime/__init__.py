from .client import HandshakeRejected, TransportClient, TransportError
from .events import (
    EVENT_TYPES,
    OUTBOUND_TYPES,
    CaseCreated,
    CaseUpdated,
    ClientMessage,
    ConsultationStarted,
    Event,
    NotificationPushed,
    UrgentAlert,
    VitalsSubmitted,
    encode_event,
    parse_event,
)
from .handlers import HandlerRegistry
from .hub import EventHub, HubPublisher, Subscription

__all__ = [
    "EVENT_TYPES",
    "OUTBOUND_TYPES",
    "CaseCreated",
    "CaseUpdated",
    "ClientMessage",
    "ConsultationStarted",
    "Event",
    "EventHub",
    "HandlerRegistry",
    "HandshakeRejected",
    "HubPublisher",
    "NotificationPushed",
    "Subscription",
    "TransportClient",
    "TransportError",
    "UrgentAlert",
    "VitalsSubmitted",
    "encode_event",
    "parse_event",
]
