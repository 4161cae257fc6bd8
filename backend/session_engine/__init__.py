from .aggregator import Publisher, SessionAggregator, TurnOutcome
from .capabilities import (
    Capability,
    CapabilityError,
    CapabilityRegistry,
    CapabilityResult,
    EnrichmentError,
    FunctionCapability,
    GenerationError,
)
from .fallback import FallbackResponder
from .lifecycle import LifecycleError, SessionLifecycle
from .models import (
    Case,
    CaseStatus,
    ChatTurn,
    ConnectionState,
    MedicalEntity,
    Notification,
    Reply,
    Session,
    SessionStatus,
    SessionSummary,
    Speaker,
    Urgency,
    Vitals,
    VitalsEntry,
)
from .orchestrator import ResponseOrchestrator
from .settings import Settings
from .triage import UrgencyClassifier, extract_entities

__all__ = [
    "Capability",
    "CapabilityError",
    "CapabilityRegistry",
    "CapabilityResult",
    "Case",
    "CaseStatus",
    "ChatTurn",
    "ConnectionState",
    "EnrichmentError",
    "FallbackResponder",
    "FunctionCapability",
    "GenerationError",
    "LifecycleError",
    "MedicalEntity",
    "Notification",
    "Publisher",
    "Reply",
    "ResponseOrchestrator",
    "Session",
    "SessionAggregator",
    "SessionLifecycle",
    "SessionStatus",
    "SessionSummary",
    "Settings",
    "Speaker",
    "TurnOutcome",
    "Urgency",
    "UrgencyClassifier",
    "Vitals",
    "VitalsEntry",
    "extract_entities",
]
