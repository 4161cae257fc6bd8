from __future__ import annotations

from dataclasses import dataclass

from .models import MedicalEntity, Urgency


@dataclass(frozen=True)
class UrgencyRule:
    urgency: Urgency
    keywords: tuple[str, ...]


# Most severe first; the first rule with a matching keyword wins.
URGENCY_RULES: tuple[UrgencyRule, ...] = (
    UrgencyRule(
        Urgency.CRITICAL,
        (
            "chest pain",
            "difficulty breathing",
            "can't breathe",
            "cannot breathe",
            "not breathing",
            "unconscious",
            "passed out",
            "severe bleeding",
            "coughing blood",
            "call 911",
            "call emergency services",
            "emergency services",
            "immediate medical attention",
            "life-threatening",
            "stroke",
            "seizure",
        ),
    ),
    UrgencyRule(
        Urgency.HIGH,
        (
            "fever",
            "vomiting",
            "worst headache",
            "sudden headache",
            "shortness of breath",
            "short of breath",
            "wheezing",
            "dizziness",
            "fainting",
            "see a doctor soon",
            "high temperature",
        ),
    ),
    UrgencyRule(
        Urgency.MEDIUM,
        (
            "headache",
            "nausea",
            "fatigue",
            "cough",
            "sore throat",
            "rash",
            "monitor",
            "watch",
        ),
    ),
)

SYMPTOM_TERMS = (
    "chest pain",
    "shortness of breath",
    "headache",
    "fever",
    "cough",
    "nausea",
    "vomiting",
    "fatigue",
    "dizziness",
    "rash",
    "pain",
)


class UrgencyClassifier:
    def __init__(self, rules: tuple[UrgencyRule, ...] = URGENCY_RULES) -> None:
        self.rules = rules

    def classify(self, reply_text: str, user_text: str) -> Urgency:
        haystacks = ((reply_text or "").lower(), (user_text or "").lower())
        for rule in self.rules:
            for keyword in rule.keywords:
                if any(keyword in text for text in haystacks):
                    return rule.urgency
        return Urgency.LOW


def extract_entities(text: str) -> list[MedicalEntity]:
    lowered = (text or "").lower()
    entities: list[MedicalEntity] = []
    for term in SYMPTOM_TERMS:
        if term in lowered and not any(term in entity.text for entity in entities):
            entities.append(MedicalEntity(text=term))
    return entities
