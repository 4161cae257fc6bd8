from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from .capabilities import Capability, CapabilityRegistry
from .fallback import FallbackResponder
from .models import ChatTurn, Reply, Speaker
from .triage import UrgencyClassifier, extract_entities

logger = logging.getLogger(__name__)

MediaCallback = Callable[[str, str], None]

_IMAGES_NOTE = (
    "Note: the patient has shared medical images. Acknowledge them and give guidance based on the "
    "described symptoms."
)


def system_preamble(assistant_name: str) -> str:
    return (
        f"You are {assistant_name}, an empathetic triage assistant on a telemedicine platform. "
        "Use plain language and acknowledge the patient's concerns. "
        "Never give a definitive diagnosis; offer possible explanations and practical next steps, "
        "clearly marking uncertainty. "
        "When symptoms suggest a high or critical urgency, tell the patient to seek professional care "
        "and, for emergencies, to call emergency services now. "
        "Keep replies concise."
    )


class ResponseOrchestrator:
    def __init__(
        self,
        *,
        registry: CapabilityRegistry,
        classifier: UrgencyClassifier | None = None,
        fallback: FallbackResponder | None = None,
        assistant_name: str = "Dr. Ava",
    ) -> None:
        self.registry = registry
        self.classifier = classifier or UrgencyClassifier()
        self.assistant_name = assistant_name
        self.fallback = fallback or FallbackResponder(assistant_name)
        self._pending: set[asyncio.Task] = set()

    def build_prompt(self, history: Sequence[ChatTurn], new_text: str, has_images: bool) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        for turn in history:
            if turn.speaker == Speaker.PATIENT:
                role = "user"
            elif turn.speaker == Speaker.ASSISTANT:
                role = "assistant"
            else:
                continue
            if turn.text.strip():
                messages.append({"role": role, "content": turn.text.strip()})
        content = new_text.strip()
        if has_images:
            content = f"{content}\n\n{_IMAGES_NOTE}".strip()
        messages.append({"role": "user", "content": content})
        return {"system": system_preamble(self.assistant_name), "messages": messages}

    async def respond(self, history: Sequence[ChatTurn], new_text: str, has_images: bool) -> Reply:
        text, source = await self._generate(history, new_text, has_images)
        return Reply(
            text=text,
            urgency=self.classifier.classify(text, new_text),
            entities=extract_entities(new_text),
            source=source,
        )

    async def _generate(self, history: Sequence[ChatTurn], new_text: str, has_images: bool) -> tuple[str, str]:
        generation = self.registry.get("generation")
        if generation is not None and generation.is_available():
            result = await generation.invoke(self.build_prompt(history, new_text, has_images))
            if result.ok and isinstance(result.value, str) and result.value.strip():
                return result.value.strip(), "primary"
            logger.info("generation failed, using fallback reply: %s", result.error or "empty reply")
        else:
            logger.debug("generation not configured, using fallback reply")
        return self.fallback.reply(new_text, has_images), "fallback"

    def enrich(self, text: str, on_media: MediaCallback) -> list[asyncio.Task]:
        """Start speech and video rendering of ``text`` in the background.

        Each available capability gets its own task; ``on_media(kind, ref)`` is
        called with ``kind`` ``"audio"`` or ``"video"`` only when that rendering
        succeeds. Failures are logged and dropped.
        """
        jobs = (
            ("audio", "speech", {"text": text}),
            ("video", "video", {"script": f"Hello, I'm {self.assistant_name}, your virtual health assistant. {text}"}),
        )
        tasks: list[asyncio.Task] = []
        for kind, capability_name, payload in jobs:
            capability = self.registry.get(capability_name)
            if capability is None or not capability.is_available():
                continue
            task = asyncio.create_task(self._run_enrichment(kind, capability, payload, on_media))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _run_enrichment(
        self,
        kind: str,
        capability: Capability,
        payload: dict[str, Any],
        on_media: MediaCallback,
    ) -> str | None:
        result = await capability.invoke(payload)
        if not result.ok:
            logger.info("%s enrichment omitted: %s", kind, result.error)
            return None
        on_media(kind, result.value)
        return result.value
