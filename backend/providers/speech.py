from __future__ import annotations

import base64
from typing import Any, Awaitable, Callable

import httpx

from session_engine.capabilities import Capability, EnrichmentError
from session_engine.settings import Settings

from .generation import provider_error_message

Uploader = Callable[[bytes, str], Awaitable[str]]

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"


class SpeechSynthesis(Capability):
    """ElevenLabs text-to-speech. Payload ``{"text": str}``; result is an audio reference."""

    name = "speech"

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str,
        model_id: str,
        uploader: Uploader | None = None,
        base_url: str = ELEVENLABS_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.uploader = uploader
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        uploader: Uploader | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> SpeechSynthesis:
        return cls(
            api_key=settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            uploader=uploader,
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.api_key and self.voice_id)

    async def _call(self, payload: dict[str, Any]) -> str:
        text = str(payload.get("text") or "").strip()
        if not text:
            raise EnrichmentError("Nothing to synthesize.")
        body = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
        }
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0), transport=self._transport) as client:
            response = await client.post(f"{self.base_url}/text-to-speech/{self.voice_id}", headers=headers, json=body)
        if response.status_code >= 400:
            raise EnrichmentError(provider_error_message(response, "ElevenLabs"))
        audio = response.content
        if not audio:
            raise EnrichmentError("ElevenLabs returned empty audio.")
        if self.uploader is not None:
            return await self.uploader(audio, "audio/mpeg")
        return "data:audio/mpeg;base64," + base64.b64encode(audio).decode("ascii")
