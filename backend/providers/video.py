from __future__ import annotations

from typing import Any

import httpx

from session_engine.capabilities import Capability, EnrichmentError
from session_engine.settings import Settings

from .generation import provider_error_message

TAVUS_BASE_URL = "https://tavusapi.com/v2"


class VideoAvatar(Capability):
    """Tavus avatar video. Payload ``{"script": str}``; result is the provider's video id."""

    name = "video"

    def __init__(
        self,
        *,
        api_key: str,
        avatar_id: str,
        background: str = "#f0f9ff",
        base_url: str = TAVUS_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.avatar_id = avatar_id
        self.background = background
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> VideoAvatar:
        return cls(api_key=settings.tavus_api_key, avatar_id=settings.tavus_avatar_id, transport=transport)

    def is_available(self) -> bool:
        return bool(self.api_key and self.avatar_id)

    async def _call(self, payload: dict[str, Any]) -> str:
        script = str(payload.get("script") or "").strip()
        if not script:
            raise EnrichmentError("Empty video script.")
        body = {"script": script, "avatarId": self.avatar_id, "background": self.background}
        headers = {"Content-Type": "application/json", "x-api-key": self.api_key}
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0), transport=self._transport) as client:
            response = await client.post(f"{self.base_url}/videos", headers=headers, json=body)
        if response.status_code >= 400:
            raise EnrichmentError(provider_error_message(response, "Tavus"))
        try:
            data = response.json()
        except ValueError as exc:
            raise EnrichmentError("Tavus returned a malformed response.") from exc
        video_id = data.get("video_id") if isinstance(data, dict) else None
        if not isinstance(video_id, str) or not video_id:
            raise EnrichmentError("Tavus response carried no video id.")
        return video_id
