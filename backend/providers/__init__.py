from __future__ import annotations

import httpx

from session_engine.capabilities import CapabilityRegistry
from session_engine.settings import Settings

from .generation import ChatProvider, GenerationChain, provider_candidates
from .speech import SpeechSynthesis, Uploader
from .video import VideoAvatar

__all__ = [
    "ChatProvider",
    "GenerationChain",
    "SpeechSynthesis",
    "VideoAvatar",
    "provider_candidates",
    "register_capabilities",
]


def register_capabilities(
    registry: CapabilityRegistry,
    settings: Settings,
    *,
    uploader: Uploader | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CapabilityRegistry:
    registry.register(GenerationChain.from_settings(settings, transport=transport))
    registry.register(SpeechSynthesis.from_settings(settings, uploader=uploader, transport=transport))
    registry.register(VideoAvatar.from_settings(settings, transport=transport))
    registry.add_alias("llm", "generation")
    registry.add_alias("tts", "speech")
    registry.add_alias("avatar", "video")
    return registry
