from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from session_engine.capabilities import Capability, GenerationError
from session_engine.settings import Settings

logger = logging.getLogger(__name__)

_PROVIDER_ALIASES = {
    "claude": "anthropic",
    "anthropic": "anthropic",
    "openrouter": "openrouter",
    "openai": "openai",
    "gpt": "openai",
}


@dataclass(frozen=True)
class ChatProvider:
    provider: str
    base_url: str
    api_key: str
    model: str


def provider_candidates(settings: Settings) -> list[ChatProvider]:
    candidates: list[ChatProvider] = []
    if settings.anthropic_api_key:
        candidates.append(
            ChatProvider("anthropic", settings.anthropic_base_url, settings.anthropic_api_key, settings.anthropic_model)
        )
    if settings.openrouter_api_key:
        candidates.append(
            ChatProvider("openrouter", settings.openrouter_base_url, settings.openrouter_api_key, settings.openrouter_model)
        )
    if settings.openai_api_key:
        candidates.append(ChatProvider("openai", settings.openai_base_url, settings.openai_api_key, settings.openai_model))

    preference = (settings.chat_provider or "auto").strip().lower()
    if preference in {"", "auto"}:
        return candidates
    canonical = _PROVIDER_ALIASES.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.provider == canonical]
    others = [candidate for candidate in candidates if candidate.provider != canonical]
    return preferred + others


_ERROR_DETAIL_LIMIT = 200


def _error_detail(payload: Any) -> str:
    # OpenAI/Anthropic nest under "error"; ElevenLabs under "detail"; Tavus uses a bare string.
    if isinstance(payload, str):
        return payload.strip()
    if not isinstance(payload, dict):
        return ""
    for key in ("error", "detail", "message"):
        detail = _error_detail(payload.get(key))
        if detail:
            return detail
    return ""


def provider_error_message(response: httpx.Response, label: str) -> str:
    """``"<label> HTTP <status>: <detail>"`` for a failed provider response."""
    try:
        detail = _error_detail(response.json())
    except ValueError:
        detail = response.text.strip()
    prefix = f"{label} HTTP {response.status_code}"
    if not detail:
        return prefix
    return f"{prefix}: {detail[:_ERROR_DETAIL_LIMIT]}"


def _json_object(response: httpx.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise GenerationError("Malformed provider response.")
    return payload


def _joined_text(blocks: Any) -> str:
    if isinstance(blocks, str):
        return blocks.strip()
    if not isinstance(blocks, list):
        return ""
    parts = (
        block["text"].strip()
        for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text" and isinstance(block.get("text"), str)
    )
    return "\n".join(part for part in parts if part)


def reply_text(response_json: dict[str, Any]) -> str:
    """Assistant text from a chat-completions or Anthropic messages response."""
    choices = response_json.get("choices")
    if isinstance(choices, list):
        first = choices[0] if choices and isinstance(choices[0], dict) else {}
        return _joined_text((first.get("message") or {}).get("content"))
    return _joined_text(response_json.get("content"))


class GenerationChain(Capability):
    """Primary text generation over an ordered list of chat providers.

    Payload: ``{"system": str, "messages": [{"role": "user"|"assistant", "content": str}]}``.
    The first provider to return non-empty text wins.
    """

    name = "generation"

    def __init__(
        self,
        providers: list[ChatProvider],
        *,
        timeout_seconds: float = 25.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> GenerationChain:
        return cls(provider_candidates(settings), timeout_seconds=settings.chat_timeout_seconds, transport=transport)

    def is_available(self) -> bool:
        return bool(self.providers)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
            transport=self._transport,
        )

    async def _call(self, payload: dict[str, Any]) -> str:
        system_prompt = str(payload.get("system") or "")
        messages = list(payload.get("messages") or [])
        failures: list[str] = []
        for provider in self.providers:
            try:
                if provider.provider == "anthropic":
                    text = await self._anthropic_chat(provider, system_prompt, messages)
                else:
                    text = await self._openai_compatible_chat(provider, system_prompt, messages)
            except (httpx.HTTPError, GenerationError, ValueError) as exc:
                logger.info("chat provider failed (%s): %s", provider.provider, exc)
                failures.append(f"{provider.provider}: {exc}")
                continue
            if text:
                logger.debug("chat provider used (%s)", provider.provider)
                return text
            logger.info("chat provider empty response (%s)", provider.provider)
            failures.append(f"{provider.provider}: empty response")
        raise GenerationError("; ".join(failures) or "No chat provider configured.")

    async def _openai_compatible_chat(
        self,
        provider: ChatProvider,
        system_prompt: str,
        messages: list[dict[str, str]],
    ) -> str:
        body = {
            "model": provider.model,
            "temperature": 0.35,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        }
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        async with self._client() as client:
            response = await client.post(f"{provider.base_url}/chat/completions", headers=headers, json=body)
        if response.status_code >= 400:
            raise GenerationError(provider_error_message(response, provider.provider))
        return reply_text(_json_object(response))

    async def _anthropic_chat(
        self,
        provider: ChatProvider,
        system_prompt: str,
        messages: list[dict[str, str]],
    ) -> str:
        body = {
            "model": provider.model,
            "max_tokens": 700,
            "temperature": 0.35,
            "system": system_prompt,
            "messages": messages,
        }
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }
        async with self._client() as client:
            response = await client.post(f"{provider.base_url}/messages", headers=headers, json=body)
        if response.status_code >= 400:
            raise GenerationError(provider_error_message(response, provider.provider))
        return reply_text(_json_object(response))
