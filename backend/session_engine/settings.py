from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .models import Urgency

logger = logging.getLogger(__name__)

_ENV_LINE_RE = re.compile(r"^(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?P<value>.*)$")
_PLACEHOLDER_RE = re.compile(r"^your_.*_here$", re.IGNORECASE)


def parse_env_lines(lines: Iterable[str]) -> dict[str, str]:
    """``KEY=value`` pairs from dotenv-style lines.

    Accepts an ``export`` prefix and single or double quotes. Unquoted values
    end at an inline `` #`` comment. Later keys win.
    """
    pairs: dict[str, str] = {}
    for raw in lines:
        match = _ENV_LINE_RE.match(raw.strip())
        if match is None:
            continue
        value = match["value"].strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        else:
            value = value.split(" #", 1)[0].rstrip()
        pairs[match["key"]] = value
    return pairs


def load_local_env_file(path: Path) -> list[str]:
    """Apply a ``.env`` file without overriding the real environment; returns keys applied."""
    try:
        pairs = parse_env_lines(path.read_text(encoding="utf-8").splitlines())
    except OSError as exc:
        logger.warning("could not read %s: %s", path, exc)
        return []
    applied = [key for key in pairs if key not in os.environ]
    for key in applied:
        os.environ[key] = pairs[key]
    return applied


def bootstrap_local_env(repo_root: Path) -> None:
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            applied = load_local_env_file(candidate)
            logger.debug("loaded %d settings from %s", len(applied), candidate)


def env_value(key: str, default: str = "") -> str:
    value = (os.getenv(key) or "").strip()
    if not value or _PLACEHOLDER_RE.match(value):
        return default
    return value


def _env_int(key: str, default: int) -> int:
    try:
        return int(env_value(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(env_value(key, str(default)))
    except ValueError:
        return default


def _env_urgency(key: str, default: Urgency) -> Urgency:
    try:
        return Urgency(env_value(key, default.value).lower())
    except ValueError:
        return default


@dataclass
class Settings:
    events_url: str = "http://localhost:8000"
    reconnect_base_delay_ms: int = 1000
    reconnect_max_attempts: int = 5
    case_threshold: Urgency = Urgency.MEDIUM
    chat_provider: str = "auto"
    chat_timeout_seconds: float = 25.0
    assistant_name: str = "Dr. Ava"
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_model: str = "claude-3-5-haiku-latest"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "openai/gpt-4o-mini"
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    elevenlabs_model_id: str = "eleven_monolingual_v1"
    tavus_api_key: str = ""
    tavus_avatar_id: str = ""
    hub_queue_size: int = 100

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            events_url=env_value("VIRTUDOC_EVENTS_URL", cls.events_url).rstrip("/"),
            reconnect_base_delay_ms=max(1, _env_int("VIRTUDOC_RECONNECT_BASE_DELAY_MS", cls.reconnect_base_delay_ms)),
            reconnect_max_attempts=max(0, _env_int("VIRTUDOC_RECONNECT_MAX_ATTEMPTS", cls.reconnect_max_attempts)),
            case_threshold=_env_urgency("VIRTUDOC_CASE_THRESHOLD", cls.case_threshold),
            chat_provider=env_value("VIRTUDOC_CHAT_PROVIDER", cls.chat_provider).lower(),
            chat_timeout_seconds=_env_float("VIRTUDOC_CHAT_TIMEOUT_SECONDS", cls.chat_timeout_seconds),
            assistant_name=env_value("VIRTUDOC_ASSISTANT_NAME", cls.assistant_name),
            anthropic_api_key=env_value("ANTHROPIC_API_KEY"),
            anthropic_base_url=env_value("ANTHROPIC_API_BASE_URL", cls.anthropic_base_url).rstrip("/"),
            anthropic_model=env_value("ANTHROPIC_MODEL", cls.anthropic_model),
            openai_api_key=env_value("OPENAI_API_KEY"),
            openai_base_url=env_value("OPENAI_API_BASE_URL", cls.openai_base_url).rstrip("/"),
            openai_model=env_value("VIRTUDOC_CHAT_MODEL", cls.openai_model),
            openrouter_api_key=env_value("OPENROUTER_API_KEY"),
            openrouter_base_url=env_value("OPENROUTER_BASE_URL", cls.openrouter_base_url).rstrip("/"),
            openrouter_model=env_value("OPENROUTER_MODEL", cls.openrouter_model),
            elevenlabs_api_key=env_value("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=env_value("ELEVENLABS_VOICE_ID", cls.elevenlabs_voice_id),
            elevenlabs_model_id=env_value("ELEVENLABS_MODEL_ID", cls.elevenlabs_model_id),
            tavus_api_key=env_value("TAVUS_API_KEY"),
            tavus_avatar_id=env_value("TAVUS_AVATAR_ID"),
            hub_queue_size=max(1, _env_int("VIRTUDOC_HUB_QUEUE_SIZE", cls.hub_queue_size)),
        )
