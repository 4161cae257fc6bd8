from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

_PROVIDER_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "OPENROUTER_API_KEY",
    "ELEVENLABS_API_KEY",
    "TAVUS_API_KEY",
    "TAVUS_AVATAR_ID",
)


@pytest.fixture
def backend_module(monkeypatch):
    # Keep CI deterministic; provider tests inject their own transports.
    for key in _PROVIDER_KEYS:
        monkeypatch.setenv(key, "")
    monkeypatch.setenv("VIRTUDOC_CASE_THRESHOLD", "medium")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    def _make(user_id: str, role: str = "patient") -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}", "X-User-Role": role}

    return _make
