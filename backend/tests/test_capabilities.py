from __future__ import annotations

import asyncio

import pytest

from session_engine import CapabilityRegistry, FunctionCapability


def test_invoke_turns_errors_and_empty_results_into_failures():
    async def boom(payload):
        raise RuntimeError("quota exceeded")

    async def nothing(payload):
        return None

    async def echo(payload):
        return payload["text"]

    failing = asyncio.run(FunctionCapability("speech", boom).invoke({}))
    empty = asyncio.run(FunctionCapability("speech", nothing).invoke({}))
    disabled = asyncio.run(FunctionCapability("speech", echo, available=False).invoke({"text": "hi"}))
    working = asyncio.run(FunctionCapability("speech", echo).invoke({"text": "hi"}))

    assert (failing.ok, failing.error) == (False, "quota exceeded")
    assert not empty.ok
    assert disabled.error == "speech is not configured."
    assert (working.ok, working.value) == (True, "hi")


def test_registry_resolves_aliases_and_reports_missing():
    async def echo(payload):
        return payload

    registry = CapabilityRegistry()
    registry.register(FunctionCapability("video", echo))
    registry.add_alias("avatar", "video")

    assert registry.resolve("avatar").name == "video"
    assert registry.get("speech") is None
    with pytest.raises(KeyError):
        registry.resolve("speech")
