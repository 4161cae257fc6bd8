from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class CapabilityError(Exception):
    pass


class GenerationError(CapabilityError):
    pass


class EnrichmentError(CapabilityError):
    pass


@dataclass
class CapabilityResult:
    ok: bool
    value: Any = None
    error: str | None = None


class Capability:
    """Best-effort external service.

    ``invoke`` never raises: every failure, including the capability not being
    configured, comes back as a failed ``CapabilityResult``.
    """

    name = "capability"

    def is_available(self) -> bool:
        raise NotImplementedError

    async def _call(self, payload: dict[str, Any]) -> Any:
        raise NotImplementedError

    async def invoke(self, payload: dict[str, Any]) -> CapabilityResult:
        if not self.is_available():
            return CapabilityResult(ok=False, error=f"{self.name} is not configured.")
        try:
            value = await self._call(payload)
        except Exception as exc:
            logger.warning("capability %s failed: %s", self.name, exc)
            return CapabilityResult(ok=False, error=str(exc) or exc.__class__.__name__)
        if value is None:
            return CapabilityResult(ok=False, error=f"{self.name} returned no result.")
        return CapabilityResult(ok=True, value=value)


class FunctionCapability(Capability):
    def __init__(
        self,
        name: str,
        func: Callable[[dict[str, Any]], Awaitable[Any]],
        *,
        available: bool = True,
    ) -> None:
        self.name = name
        self._func = func
        self._available = available

    def is_available(self) -> bool:
        return self._available

    async def _call(self, payload: dict[str, Any]) -> Any:
        return await self._func(payload)


class CapabilityRegistry:
    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._aliases: dict[str, str] = {}

    def register(self, capability: Capability) -> None:
        self._capabilities[capability.name] = capability

    def add_alias(self, alias: str, target: str) -> None:
        self._aliases[alias] = target

    def resolve(self, name: str) -> Capability:
        canonical = self._aliases.get(name, name)
        capability = self._capabilities.get(canonical)
        if not capability:
            raise KeyError(f"Capability not found: {name}")
        return capability

    def get(self, name: str) -> Capability | None:
        try:
            return self.resolve(name)
        except KeyError:
            return None

    def list_names(self) -> list[str]:
        return sorted(self._capabilities.keys())

    def availability(self) -> dict[str, bool]:
        return {name: self._capabilities[name].is_available() for name in self.list_names()}
