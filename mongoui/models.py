"""Shared dataclasses used across connection and shell modules."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class PooledClient:
    """A live driver client cached for a saved connection."""

    connection_id: str
    client: Any
    last_used_at: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_used_at


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    """Outcome of a one-off connection test."""

    success: bool
    message: str
    version: str | None = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success, "message": self.message}
        if self.version is not None:
            payload["version"] = self.version
        return payload


__all__ = ["ConnectionTestResult", "PooledClient"]
