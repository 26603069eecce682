"""Outcome of a capture hook."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class HookResult(BaseModel):
    status: str = "ok"  # ok, degraded, fatal
    reason: Optional[str] = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "HookResult":
        return cls(status="ok", data=data)

    @classmethod
    def degraded(cls, reason: str, data: Any = None) -> "HookResult":
        return cls(status="degraded", reason=reason, data=data)

    @classmethod
    def fatal(cls, reason: str) -> "HookResult":
        return cls(status="fatal", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"
