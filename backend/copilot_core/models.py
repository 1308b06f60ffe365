from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


RESULT_STATES = {"success", "error"}


@dataclass
class ToolCall:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    status: str
    message: str

    @classmethod
    def success(cls, message: str) -> ToolResult:
        return cls(status="success", message=message)

    @classmethod
    def error(cls, message: str) -> ToolResult:
        return cls(status="error", message=message)

    def as_envelope(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message}


@dataclass
class ToolResponse:
    id: str
    name: str
    result: ToolResult

    def as_payload(self) -> dict[str, Any]:
        return {"result": self.result.as_envelope()}
