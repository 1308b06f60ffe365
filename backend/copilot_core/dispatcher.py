from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .models import ToolCall, ToolResponse, ToolResult
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def dispatch(self, call: ToolCall) -> ToolResponse:
        try:
            tool = self.registry.resolve(call.name)
        except KeyError:
            logger.warning("Model requested unknown tool %s", call.name)
            return ToolResponse(id=call.id, name=call.name, result=ToolResult.error(f"Unknown tool: {call.name}"))

        try:
            result = tool.handler(dict(call.args or {}))
        except Exception as exc:
            logger.error("Tool %s raised while handling call %s", call.name, call.id, exc_info=True)
            result = ToolResult.error(str(exc) or exc.__class__.__name__)
        return ToolResponse(id=call.id, name=call.name, result=result)

    async def dispatch_all(self, calls: Iterable[ToolCall]) -> list[ToolResponse]:
        """Resolve every call of one server turn; one response per call, in order."""
        responses: list[ToolResponse] = []
        for call in calls:
            responses.append(await asyncio.to_thread(self.dispatch, call))
        return responses
