from .dispatcher import ToolDispatcher
from .models import RESULT_STATES, ToolCall, ToolResponse, ToolResult
from .registry import ToolDefinition, ToolRegistry

__all__ = [
    "RESULT_STATES",
    "ToolCall",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResponse",
    "ToolResult",
]
