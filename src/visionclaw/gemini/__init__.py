"""Gemini Live client."""

from visionclaw.gemini.live import ConnectionState, GeminiLiveService
from visionclaw.gemini.models import (
    FunctionCall,
    ToolCall,
    ToolCallCancellation,
    ToolCallStatus,
    ToolResult,
)

__all__ = [
    "ConnectionState",
    "GeminiLiveService",
    "FunctionCall",
    "ToolCall",
    "ToolCallCancellation",
    "ToolCallStatus",
    "ToolResult",
]
