"""OpenClaw gateway relay."""

from visionclaw.openclaw.bridge import OpenClawBridge, clamp_tool_response, extract_assistant_content
from visionclaw.openclaw.diagnostics import OpenClawDiagnostics, ProbeResult
from visionclaw.openclaw.router import ToolCallRouter

__all__ = [
    "OpenClawBridge",
    "OpenClawDiagnostics",
    "ProbeResult",
    "ToolCallRouter",
    "clamp_tool_response",
    "extract_assistant_content",
]
