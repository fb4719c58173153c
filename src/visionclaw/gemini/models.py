"""Tool-call types exchanged with Gemini Live."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

EXECUTE_TOOL = "execute"


@dataclass
class FunctionCall:
    """A single function call requested by the model."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def task(self) -> str:
        """Task text for the gateway, falling back to the raw args."""
        task = self.args.get("task")
        return task if isinstance(task, str) else str(self.args)


@dataclass
class ToolCall:
    """A toolCall message holding one or more function calls."""

    function_calls: list[FunctionCall]

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> ToolCall | None:
        tool_call = message.get("toolCall")
        if not isinstance(tool_call, dict):
            return None
        raw_calls = tool_call.get("functionCalls")
        if not isinstance(raw_calls, list):
            return None

        calls = []
        for raw in raw_calls:
            if not isinstance(raw, dict):
                continue
            call_id = raw.get("id") or ""
            name = raw.get("name") or ""
            if not call_id or not name:
                continue
            args = raw.get("args")
            calls.append(FunctionCall(str(call_id), str(name), args if isinstance(args, dict) else {}))

        return cls(calls) if calls else None


@dataclass
class ToolCallCancellation:
    """A toolCallCancellation message."""

    ids: list[str]

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> ToolCallCancellation | None:
        cancellation = message.get("toolCallCancellation")
        if not isinstance(cancellation, dict):
            return None
        ids = cancellation.get("ids")
        if not isinstance(ids, list) or not ids:
            return None
        return cls([str(i) for i in ids])


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a delegated tool call."""

    ok: bool
    text: str

    @classmethod
    def success(cls, result: str) -> ToolResult:
        return cls(True, result)

    @classmethod
    def failure(cls, error: str) -> ToolResult:
        return cls(False, error)

    def response_value(self) -> dict[str, str]:
        """Payload for the ``response`` field of a function response."""
        return {"result": self.text} if self.ok else {"error": self.text}


class ToolCallState(Enum):
    """Tool call lifecycle state."""

    IDLE = "idle"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ToolCallStatus:
    """User-facing status of the latest tool call."""

    state: ToolCallState = ToolCallState.IDLE
    name: str = ""
    error: str = ""

    @classmethod
    def idle(cls) -> ToolCallStatus:
        return cls()

    @classmethod
    def executing(cls, name: str) -> ToolCallStatus:
        return cls(ToolCallState.EXECUTING, name)

    @classmethod
    def completed(cls, name: str) -> ToolCallStatus:
        return cls(ToolCallState.COMPLETED, name)

    @classmethod
    def failed(cls, name: str, error: str) -> ToolCallStatus:
        return cls(ToolCallState.FAILED, name, error)

    @classmethod
    def cancelled(cls, name: str) -> ToolCallStatus:
        return cls(ToolCallState.CANCELLED, name)

    @property
    def is_active(self) -> bool:
        return self.state is ToolCallState.EXECUTING

    @property
    def display_text(self) -> str:
        if self.state is ToolCallState.EXECUTING:
            return f"Running: {self.name}..."
        if self.state is ToolCallState.COMPLETED:
            return f"Done: {self.name}"
        if self.state is ToolCallState.FAILED:
            return f"Failed: {self.name} - {self.error}"
        if self.state is ToolCallState.CANCELLED:
            return f"Cancelled: {self.name}"
        return ""


def tool_declarations() -> list[dict[str, Any]]:
    """Function declarations sent in the setup message."""
    return [
        {
            "name": EXECUTE_TOOL,
            "description": (
                "Your only way to take action. You have no memory, storage, or ability to do "
                "anything on your own -- use this tool for everything: sending messages, searching "
                "the web, adding to lists, setting reminders, creating notes, research, drafts, "
                "scheduling, smart home control, app interactions, or any request that goes beyond "
                "answering a question. When in doubt, use this tool."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "task": {
                        "type": "string",
                        "description": (
                            "Clear, detailed description of what to do. Include all relevant "
                            "context: names, content, platforms, quantities, etc."
                        ),
                    }
                },
                "required": ["task"],
            },
            "behavior": "BLOCKING",
        }
    ]
