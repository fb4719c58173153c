"""Routes Gemini function calls to the OpenClaw bridge."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from visionclaw.commands import VideoCommand, normalize_tokens, parse_video_command, strip_fillers
from visionclaw.common.logging import get_logger, truncate
from visionclaw.gemini.models import EXECUTE_TOOL, FunctionCall, ToolCallStatus, ToolResult
from visionclaw.gemini.protocol import build_tool_response
from visionclaw.openclaw.bridge import OpenClawBridge

SendResponse = Callable[[dict[str, Any]], None]


class ToolCallRouter:
    """Runs each function call as its own task and tracks it until it answers.

    ``execute`` tasks that are really camera controls ("turn video off") are
    answered locally so the model is not blocked on the gateway.
    """

    def __init__(
        self,
        bridge: OpenClawBridge,
        on_tool_finished: Callable[[ToolResult], None] | None = None,
        on_video_command: Callable[[VideoCommand], None] | None = None,
    ) -> None:
        self.bridge = bridge
        self.on_tool_finished = on_tool_finished
        self.on_video_command = on_video_command
        self.logger = get_logger("tool_call_router")
        self._in_flight: dict[str, asyncio.Task[None]] = {}

    @property
    def in_flight_ids(self) -> list[str]:
        return list(self._in_flight)

    def handle_tool_call(self, call: FunctionCall, send_response: SendResponse) -> None:
        self.logger.info(
            "tool_call_received", call_id=call.id, name=call.name, args=truncate(call.args)
        )

        if call.name == EXECUTE_TOOL:
            command = self._local_video_command(call.task)
            if command is not None:
                self._answer_locally(call, command, send_response)
                return

        task = asyncio.create_task(self._run(call, send_response))
        self._in_flight[call.id] = task

    def _local_video_command(self, task: str) -> VideoCommand | None:
        tokens = strip_fillers(normalize_tokens(task))
        return parse_video_command(tokens, loose=True)

    def _answer_locally(self, call: FunctionCall, command: VideoCommand, send_response: SendResponse) -> None:
        self.logger.info("tool_call_local_control", call_id=call.id, command=command.value)
        if self.on_video_command:
            self.on_video_command(command)
        self.bridge.last_tool_call_status = ToolCallStatus.completed(call.name)
        result = ToolResult.success(command.response_text)
        if self.on_tool_finished:
            self.on_tool_finished(result)
        send_response(build_tool_response(call.id, call.name, result))

    async def _run(self, call: FunctionCall, send_response: SendResponse) -> None:
        try:
            result = await self.bridge.delegate_task(call.task, tool_name=call.name)
        except asyncio.CancelledError:
            self.logger.info("tool_call_cancelled", call_id=call.id)
            raise
        finally:
            if self._in_flight.get(call.id) is asyncio.current_task():
                del self._in_flight[call.id]

        self.logger.info(
            "tool_call_result", call_id=call.id, name=call.name, ok=result.ok, text=truncate(result.text)
        )
        if self.on_tool_finished:
            self.on_tool_finished(result)
        send_response(build_tool_response(call.id, call.name, result))

    def cancel_tool_calls(self, ids: list[str]) -> None:
        """Cancel specific in-flight calls, as asked by the server."""
        for call_id in ids:
            task = self._in_flight.pop(call_id, None)
            if task is not None:
                self.logger.info("tool_call_cancelling", call_id=call_id)
                task.cancel()
        self.bridge.last_tool_call_status = ToolCallStatus.cancelled(ids[0] if ids else "unknown")

    def cancel_all(self) -> None:
        """Cancel every in-flight call, e.g. when the session stops."""
        for call_id, task in self._in_flight.items():
            self.logger.info("tool_call_cancelling", call_id=call_id)
            task.cancel()
        self._in_flight.clear()
