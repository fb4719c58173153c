"""Live session orchestration.

Wires microphone audio and camera frames into Gemini Live, plays the model's
audio back, routes tool calls to OpenClaw and handles a few spoken
session-control phrases locally. Observable state changes are published on
the event bus.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Coroutine

from PIL import Image

from visionclaw.commands import (
    VideoCommand,
    is_deactivate_command,
    normalize_tokens,
    parse_video_command,
    strip_fillers,
)
from visionclaw.common import events as topics
from visionclaw.common.events import EventBus
from visionclaw.common.logging import get_logger
from visionclaw.config import Config
from visionclaw.errors import AudioCaptureError
from visionclaw.gemini.live import ConnectionState, GeminiLiveService
from visionclaw.gemini.models import ToolCall, ToolCallCancellation, ToolCallStatus, ToolResult
from visionclaw.media.audio import AudioBackend, MockAudioBackend
from visionclaw.media.video import FrameSource, FrameThrottle
from visionclaw.openclaw.bridge import OpenClawBridge
from visionclaw.openclaw.router import ToolCallRouter

NOT_CONFIGURED_MESSAGE = (
    "Gemini API key not configured. Set gemini.api_key or VISIONCLAW_GEMINI_API_KEY "
    "(get a key at https://aistudio.google.com/apikey)."
)

# Disconnect reasons that will not get better by reconnecting
_FATAL_DISCONNECT_MARKERS = (
    "invalid api key",
    "permission denied",
    "401",
    "403",
    "normal closure",
    "code 1000",
)

_STATE_FIELDS = ("is_active", "connection_state", "is_model_speaking", "deactivate_requested")


def should_retry_disconnect(reason: str) -> bool:
    lower = reason.lower()
    return not any(marker in lower for marker in _FATAL_DISCONNECT_MARKERS)


class GeminiSession:
    """One voice/vision session with Gemini Live.

    Example:
        async with GeminiSession(config, audio=backend) as session:
            await session.stream_frames(source)
    """

    def __init__(
        self,
        config: Config,
        audio: AudioBackend | None = None,
        events: EventBus | None = None,
        service: GeminiLiveService | None = None,
        bridge: OpenClawBridge | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.events = events or EventBus()
        self.audio = audio or MockAudioBackend(config.session.audio_chunk_bytes)
        self.service = service or GeminiLiveService(config.gemini)
        self.bridge = bridge or OpenClawBridge(config)
        self.router: ToolCallRouter | None = None
        self.throttle = FrameThrottle(config.gemini.video_frame_interval_seconds)
        self.clock = clock
        self.logger = get_logger("gemini_session")

        self.is_active = False
        self.connection_state = ConnectionState.DISCONNECTED
        self.is_model_speaking = False
        self.error_message: str | None = None
        self.user_transcript = ""
        self.ai_transcript = ""
        self.tool_call_status = ToolCallStatus.idle()
        self.video_enabled = True
        self.deactivate_requested = False

        self._retry_count = 0
        self._reconnecting = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._deactivate_task: asyncio.Task[None] | None = None
        self._last_local_command: str | None = None
        self._last_local_command_at = float("-inf")
        self._pending: set[asyncio.Task[Any]] = set()

        self.bridge.on_status_changed = self._on_bridge_status

    async def __aenter__(self) -> GeminiSession:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # Observable state

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _publish(self, topic: str, **data: Any) -> None:
        self._spawn(self.events.emit(topic, "gemini_session", **data))

    def _update(self, **changes: Any) -> None:
        for name, value in changes.items():
            if getattr(self, name) == value:
                continue
            setattr(self, name, value)

            if name in _STATE_FIELDS:
                if isinstance(value, ConnectionState):
                    value = value.value
                self._publish(topics.SESSION_STATE, field=name, value=value)
            elif name == "user_transcript":
                self._publish(topics.USER_TRANSCRIPT, text=value)
            elif name == "ai_transcript":
                self._publish(topics.AI_TRANSCRIPT, text=value)
            elif name == "tool_call_status":
                self._publish(
                    topics.TOOL_STATUS,
                    state=value.state.value,
                    name=value.name,
                    display_text=value.display_text,
                )
            elif name == "error_message":
                self._publish(topics.SESSION_ERROR, message=value)

    def _set_video(self, command: VideoCommand, origin: str) -> None:
        # Published even when unchanged; the capture side decides what to do.
        self.video_enabled = command is VideoCommand.ON
        self._publish(topics.VIDEO_REQUEST, enabled=self.video_enabled, origin=origin)

    async def settle(self) -> None:
        """Wait for queued event publications to be delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def snapshot(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "connection_state": self.connection_state.value,
            "is_model_speaking": self.is_model_speaking,
            "error_message": self.error_message,
            "user_transcript": self.user_transcript,
            "ai_transcript": self.ai_transcript,
            "tool_call_status": self.tool_call_status.display_text,
            "video_enabled": self.video_enabled,
        }

    def clear_error(self) -> None:
        self._update(error_message=None)

    @property
    def is_reconnecting(self) -> bool:
        """True between a retryable disconnect and the next connect attempt."""
        return self._reconnecting

    # Lifecycle

    async def start(self) -> None:
        """Start the session. Does nothing when already active."""
        self._retry_count = 0
        await self._start()

    async def _start(self) -> None:
        if self.is_active:
            return

        if not self.config.gemini.is_configured:
            self._update(error_message=NOT_CONFIGURED_MESSAGE)
            return

        self._update(is_active=True, deactivate_requested=False, error_message=None)
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._reconnecting = False
        self._wire_service()

        self.bridge.reset_session()
        self.router = ToolCallRouter(
            self.bridge,
            on_tool_finished=self._on_tool_finished,
            on_video_command=self._on_router_video_command,
        )
        self.throttle.reset()

        self.logger.info("session_starting", mode=self.config.session.streaming_mode)
        if not await self.service.connect():
            message = self.service.error_message or "Failed to connect to Gemini"
            self.logger.warning("session_connect_failed", error=message)
            await self._abort(message)
            return

        self.audio.on_audio_captured = self._on_audio_captured
        try:
            await self.audio.start()
        except AudioCaptureError as e:
            self.logger.warning("mic_capture_failed", error=str(e))
            await self._abort(f"Mic capture failed: {e}")
            return

        self.logger.info("session_started")

    async def _abort(self, message: str) -> None:
        if self.router:
            self.router.cancel_all()
            self.router = None
        await self.service.disconnect()
        self._update(
            error_message=message,
            is_active=False,
            connection_state=ConnectionState.DISCONNECTED,
        )

    async def stop(self) -> None:
        """Stop the session and reset observable state.

        Also abandons a pending reconnect.
        """
        self._reconnecting = False
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._teardown()

    async def _teardown(self) -> None:
        self._cancel_task(self._deactivate_task)
        self._deactivate_task = None

        if self.router:
            self.router.cancel_all()
            self.router = None
        await self.audio.stop()
        await self.service.disconnect()
        self.bridge.last_tool_call_status = ToolCallStatus.idle()

        self._update(
            is_active=False,
            connection_state=ConnectionState.DISCONNECTED,
            is_model_speaking=False,
            user_transcript="",
            ai_transcript="",
            tool_call_status=ToolCallStatus.idle(),
            deactivate_requested=False,
        )
        self.logger.info("session_stopped")

    @staticmethod
    def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def cancel_in_flight_tool_calls(self) -> None:
        if self.router:
            self.router.cancel_all()
        self.bridge.last_tool_call_status = ToolCallStatus.idle()

    # Media

    @property
    def echo_gating(self) -> bool:
        """Whether the mic is muted while the model speaks."""
        session = self.config.session
        return session.streaming_mode == "phone" or (
            session.streaming_mode == "glasses" and session.prefer_bluetooth_output
        )

    def _on_audio_captured(self, pcm: bytes) -> None:
        # The model is blocked on a toolResponse; realtime input destabilizes it.
        if self.bridge.last_tool_call_status.is_active:
            return
        if self.echo_gating and self.service.is_model_speaking:
            return
        self.service.send_audio(pcm)

    def send_video_frame(self, image: Image.Image) -> bool:
        """Forward a camera frame if the session takes one right now."""
        if not self.is_active or self.service.connection_state is not ConnectionState.READY:
            return False
        if not self.video_enabled or self.bridge.last_tool_call_status.is_active:
            return False
        if not self.throttle.ready(self.clock()):
            return False
        self.service.send_video_frame(image)
        return True

    async def stream_frames(self, source: FrameSource, fps: float = 2.0) -> int:
        """Feed frames from a source until the session ends."""
        sent = 0
        async for frame in source.frames(fps):
            if not self.is_active and not self.is_reconnecting:
                break
            if self.send_video_frame(frame):
                sent += 1
        return sent

    def _play_chime(self) -> None:
        self.audio.play_chime()
        self._publish(topics.CHIME)

    # Service callbacks

    def _wire_service(self) -> None:
        service = self.service
        service.on_status_changed = self._sync_service_state
        service.on_audio_received = self.audio.play
        service.on_interrupted = self.audio.stop_playback
        service.on_turn_complete = self._on_turn_complete
        service.on_input_transcription = self._on_input_transcription
        service.on_output_transcription = self._on_output_transcription
        service.on_disconnected = self._on_disconnected
        service.on_tool_call = self._on_tool_call
        service.on_tool_call_cancellation = self._on_tool_call_cancellation

    def _sync_service_state(self) -> None:
        self._update(
            connection_state=self.service.connection_state,
            is_model_speaking=self.service.is_model_speaking,
        )

    def _on_bridge_status(self, status: ToolCallStatus) -> None:
        self._update(tool_call_status=status)

    def _on_turn_complete(self) -> None:
        self._update(user_transcript="")

    def _on_input_transcription(self, text: str) -> None:
        self._update(user_transcript=self.user_transcript + text, ai_transcript="")
        self._handle_local_commands(self.user_transcript)

    def _on_output_transcription(self, text: str) -> None:
        self._update(ai_transcript=self.ai_transcript + text)

    def _on_tool_call(self, tool_call: ToolCall) -> None:
        for call in tool_call.function_calls:
            if self.router:
                self.router.handle_tool_call(call, self.service.send_tool_response)

    def _on_tool_call_cancellation(self, cancellation: ToolCallCancellation) -> None:
        if self.router:
            self.router.cancel_tool_calls(cancellation.ids)

    def _on_tool_finished(self, result: ToolResult) -> None:
        self._play_chime()

    def _on_disconnected(self, reason: str | None) -> None:
        # Handled off the receive loop, which the teardown below cancels.
        self._spawn(self._handle_disconnect(reason or "Unknown error"))

    async def _handle_disconnect(self, reason: str) -> None:
        if not self.is_active:
            return

        session = self.config.session
        if should_retry_disconnect(reason) and self._retry_count < session.max_reconnect_attempts:
            self._retry_count += 1
            delay = self.retry_delay(self._retry_count)
            self.logger.warning(
                "session_disconnected_retrying",
                reason=reason,
                attempt=self._retry_count,
                max_attempts=session.max_reconnect_attempts,
                delay=delay,
            )
            self._reconnecting = True
            await self._teardown()
            if not self._reconnecting:
                # stop() ran during teardown
                return
            self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
            return

        self.logger.warning("session_connection_lost", reason=reason)
        await self.stop()
        self._update(error_message=f"Connection lost: {reason}")

    def retry_delay(self, attempt: int) -> float:
        delays = self.config.session.reconnect_delays_seconds
        if not delays:
            return 0.0
        return delays[min(attempt, len(delays)) - 1]

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        self._reconnecting = False
        await self._start()

    # Local voice commands

    def _handle_local_commands(self, transcript: str) -> None:
        if not self.is_active or self.deactivate_requested:
            return

        tokens = strip_fillers(normalize_tokens(transcript))
        command = parse_video_command(tokens)
        if command is not None:
            if self._debounce(f"video_{command.value}"):
                self.logger.info("local_video_command", command=command.value)
                self.cancel_in_flight_tool_calls()
                self._set_video(command, origin="voice")
                self._play_chime()
            return

        if is_deactivate_command(tokens):
            self.logger.info("local_deactivate_command")
            self._update(deactivate_requested=True)
            self._play_chime()
            self._deactivate_task = asyncio.create_task(self._deactivate_after_chime())

    def _debounce(self, key: str) -> bool:
        now = self.clock()
        window = self.config.session.local_command_debounce_seconds
        if key == self._last_local_command and now - self._last_local_command_at < window:
            return False
        self._last_local_command = key
        self._last_local_command_at = now
        return True

    async def _deactivate_after_chime(self) -> None:
        await asyncio.sleep(self.config.session.deactivate_delay_seconds)
        self._deactivate_task = None
        await self.stop()

    def _on_router_video_command(self, command: VideoCommand) -> None:
        self._set_video(command, origin="tool_call")
