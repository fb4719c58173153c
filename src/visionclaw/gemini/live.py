"""Gemini Live WebSocket client."""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from enum import Enum
from typing import Any, Callable

import websockets
from PIL import Image
from websockets.exceptions import ConnectionClosed, WebSocketException

from visionclaw.common.logging import get_logger, truncate
from visionclaw.config import GeminiConfig
from visionclaw.errors import GeminiConnectionError
from visionclaw.gemini.models import ToolCall, ToolCallCancellation
from visionclaw.gemini.protocol import (
    GoAway,
    ServerContent,
    SetupComplete,
    build_audio_message,
    build_setup_message,
    build_video_message,
    parse_server_message,
)
from visionclaw.media.video import encode_jpeg

MAX_MESSAGE_BYTES = 16 * 1024 * 1024


class ConnectionState(Enum):
    """Gemini Live connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SETTING_UP = "setting_up"
    READY = "ready"
    ERROR = "error"


Callback = Callable[..., Any]


class GeminiLiveService:
    """Bidirectional audio/video session with Gemini Live.

    Outgoing frames go through one sender task so they reach the socket in
    call order. Incoming frames are dispatched to the ``on_*`` callbacks,
    which may be plain functions or coroutines.
    """

    def __init__(self, config: GeminiConfig) -> None:
        self.config = config
        self.logger = get_logger("gemini_live")

        self.connection_state = ConnectionState.DISCONNECTED
        self.error_message: str | None = None
        self.is_model_speaking = False

        self.on_audio_received: Callback | None = None
        self.on_turn_complete: Callback | None = None
        self.on_interrupted: Callback | None = None
        self.on_disconnected: Callback | None = None
        self.on_input_transcription: Callback | None = None
        self.on_output_transcription: Callback | None = None
        self.on_tool_call: Callback | None = None
        self.on_tool_call_cancellation: Callback | None = None
        # Called synchronously after connection_state or is_model_speaking change
        self.on_status_changed: Callable[[], None] | None = None

        self._ws: Any = None
        self._send_queue: asyncio.Queue[Any] | None = None
        self._sender_task: asyncio.Task[None] | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._connect_future: asyncio.Future[bool] | None = None

        self._last_user_speech_end = 0.0
        self._latency_logged = False
        self._audio_chunks_sent = 0

    @property
    def is_ready(self) -> bool:
        return self.connection_state is ConnectionState.READY

    def _set_state(self, state: ConnectionState, error: str | None = None) -> None:
        self.connection_state = state
        if error is not None:
            self.error_message = error
        self._notify_status()

    def _set_speaking(self, speaking: bool) -> None:
        if self.is_model_speaking != speaking:
            self.is_model_speaking = speaking
            self._notify_status()

    def _notify_status(self) -> None:
        if self.on_status_changed:
            self.on_status_changed()

    async def _fire(self, callback: Callback | None, *args: Any) -> None:
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    def _resolve_connect(self, success: bool) -> None:
        future, self._connect_future = self._connect_future, None
        if future and not future.done():
            future.set_result(success)

    async def connect(self) -> bool:
        """Open the socket, send setup and wait for setupComplete.

        Returns:
            True once the session is ready. False on missing key, socket
            failure, early close or timeout, with ``error_message`` set.
        """
        url = self.config.websocket_url()
        if url is None:
            self._set_state(ConnectionState.ERROR, "No API key configured")
            return False

        self.error_message = None
        self._set_state(ConnectionState.CONNECTING)
        self._connect_future = asyncio.get_running_loop().create_future()
        deadline = time.monotonic() + self.config.connect_timeout_seconds

        try:
            ws = await asyncio.wait_for(self._open(url), timeout=self.config.connect_timeout_seconds)
        except asyncio.TimeoutError:
            return self._connect_timed_out()
        except GeminiConnectionError as e:
            self.logger.warning("gemini_connect_failed", error=str(e))
            self._resolve_connect(False)
            self._set_state(ConnectionState.ERROR, str(e))
            return False

        self._ws = ws
        self._send_queue = asyncio.Queue()
        self._audio_chunks_sent = 0
        self._set_state(ConnectionState.SETTING_UP)

        self._send_queue.put_nowait(build_setup_message(self.config))
        self._sender_task = asyncio.create_task(self._send_loop(ws, self._send_queue))
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self.logger.info("gemini_setup_sent", model=self.config.model)

        future = self._connect_future
        if future is None:
            return False
        try:
            remaining = max(0.0, deadline - time.monotonic())
            return await asyncio.wait_for(asyncio.shield(future), timeout=remaining)
        except asyncio.TimeoutError:
            return self._connect_timed_out()

    def _connect_timed_out(self) -> bool:
        self._resolve_connect(False)
        if self.connection_state in (ConnectionState.CONNECTING, ConnectionState.SETTING_UP):
            self.logger.warning("gemini_connect_timeout", timeout=self.config.connect_timeout_seconds)
            self._set_state(ConnectionState.ERROR, "Connection timed out")
        return False

    async def _open(self, url: str) -> Any:
        try:
            return await websockets.connect(url, max_size=MAX_MESSAGE_BYTES, ping_interval=20)
        except (OSError, WebSocketException) as e:
            raise GeminiConnectionError(str(e) or e.__class__.__name__) from e

    async def disconnect(self) -> None:
        """Close the session. Safe to call repeatedly."""
        self._resolve_connect(False)
        ws, self._ws = self._ws, None
        self._send_queue = None

        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._sender_task, self._receive_task)
            if t is not None and t is not current and not t.done()
        ]
        self._sender_task = None
        self._receive_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if ws is not None:
            try:
                await ws.close(code=1000)
            except (OSError, WebSocketException) as e:
                self.logger.debug("gemini_close_failed", error=str(e))

        self.on_tool_call = None
        self.on_tool_call_cancellation = None
        self.is_model_speaking = False
        self._set_state(ConnectionState.DISCONNECTED)

    def send_audio(self, pcm: bytes) -> None:
        """Queue a PCM chunk. Dropped unless the session is ready."""
        if not self.is_ready or self._send_queue is None or not pcm:
            return
        self._audio_chunks_sent += 1
        count = self._audio_chunks_sent
        if count <= 5 or count % 50 == 0:
            self.logger.debug("gemini_audio_sent", chunk=count, bytes=len(pcm))
        self._send_queue.put_nowait(build_audio_message(pcm, self.config.input_sample_rate))

    def send_video_frame(self, frame: Image.Image | bytes) -> None:
        """Queue a camera frame. Images are JPEG encoded on the sender task."""
        if not self.is_ready or self._send_queue is None:
            return
        self._send_queue.put_nowait(frame)

    def send_tool_response(self, message: dict[str, Any]) -> None:
        """Queue a toolResponse frame regardless of connection state."""
        if self._send_queue is None:
            self.logger.warning("gemini_tool_response_dropped", reason="not connected")
            return
        self._send_queue.put_nowait(message)

    async def _send_loop(self, ws: Any, queue: asyncio.Queue[Any]) -> None:
        try:
            while True:
                item = await queue.get()
                if isinstance(item, Image.Image):
                    jpeg = await asyncio.to_thread(encode_jpeg, item, self.config.video_jpeg_quality)
                    item = build_video_message(jpeg)
                elif isinstance(item, (bytes, bytearray)):
                    item = build_video_message(bytes(item))
                try:
                    await ws.send(json.dumps(item))
                except ConnectionClosed:
                    self.logger.debug("gemini_send_after_close")
                    return
                except OSError as e:
                    self.logger.warning("gemini_send_failed", error=str(e))
                    return
        finally:
            # Later sends are dropped instead of piling up unsent
            if self._send_queue is queue:
                self._send_queue = None

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._handle_message(raw)
        except ConnectionClosed:
            pass
        except (OSError, WebSocketException) as e:
            if ws is self._ws:
                await self._handle_failure(str(e) or e.__class__.__name__)
            return

        if ws is self._ws:
            await self._handle_closed(ws.close_code, ws.close_reason)

    async def _handle_closed(self, code: int | None, reason: str | None) -> None:
        message = f"Connection closed (code {code}: {reason or ''})"
        self.logger.info("gemini_connection_closed", code=code, reason=reason)
        self._resolve_connect(False)
        self.is_model_speaking = False
        self._set_state(ConnectionState.DISCONNECTED)
        await self._fire(self.on_disconnected, message)

    async def _handle_failure(self, message: str) -> None:
        self.logger.warning("gemini_connection_failed", error=message)
        self._resolve_connect(False)
        self.is_model_speaking = False
        self._set_state(ConnectionState.ERROR, message)
        await self._fire(self.on_disconnected, message)

    async def _handle_message(self, raw: str | bytes) -> None:
        message = parse_server_message(raw)
        if message is None:
            self.logger.debug("gemini_message_ignored", raw=truncate(raw))
            return

        if isinstance(message, SetupComplete):
            self.logger.info("gemini_setup_complete")
            self._set_state(ConnectionState.READY)
            self._resolve_connect(True)
        elif isinstance(message, GoAway):
            self.logger.info("gemini_go_away", seconds=message.seconds)
            self.is_model_speaking = False
            self._set_state(ConnectionState.DISCONNECTED)
            await self._fire(
                self.on_disconnected, f"Server closing (time left: {message.seconds}s)"
            )
        elif isinstance(message, ToolCall):
            self.logger.info("gemini_tool_call", count=len(message.function_calls))
            await self._fire(self.on_tool_call, message)
        elif isinstance(message, ToolCallCancellation):
            self.logger.info("gemini_tool_call_cancellation", ids=message.ids)
            await self._fire(self.on_tool_call_cancellation, message)
        elif isinstance(message, ServerContent):
            await self._handle_server_content(message)

    async def _handle_server_content(self, content: ServerContent) -> None:
        if content.interrupted:
            self._set_speaking(False)
            await self._fire(self.on_interrupted)
            return

        for chunk in content.audio_chunks:
            if not self.is_model_speaking:
                self._set_speaking(True)
                if self._last_user_speech_end > 0 and not self._latency_logged:
                    latency_ms = (time.monotonic() - self._last_user_speech_end) * 1000
                    self.logger.info("response_latency", latency_ms=round(latency_ms))
                    self._latency_logged = True
            await self._fire(self.on_audio_received, chunk)

        for text in content.texts:
            self.logger.info("gemini_text", text=truncate(text))

        if content.turn_complete:
            self._set_speaking(False)
            self._latency_logged = False
            await self._fire(self.on_turn_complete)

        if content.input_transcription:
            self.logger.info("user_transcription", text=content.input_transcription)
            self._last_user_speech_end = time.monotonic()
            self._latency_logged = False
            await self._fire(self.on_input_transcription, content.input_transcription)

        if content.output_transcription:
            self.logger.info("ai_transcription", text=content.output_transcription)
            await self._fire(self.on_output_transcription, content.output_transcription)
