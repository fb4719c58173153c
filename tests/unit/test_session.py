"""Tests for the live session orchestrator."""

from __future__ import annotations

import asyncio

import pytest
from PIL import Image

from visionclaw.common import events as topics
from visionclaw.common.events import Event, EventBus
from visionclaw.config import Config
from visionclaw.gemini.live import ConnectionState, GeminiLiveService
from visionclaw.gemini.models import FunctionCall, ToolCall, ToolCallCancellation, ToolCallState, ToolCallStatus
from visionclaw.media.audio import MockAudioBackend
from visionclaw.media.video import MockFrameSource
from visionclaw.openclaw.bridge import OpenClawBridge
from visionclaw.session import NOT_CONFIGURED_MESSAGE, GeminiSession, should_retry_disconnect


class FakeLiveService(GeminiLiveService):
    """Gemini Live service that never opens a socket."""

    def __init__(self, config: Config, connect_ok: bool = True) -> None:
        super().__init__(config.gemini)
        self.connect_ok = connect_ok
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.audio_sent: list[bytes] = []
        self.frames: list[Image.Image] = []
        self.tool_responses: list[dict] = []

    async def connect(self) -> bool:
        self.connect_calls += 1
        if not self.connect_ok:
            self._set_state(ConnectionState.ERROR, "Connection refused")
            return False
        self._set_state(ConnectionState.READY)
        return True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.on_tool_call = None
        self.on_tool_call_cancellation = None
        self.is_model_speaking = False
        self._set_state(ConnectionState.DISCONNECTED)

    def send_audio(self, pcm: bytes) -> None:
        if self.is_ready:
            self.audio_sent.append(pcm)

    def send_video_frame(self, frame) -> None:
        self.frames.append(frame)

    def send_tool_response(self, message: dict) -> None:
        self.tool_responses.append(message)


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded(event_bus: EventBus) -> list[Event]:
    events: list[Event] = []

    async def record(event: Event) -> None:
        events.append(event)

    event_bus.subscribe("session.**", record)
    return events


@pytest.fixture
def make_session(config: Config, event_bus: EventBus, mock_audio: MockAudioBackend, gateway, clock):
    def factory(connect_ok: bool = True, audio: MockAudioBackend | None = None, transport=None) -> GeminiSession:
        return GeminiSession(
            config,
            audio=audio or mock_audio,
            events=event_bus,
            service=FakeLiveService(config, connect_ok=connect_ok),
            bridge=OpenClawBridge(config, transport=transport or gateway()),
            clock=clock,
        )

    return factory


class TestRetryPolicy:
    @pytest.mark.parametrize(
        "reason",
        [
            "Invalid API key",
            "Permission denied for model",
            "HTTP 401",
            "403 Forbidden",
            "Normal closure",
            "Connection closed (code 1000: )",
        ],
    )
    def test_fatal_reasons(self, reason: str):
        assert not should_retry_disconnect(reason)

    @pytest.mark.parametrize(
        "reason", ["Connection closed (code 1011: internal error)", "Server closing (time left: 30s)", "timed out"]
    )
    def test_retryable_reasons(self, reason: str):
        assert should_retry_disconnect(reason)

    def test_retry_delay(self, config: Config):
        config.session.reconnect_delays_seconds = [0.7, 1.4, 2.5]
        session = GeminiSession(config)
        assert [session.retry_delay(n) for n in (1, 2, 3, 4)] == [0.7, 1.4, 2.5, 2.5]

        config.session.reconnect_delays_seconds = []
        assert session.retry_delay(1) == 0.0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_without_key(self, unconfigured_config: Config, mock_audio):
        service = FakeLiveService(unconfigured_config)
        session = GeminiSession(unconfigured_config, audio=mock_audio, service=service)

        await session.start()

        assert not session.is_active
        assert session.error_message == NOT_CONFIGURED_MESSAGE
        assert service.connect_calls == 0
        assert not mock_audio.is_running

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_session, mock_audio, recorded):
        session = make_session()

        await session.start()
        await session.settle()

        assert session.is_active
        assert session.connection_state is ConnectionState.READY
        assert mock_audio.is_running
        states = [(e.data["field"], e.data["value"]) for e in recorded if e.topic == topics.SESSION_STATE]
        assert ("is_active", True) in states
        assert ("connection_state", "ready") in states

        await session.stop()
        await session.settle()

        assert not session.is_active
        assert session.connection_state is ConnectionState.DISCONNECTED
        assert not mock_audio.is_running
        assert session.service.disconnect_calls == 1
        assert ("is_active", False) in [
            (e.data["field"], e.data["value"]) for e in recorded if e.topic == topics.SESSION_STATE
        ]

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, make_session):
        session = make_session()
        await session.start()
        await session.start()
        assert session.service.connect_calls == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_connect_failure(self, make_session, mock_audio):
        session = make_session(connect_ok=False)

        await session.start()

        assert not session.is_active
        assert session.error_message == "Connection refused"
        assert session.connection_state is ConnectionState.DISCONNECTED
        assert not mock_audio.is_running

    @pytest.mark.asyncio
    async def test_mic_failure_tears_down(self, make_session, recorded):
        session = make_session(audio=MockAudioBackend(fail_start=True))

        await session.start()
        await session.settle()

        assert not session.is_active
        assert session.error_message == "Mic capture failed: Mock microphone unavailable"
        assert session.service.disconnect_calls == 1
        errors = [e.data["message"] for e in recorded if e.topic == topics.SESSION_ERROR]
        assert errors[-1] == "Mic capture failed: Mock microphone unavailable"

    @pytest.mark.asyncio
    async def test_context_manager(self, make_session):
        session = make_session()
        async with session:
            assert session.is_active
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_stop_keeps_video_preference(self, make_session):
        session = make_session()
        await session.start()
        session.service.on_input_transcription("Jarvis video off")
        await session.stop()

        assert session.video_enabled is False
        assert session.user_transcript == ""
        assert session.snapshot()["video_enabled"] is False


class TestMedia:
    @pytest.mark.asyncio
    async def test_audio_forwarded(self, make_session, mock_audio, mock_audio_chunk):
        session = make_session()
        await session.start()

        mock_audio.feed_mic(mock_audio_chunk)

        assert session.service.audio_sent == [mock_audio_chunk]
        await session.stop()

    @pytest.mark.asyncio
    async def test_audio_dropped_during_tool_call(self, make_session, mock_audio, mock_audio_chunk):
        session = make_session()
        await session.start()

        session.bridge.last_tool_call_status = ToolCallStatus.executing("execute")
        mock_audio.feed_mic(mock_audio_chunk)

        assert session.service.audio_sent == []
        await session.stop()

    @pytest.mark.asyncio
    async def test_echo_gating_in_phone_mode(self, config, make_session, mock_audio, mock_audio_chunk):
        config.session.streaming_mode = "phone"
        session = make_session()
        await session.start()

        session.service._set_speaking(True)
        mock_audio.feed_mic(mock_audio_chunk)
        session.service._set_speaking(False)
        mock_audio.feed_mic(mock_audio_chunk)

        assert session.service.audio_sent == [mock_audio_chunk]
        assert session.is_model_speaking is False
        await session.stop()

    @pytest.mark.asyncio
    async def test_no_echo_gating_on_glasses_speaker(self, make_session, mock_audio, mock_audio_chunk):
        session = make_session()
        await session.start()

        assert not session.echo_gating
        session.service._set_speaking(True)
        mock_audio.feed_mic(mock_audio_chunk)

        assert session.service.audio_sent == [mock_audio_chunk]
        await session.stop()

    def test_echo_gating_with_bluetooth_output(self, config: Config, make_session):
        config.session.prefer_bluetooth_output = True
        assert make_session().echo_gating

    @pytest.mark.asyncio
    async def test_video_frames_throttled(self, make_session, clock, mock_image):
        session = make_session()
        assert not session.send_video_frame(mock_image)

        await session.start()
        assert session.send_video_frame(mock_image)
        clock.now += 0.5
        assert not session.send_video_frame(mock_image)
        clock.now += 0.6
        assert session.send_video_frame(mock_image)

        assert len(session.service.frames) == 2
        await session.stop()

    @pytest.mark.asyncio
    async def test_video_gated(self, make_session, clock, mock_image):
        session = make_session()
        await session.start()

        session.bridge.last_tool_call_status = ToolCallStatus.executing("execute")
        assert not session.send_video_frame(mock_image)

        session.bridge.last_tool_call_status = ToolCallStatus.completed("execute")
        session.video_enabled = False
        assert not session.send_video_frame(mock_image)
        await session.stop()

    @pytest.mark.asyncio
    async def test_stream_frames_stops_with_session(self, make_session, clock):
        session = make_session()
        await session.start()

        source = MockFrameSource(size=(8, 8), limit=5)

        async def stop_soon():
            await asyncio.sleep(0)
            clock.now += 5
            await session.stop()

        stopper = asyncio.create_task(stop_soon())
        sent = await session.stream_frames(source, fps=0)
        await stopper

        assert sent == len(session.service.frames)
        assert sent >= 1
        assert source.frame_count < 5


class TestServiceCallbacks:
    @pytest.mark.asyncio
    async def test_transcripts(self, make_session, recorded):
        session = make_session()
        await session.start()

        session.service.on_output_transcription("Hello")
        session.service.on_input_transcription("What is ")
        session.service.on_input_transcription("this?")
        assert session.user_transcript == "What is this?"
        assert session.ai_transcript == ""

        session.service.on_output_transcription("A mug.")
        session.service.on_turn_complete()
        assert session.user_transcript == ""
        assert session.ai_transcript == "A mug."

        await session.settle()
        user = [e.data["text"] for e in recorded if e.topic == topics.USER_TRANSCRIPT]
        assert user == ["What is ", "What is this?", ""]
        await session.stop()

    @pytest.mark.asyncio
    async def test_audio_playback_and_interrupt(self, make_session, mock_audio):
        session = make_session()
        await session.start()

        session.service.on_audio_received(b"\x01\x02")
        assert mock_audio.played == [b"\x01\x02"]

        session.service.on_interrupted()
        assert mock_audio.played == []
        assert mock_audio.playback_stops == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_tool_call_round_trip(self, make_session, mock_audio, recorded):
        session = make_session()
        await session.start()

        session.service.on_tool_call(ToolCall([FunctionCall("c1", "execute", {"task": "add eggs"})]))
        await wait_for(lambda: session.service.tool_responses)
        await session.settle()

        assert session.service.tool_responses[0]["toolResponse"]["functionResponses"][0]["response"] == {
            "result": "Done."
        }
        assert session.tool_call_status == ToolCallStatus.completed("execute")
        assert mock_audio.chimes == 1
        states = [e.data["state"] for e in recorded if e.topic == topics.TOOL_STATUS]
        assert states == ["executing", "completed"]
        assert any(e.topic == topics.CHIME for e in recorded)
        await session.stop()

    @pytest.mark.asyncio
    async def test_tool_call_cancellation(self, make_session):
        session = make_session()
        await session.start()

        session.service.on_tool_call(ToolCall([FunctionCall("c1", "execute", {"task": "slow"})]))
        session.service.on_tool_call_cancellation(ToolCallCancellation(["c1"]))

        assert session.router.in_flight_ids == []
        assert session.tool_call_status.state is ToolCallState.CANCELLED
        await session.stop()

    @pytest.mark.asyncio
    async def test_tool_requested_video_toggle(self, make_session, recorded):
        session = make_session()
        await session.start()

        session.service.on_tool_call(ToolCall([FunctionCall("c1", "execute", {"task": "turn camera off"})]))
        await session.settle()

        assert session.video_enabled is False
        video = [e.data for e in recorded if e.topic == topics.VIDEO_REQUEST]
        assert video == [{"enabled": False, "origin": "tool_call"}]
        await session.stop()


class TestLocalCommands:
    @pytest.mark.asyncio
    async def test_video_command(self, make_session, mock_audio, recorded, clock):
        session = make_session()
        await session.start()

        session.service.on_input_transcription("Jarvis video off")
        # Same phrase again inside the debounce window
        session.service.on_input_transcription(".")
        assert session.video_enabled is False
        assert mock_audio.chimes == 1

        session.service.on_turn_complete()
        clock.now += 5
        session.service.on_input_transcription("Jarvis video on")
        await session.settle()

        assert session.video_enabled is True
        assert mock_audio.chimes == 2
        video = [e.data for e in recorded if e.topic == topics.VIDEO_REQUEST]
        assert video == [{"enabled": False, "origin": "voice"}, {"enabled": True, "origin": "voice"}]
        await session.stop()

    @pytest.mark.asyncio
    async def test_video_command_cancels_tool_calls(self, make_session):
        session = make_session()
        await session.start()

        session.service.on_tool_call(ToolCall([FunctionCall("c1", "execute", {"task": "slow"})]))
        session.service.on_input_transcription("Jarvis camera off")

        assert session.router.in_flight_ids == []
        assert session.tool_call_status == ToolCallStatus.idle()
        await session.stop()

    @pytest.mark.asyncio
    async def test_deactivate(self, make_session, mock_audio):
        session = make_session()
        await session.start()

        session.service.on_input_transcription("Jarvis stop")
        assert session.deactivate_requested
        assert mock_audio.chimes == 1

        await wait_for(lambda: not session.is_active)
        assert session.deactivate_requested is False
        assert session.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_ignored_when_inactive(self, make_session, mock_audio):
        session = make_session()
        session._handle_local_commands("Jarvis video off")
        assert session.video_enabled is True
        assert mock_audio.chimes == 0


class TestReconnect:
    @pytest.mark.asyncio
    async def test_retryable_disconnect_reconnects(self, make_session):
        session = make_session()
        await session.start()

        session.service.on_disconnected("Connection closed (code 1011: internal error)")
        await wait_for(lambda: session.service.connect_calls == 2 and session.is_active)

        assert session.error_message is None
        assert session.connection_state is ConnectionState.READY
        await session.stop()

    @pytest.mark.asyncio
    async def test_fatal_disconnect(self, make_session):
        session = make_session()
        await session.start()

        session.service.on_disconnected("Connection closed (code 1000: )")
        await wait_for(lambda: not session.is_active)
        await asyncio.sleep(0.05)

        assert session.service.connect_calls == 1
        assert session.error_message == "Connection lost: Connection closed (code 1000: )"

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, config: Config, make_session):
        config.session.max_reconnect_attempts = 1
        session = make_session()
        await session.start()

        session.service.on_disconnected("Server closing (time left: 10s)")
        await wait_for(lambda: session.service.connect_calls == 2 and session.is_active)

        session.service.on_disconnected("Server closing (time left: 10s)")
        await wait_for(lambda: not session.is_active)
        await asyncio.sleep(0.05)

        assert session.service.connect_calls == 2
        assert session.error_message == "Connection lost: Server closing (time left: 10s)"

        # A user start gets a fresh budget
        await session.start()
        session.service.on_disconnected("Server closing (time left: 10s)")
        await wait_for(lambda: session.service.connect_calls == 4 and session.is_active)
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, config: Config, make_session):
        config.session.reconnect_delays_seconds = [0.2]
        session = make_session()
        await session.start()

        session.service.on_disconnected("timed out")
        await wait_for(lambda: session._reconnect_task is not None)
        await session.stop()
        await asyncio.sleep(0.3)

        assert session.service.connect_calls == 1
        assert not session.is_active
        assert not session.is_reconnecting

    @pytest.mark.asyncio
    async def test_reconnecting_flag(self, config: Config, make_session):
        config.session.reconnect_delays_seconds = [0.1]
        session = make_session()
        await session.start()
        assert not session.is_reconnecting

        session.service.on_disconnected("Connection closed (code 1011: internal error)")
        await wait_for(lambda: not session.is_active)
        assert session.is_reconnecting

        await wait_for(lambda: session.is_active)
        assert not session.is_reconnecting
        assert session.service.connect_calls == 2
        await session.stop()

    @pytest.mark.asyncio
    async def test_fatal_disconnect_is_not_reconnecting(self, make_session):
        session = make_session()
        await session.start()

        session.service.on_disconnected("Invalid API key")
        await wait_for(lambda: not session.is_active)
        assert not session.is_reconnecting

    @pytest.mark.asyncio
    async def test_stream_frames_survives_reconnect(self, config: Config, make_session, clock):
        config.session.reconnect_delays_seconds = [0.1]
        session = make_session()
        await session.start()

        source = MockFrameSource(size=(8, 8))
        streamer = asyncio.create_task(session.stream_frames(source, fps=200))

        session.service.on_disconnected("Connection closed (code 1011: internal error)")
        await wait_for(lambda: session.is_reconnecting)
        await asyncio.sleep(0.03)
        assert not streamer.done()

        await wait_for(lambda: session.is_active)
        before = len(session.service.frames)
        clock.now += 5
        await wait_for(lambda: len(session.service.frames) > before)
        assert not streamer.done()

        await session.stop()
        await asyncio.wait_for(streamer, timeout=1.0)
