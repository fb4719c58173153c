"""Tests for the Gemini Live client that need no server."""

import asyncio

import pytest
from websockets.exceptions import ConnectionClosed

from visionclaw.config import Config
from visionclaw.gemini.live import ConnectionState, GeminiLiveService


class BrokenSocket:
    """Socket whose sends fail with a given exception."""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.attempts = 0

    async def send(self, data: str) -> None:
        self.attempts += 1
        raise self.error


class TestSendLoop:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [ConnectionClosed(None, None), OSError("broken pipe")])
    async def test_failed_send_stops_queueing(self, config: Config, error: Exception):
        service = GeminiLiveService(config.gemini)
        queue: asyncio.Queue = asyncio.Queue()
        service._send_queue = queue
        service.connection_state = ConnectionState.READY
        ws = BrokenSocket(error)

        queue.put_nowait({"toolResponse": {"functionResponses": []}})
        await asyncio.wait_for(service._send_loop(ws, queue), timeout=1.0)

        assert ws.attempts == 1
        assert service._send_queue is None

        service.send_tool_response({"toolResponse": {"functionResponses": []}})
        service.send_audio(b"\x01\x00")
        assert queue.qsize() == 0

    @pytest.mark.asyncio
    async def test_replaced_queue_is_kept(self, config: Config):
        service = GeminiLiveService(config.gemini)
        old: asyncio.Queue = asyncio.Queue()
        current: asyncio.Queue = asyncio.Queue()
        service._send_queue = current

        old.put_nowait({"realtimeInput": {}})
        await service._send_loop(BrokenSocket(OSError("gone")), old)

        assert service._send_queue is current

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, config: Config):
        service = GeminiLiveService(config.gemini)
        states = []
        service.on_status_changed = lambda: states.append(service.connection_state)

        await service.disconnect()
        await service.disconnect()

        assert service.connection_state is ConnectionState.DISCONNECTED
        assert states == [ConnectionState.DISCONNECTED, ConnectionState.DISCONNECTED]
