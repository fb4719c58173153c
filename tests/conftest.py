"""Pytest configuration and fixtures for VisionClaw tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
import pytest

from visionclaw.common.events import EventBus
from visionclaw.config import Config
from visionclaw.media.audio import MockAudioBackend

FIXED_NOW = datetime(2026, 3, 5, 14, 30, 15, 250000, tzinfo=timezone(timedelta(hours=2), "CEST"))


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command line options."""
    parser.addoption(
        "--slow",
        action="store_true",
        default=False,
        help="Run slow tests",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure test markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip slow tests unless --slow flag is set."""
    if not config.getoption("--slow"):
        skip_slow = pytest.mark.skip(reason="Need --slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def config() -> Config:
    """Get test configuration with both backends configured."""
    cfg = Config()
    cfg.device.mode = "development"
    cfg.device.log_level = "DEBUG"
    cfg.device.device_id = "test-device"
    cfg.gemini.api_key = "test-key"
    cfg.gemini.connect_timeout_seconds = 2.0
    cfg.openclaw.host = "gateway.example.ts.net"
    cfg.openclaw.gateway_token = "secret-token"
    cfg.session.reconnect_delays_seconds = [0.01, 0.02, 0.03]
    cfg.session.deactivate_delay_seconds = 0.01
    return cfg


@pytest.fixture
def unconfigured_config() -> Config:
    """Configuration with no secrets set."""
    cfg = Config()
    cfg.device.device_id = "test-device"
    return cfg


@pytest.fixture
def event_bus() -> EventBus:
    """Create a fresh event bus for each test."""
    return EventBus()


@pytest.fixture
def mock_audio() -> MockAudioBackend:
    """Create mock audio backend."""
    return MockAudioBackend(chunk_bytes=3200)


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock returning a fixed local time."""
    return lambda: FIXED_NOW


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps the requests it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    @property
    def last_json(self) -> Any:
        return json.loads(self.requests[-1].content)


def chat_response(content: Any, status_code: int = 200) -> httpx.Response:
    """Build a chat-completions response."""
    return httpx.Response(
        status_code,
        json={"choices": [{"message": {"role": "assistant", "content": content}}]},
    )


@pytest.fixture
def gateway() -> Callable[..., RecordingTransport]:
    """Factory for a fake OpenClaw gateway."""

    def factory(handler: Callable[[httpx.Request], httpx.Response] | None = None) -> RecordingTransport:
        return RecordingTransport(handler or (lambda request: chat_response("Done.")))

    return factory


@pytest.fixture
def mock_audio_chunk() -> bytes:
    """Create mock audio chunk."""
    # 100ms of 16kHz mono 16-bit PCM silence
    return bytes(16000 * 2 // 10)


@pytest.fixture
def mock_image():
    """Create mock camera frame."""
    from PIL import Image

    return Image.new("RGB", (640, 480), color=(73, 109, 137))


@pytest.fixture
def chat_reply() -> Callable[..., httpx.Response]:
    """Factory for chat-completions responses."""
    return chat_response
