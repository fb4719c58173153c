"""Configuration management for VisionClaw."""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit, urlunsplit

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_API_KEY = "YOUR_GEMINI_API_KEY"
PLACEHOLDER_GATEWAY_TOKEN = "YOUR_OPENCLAW_GATEWAY_TOKEN"
PLACEHOLDER_HOSTS = ("YOUR_HOST", "YOUR_VM_TAILNET_DNS")

DEFAULT_SYSTEM_INSTRUCTION = """\
You are an AI assistant for someone wearing smart glasses. You can see through their camera and have a voice conversation. Keep responses concise and natural.

CRITICAL: You have NO memory, NO storage, and NO ability to take actions on your own. You cannot remember things, keep lists, set reminders, search the web, send messages, or do anything persistent. You are ONLY a voice interface.

You have exactly ONE tool: execute. This connects you to a powerful personal assistant that can do anything -- send messages, search the web, manage lists, set reminders, create notes, research topics, control smart home devices, interact with apps, and much more.

ALWAYS use execute when the user asks you to:
- Send a message to someone (any platform: WhatsApp, Telegram, iMessage, Slack, etc.)
- Search or look up anything (web, local info, facts, news)
- Add, create, or modify anything (shopping lists, reminders, notes, todos, events)
- Research, analyze, or draft anything
- Control or interact with apps, devices, or services
- Remember or store any information for later

Be detailed in your task description. Include all relevant context: names, content, platforms, quantities, etc.

NEVER pretend to do these things yourself.

Session-control phrases are handled locally by the app and MUST NOT call execute:
- "Jarvis stop/deactivate/shutdown"
- "Jarvis video on/off" (or "Jarvis camera on/off", "Jarvis vision on/off")

IMPORTANT: Before calling execute, ALWAYS speak a brief acknowledgment first, for example "Got it, searching for that now." then call execute. The tool may take several seconds to complete.

For messages, confirm recipient and content before delegating unless clearly urgent."""


class DeviceConfig(BaseModel):
    """Device configuration."""

    name: str = "visionclaw"
    mode: Literal["production", "development"] = "development"
    log_level: str = "INFO"
    device_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class GeminiConfig(BaseModel):
    """Gemini Live API configuration."""

    api_key: str = ""
    websocket_base_url: str = (
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
    )
    model: str = "models/gemini-2.5-flash-native-audio-preview-12-2025"
    voice_name: str | None = None
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    channels: int = 1
    bits_per_sample: int = 16
    video_frame_interval_seconds: float = 1.0
    video_jpeg_quality: int = 50
    connect_timeout_seconds: float = 15.0
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION

    @property
    def is_configured(self) -> bool:
        key = self.api_key.strip()
        return bool(key) and key != PLACEHOLDER_API_KEY

    def websocket_url(self) -> str | None:
        """Get the authenticated WebSocket URL, or None without a usable key."""
        if not self.is_configured:
            return None
        return f"{self.websocket_base_url}?key={self.api_key.strip()}"


class OpenClawConfig(BaseModel):
    """OpenClaw gateway configuration."""

    host: str = ""
    port: int = 18789
    gateway_token: str = ""
    agent_id: str = ""
    profile: str = ""
    request_timeout_seconds: float = 95.0
    max_response_chars: int = 1800
    share_location: bool = False
    latitude: float | None = None
    longitude: float | None = None
    location_accuracy_m: float = 0.0

    @property
    def is_configured(self) -> bool:
        token = self.gateway_token.strip()
        host = self.host.strip()
        if not token or token == PLACEHOLDER_GATEWAY_TOKEN or not host:
            return False
        return not any(p in host for p in PLACEHOLDER_HOSTS)

    def url(self, path: str) -> str | None:
        """Build a gateway URL for a path.

        Bare hosts get an https scheme. The configured port only applies when
        the host does not already name one.
        """
        raw = self.host.strip()
        if not raw:
            return None
        if not raw.startswith(("http://", "https://")):
            raw = f"https://{raw}"

        try:
            parts = urlsplit(raw)
            port = parts.port
        except ValueError:
            # Malformed port or bracketed host
            return None
        if not parts.hostname:
            return None
        netloc = parts.netloc
        if port is None:
            netloc = f"{netloc}:{self.port}"
        if not path.startswith("/"):
            path = "/" + path
        return urlunsplit((parts.scheme, netloc, path, "", ""))


class SessionConfig(BaseModel):
    """Live session behaviour."""

    streaming_mode: Literal["glasses", "phone"] = "glasses"
    prefer_bluetooth_output: bool = False
    max_reconnect_attempts: int = 3
    reconnect_delays_seconds: list[float] = Field(default_factory=lambda: [0.7, 1.4, 2.5])
    local_command_debounce_seconds: float = 2.5
    deactivate_delay_seconds: float = 0.35
    audio_chunk_bytes: int = 3200


class Config(BaseSettings):
    """Main configuration for VisionClaw."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONCLAW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    device: DeviceConfig = Field(default_factory=DeviceConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    openclaw: OpenClawConfig = Field(default_factory=OpenClawConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @property
    def openclaw_user(self) -> str:
        profile = self.openclaw.profile.strip() or "default"
        return f"visionclaw:{self.device.device_id}:{profile}"

    @classmethod
    def from_yaml(cls, path: Path | str) -> Config:
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


def load_config(
    config_path: Path | str | None = None,
    env_override: bool = True,
) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file. If None, searches standard locations.
        env_override: Whether to allow environment variables to override secrets.

    Returns:
        Loaded configuration.
    """
    search_paths = [
        Path("/etc/visionclaw/config.yaml"),
        Path.home() / ".config" / "visionclaw" / "config.yaml",
        Path("config.yaml"),
        Path("configs/visionclaw.yaml"),
    ]

    if config_path:
        search_paths.insert(0, Path(config_path))

    config_file: Path | None = None
    for path in search_paths:
        if path.exists():
            config_file = path
            break

    if config_file:
        config = Config.from_yaml(config_file)
    else:
        config = Config()

    if env_override:
        api_key = os.environ.get("VISIONCLAW_GEMINI_API_KEY")
        if api_key:
            config.gemini.api_key = api_key

        token = os.environ.get("VISIONCLAW_OPENCLAW_GATEWAY_TOKEN")
        if token:
            config.openclaw.gateway_token = token

    return config
