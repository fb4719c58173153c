"""Exception types for VisionClaw."""

from __future__ import annotations


class VisionClawError(Exception):
    """Base class for VisionClaw errors."""


class ConfigurationError(VisionClawError):
    """Required configuration is missing or invalid."""


class GeminiConnectionError(VisionClawError):
    """The Gemini Live socket could not be used."""


class AudioCaptureError(VisionClawError):
    """Microphone capture could not be started."""
