"""VisionClaw - Gemini Live voice/vision sessions that delegate actions to OpenClaw."""

__version__ = "0.1.0"
__author__ = "VisionClaw Team"

from visionclaw.config import Config, load_config

__all__ = ["Config", "load_config", "__version__"]
