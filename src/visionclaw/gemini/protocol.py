"""Gemini Live wire format.

Builders for the client frames and a parser for server frames. Everything
here is pure: no sockets, no state.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Union

from visionclaw.config import GeminiConfig
from visionclaw.gemini.models import ToolCall, ToolCallCancellation, ToolResult, tool_declarations


@dataclass(frozen=True)
class SetupComplete:
    """Server acknowledged the setup message."""


@dataclass(frozen=True)
class GoAway:
    """Server is about to close the session."""

    seconds: int = 0


@dataclass
class ServerContent:
    """Model output for the current turn."""

    interrupted: bool = False
    audio_chunks: list[bytes] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    turn_complete: bool = False
    input_transcription: str = ""
    output_transcription: str = ""


ServerMessage = Union[SetupComplete, GoAway, ToolCall, ToolCallCancellation, ServerContent]


def build_setup_message(config: GeminiConfig) -> dict[str, Any]:
    """Build the first frame of a session."""
    generation_config: dict[str, Any] = {
        "responseModalities": ["AUDIO"],
        "thinkingConfig": {"thinkingBudget": 0},
    }
    if config.voice_name:
        generation_config["speechConfig"] = {
            "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": config.voice_name}}
        }

    return {
        "setup": {
            "model": config.model,
            "generationConfig": generation_config,
            "systemInstruction": {"parts": [{"text": config.system_instruction}]},
            "tools": [{"functionDeclarations": tool_declarations()}],
            "realtimeInputConfig": {
                "automaticActivityDetection": {
                    "disabled": False,
                    "startOfSpeechSensitivity": "START_SENSITIVITY_HIGH",
                    "endOfSpeechSensitivity": "END_SENSITIVITY_LOW",
                    "silenceDurationMs": 500,
                    "prefixPaddingMs": 40,
                },
                "activityHandling": "START_OF_ACTIVITY_INTERRUPTS",
                "turnCoverage": "TURN_INCLUDES_ALL_INPUT",
            },
            "inputAudioTranscription": {},
            "outputAudioTranscription": {},
        }
    }


def build_audio_message(pcm: bytes, sample_rate: int = 16000) -> dict[str, Any]:
    """Wrap 16-bit mono PCM as a realtime input frame."""
    return {
        "realtimeInput": {
            "audio": {
                "mimeType": f"audio/pcm;rate={sample_rate}",
                "data": base64.b64encode(pcm).decode("ascii"),
            }
        }
    }


def build_video_message(jpeg: bytes) -> dict[str, Any]:
    """Wrap an encoded JPEG frame as a realtime input frame."""
    return {
        "realtimeInput": {
            "video": {
                "mimeType": "image/jpeg",
                "data": base64.b64encode(jpeg).decode("ascii"),
            }
        }
    }


def build_tool_response(call_id: str, name: str, result: ToolResult) -> dict[str, Any]:
    return {
        "toolResponse": {
            "functionResponses": [
                {
                    "id": call_id,
                    "name": name,
                    "response": result.response_value(),
                }
            ]
        }
    }


def _decode_audio(inline_data: Any) -> bytes | None:
    if not isinstance(inline_data, dict):
        return None
    mime_type = inline_data.get("mimeType") or ""
    data = inline_data.get("data") or ""
    if not isinstance(mime_type, str) or not mime_type.startswith("audio/pcm"):
        return None
    if not isinstance(data, str) or not data:
        return None
    try:
        return base64.b64decode(data)
    except ValueError:
        return None


def _transcription_text(value: Any) -> str:
    if isinstance(value, dict):
        text = value.get("text")
        if isinstance(text, str):
            return text
    return ""


def _parse_server_content(content: dict[str, Any]) -> ServerContent:
    if content.get("interrupted"):
        return ServerContent(interrupted=True)

    parsed = ServerContent(turn_complete=bool(content.get("turnComplete")))

    model_turn = content.get("modelTurn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    for part in parts if isinstance(parts, list) else []:
        if not isinstance(part, dict):
            continue
        audio = _decode_audio(part.get("inlineData"))
        if audio:
            parsed.audio_chunks.append(audio)
        text = part.get("text")
        if isinstance(text, str) and text:
            parsed.texts.append(text)

    parsed.input_transcription = _transcription_text(content.get("inputTranscription"))
    parsed.output_transcription = _transcription_text(content.get("outputTranscription"))
    return parsed


def parse_server_message(text: str | bytes) -> ServerMessage | None:
    """Decode one server frame.

    Returns:
        The first recognised message kind, in the order setupComplete, goAway,
        toolCall, toolCallCancellation, serverContent. None for frames that are
        not JSON objects or carry none of these.
    """
    try:
        message = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict):
        return None

    if "setupComplete" in message:
        return SetupComplete()

    if "goAway" in message:
        go_away = message.get("goAway")
        time_left = go_away.get("timeLeft") if isinstance(go_away, dict) else None
        seconds = time_left.get("seconds", 0) if isinstance(time_left, dict) else 0
        try:
            seconds = int(seconds)
        except (TypeError, ValueError):
            seconds = 0
        return GoAway(seconds=seconds)

    tool_call = ToolCall.from_message(message)
    if tool_call:
        return tool_call

    cancellation = ToolCallCancellation.from_message(message)
    if cancellation:
        return cancellation

    content = message.get("serverContent")
    if isinstance(content, dict):
        return _parse_server_content(content)

    return None
