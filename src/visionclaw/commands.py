"""Spoken session-control phrases handled without the agent.

Phrases are matched on normalized tokens so punctuation and casing from the
transcription do not matter ("Jarvis, video off!" -> ["jarvis", "video", "off"]).
"""

from __future__ import annotations

from enum import Enum

WAKE_WORD = "jarvis"

FILLER_WORDS = frozenset({"hey", "ok", "okay", "please", "um", "uh"})
MEDIA_WORDS = frozenset({"video", "camera", "vision"})
VIDEO_ON_WORDS = frozenset({"on", "enable", "enabled", "start", "resume"})
VIDEO_OFF_WORDS = frozenset({"off", "disable", "disabled", "stop", "pause"})
TOGGLE_VERBS = frozenset({"turn", "switch", "set"})
DEACTIVATE_WORDS = frozenset({"stop", "deactivate", "shutdown", "shut", "quit", "close"})


class VideoCommand(Enum):
    """Requested camera state."""

    ON = "on"
    OFF = "off"

    @property
    def response_text(self) -> str:
        return "Video enabled." if self is VideoCommand.ON else "Video disabled."


def normalize_tokens(text: str) -> list[str]:
    """Lowercase, replace non-alphanumerics with spaces, split."""
    cleaned = "".join(ch if ch.isalnum() else " " for ch in text.lower())
    return cleaned.split()


def strip_fillers(tokens: list[str]) -> list[str]:
    """Drop leading filler words."""
    i = 0
    while i < len(tokens) and tokens[i] in FILLER_WORDS:
        i += 1
    return tokens[i:]


def _state_word(word: str) -> VideoCommand | None:
    if word in VIDEO_ON_WORDS:
        return VideoCommand.ON
    if word in VIDEO_OFF_WORDS:
        return VideoCommand.OFF
    return None


def _parse_anchored_rest(rest: list[str]) -> VideoCommand | None:
    # "video on", "turn camera off"
    if len(rest) >= 2 and rest[0] in MEDIA_WORDS:
        command = _state_word(rest[1])
        if command:
            return command
    if len(rest) >= 3 and rest[0] == "turn" and rest[1] in MEDIA_WORDS:
        return _state_word(rest[2])
    return None


def _parse_loose(tokens: list[str]) -> VideoCommand | None:
    if len(tokens) >= 2 and tokens[0] in MEDIA_WORDS:
        command = _state_word(tokens[1])
        if command:
            return command

    if len(tokens) >= 3 and tokens[0] in TOGGLE_VERBS:
        # "turn video on"
        if tokens[1] in MEDIA_WORDS:
            command = _state_word(tokens[2])
            if command:
                return command
        # "turn on video"
        if tokens[2] in MEDIA_WORDS:
            command = _state_word(tokens[1])
            if command:
                return command

    # "enable video", "stop camera"
    if len(tokens) >= 2 and tokens[1] in MEDIA_WORDS:
        if tokens[0] in ("enable", "start", "resume"):
            return VideoCommand.ON
        if tokens[0] in ("disable", "stop", "pause"):
            return VideoCommand.OFF

    return None


def parse_video_command(tokens: list[str], loose: bool = False) -> VideoCommand | None:
    """Match a video on/off command.

    Args:
        tokens: Normalized tokens, fillers already stripped.
        loose: Also accept phrasings without the wake word, which is how the
            model tends to rewrite them into tool-call tasks.

    Returns:
        The requested state, or None.
    """
    if not tokens:
        return None

    if len(tokens) >= 3 and tokens[0] == WAKE_WORD:
        command = _parse_anchored_rest(tokens[1:])
        if command:
            return command
    if len(tokens) >= 3 and tokens[-1] == WAKE_WORD:
        command = _parse_anchored_rest(tokens[:-1])
        if command:
            return command

    if loose:
        return _parse_loose(tokens)
    return None


def is_deactivate_command(tokens: list[str]) -> bool:
    """Check for "jarvis stop" style phrases, in either word order.

    Only the start of the utterance is considered so that a wake word in the
    middle of a sentence does not end the session.
    """
    if len(tokens) < 2:
        return False

    if tokens[0] == WAKE_WORD:
        if tokens[1] in DEACTIVATE_WORDS:
            return True
        if len(tokens) >= 3 and tokens[1] == "shut" and tokens[2] == "down":
            return True

    # "stop jarvis", "shut down jarvis"
    if tokens[0] in DEACTIVATE_WORDS and tokens[1] == WAKE_WORD:
        return True
    return tokens[:3] == ["shut", "down", WAKE_WORD]
