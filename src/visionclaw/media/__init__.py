"""Audio and video plumbing for live sessions."""

from visionclaw.media.audio import (
    AudioBackend,
    MockAudioBackend,
    PcmChunker,
    SoundDeviceAudioBackend,
    resample_pcm16,
)
from visionclaw.media.video import (
    DirectoryFrameSource,
    FrameThrottle,
    MockFrameSource,
    encode_jpeg,
)

__all__ = [
    "AudioBackend",
    "MockAudioBackend",
    "PcmChunker",
    "SoundDeviceAudioBackend",
    "resample_pcm16",
    "DirectoryFrameSource",
    "FrameThrottle",
    "MockFrameSource",
    "encode_jpeg",
]
