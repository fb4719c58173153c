"""Audio capture, playback and PCM helpers.

Gemini Live takes 16-bit mono PCM at 16 kHz and answers with 16-bit mono PCM
at 24 kHz. Capture is accumulated into ~100 ms chunks before it is handed to
the session.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

import numpy as np

from visionclaw.common.logging import get_logger
from visionclaw.errors import AudioCaptureError

AudioCallback = Callable[[bytes], None]


def pcm16_from_float(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian int16 PCM."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def float_from_pcm16(pcm: bytes) -> np.ndarray:
    """Convert int16 PCM to float32 samples in [-1, 1]."""
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32767


def resample_pcm16(pcm: bytes, src_rate: int, dst_rate: int, channels: int = 1) -> bytes:
    """Resample int16 PCM with linear interpolation.

    Interleaved multi-channel input is averaged down to mono first.
    """
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32)
    if channels > 1:
        usable = len(samples) - len(samples) % channels
        samples = samples[:usable].reshape(-1, channels).mean(axis=1)

    if src_rate == dst_rate or len(samples) == 0:
        return np.round(samples).astype("<i2").tobytes()

    out_len = max(1, int(round(len(samples) * dst_rate / src_rate)))
    src_positions = np.arange(len(samples), dtype=np.float64)
    dst_positions = np.linspace(0, len(samples) - 1, out_len)
    resampled = np.interp(dst_positions, src_positions, samples)
    return np.clip(np.round(resampled), -32768, 32767).astype("<i2").tobytes()


def generate_chime(sample_rate: int = 24000, duration_seconds: float = 0.18) -> bytes:
    """Short two-tone chime played when a tool call finishes."""
    n = int(sample_rate * duration_seconds)
    t = np.arange(n) / sample_rate
    half = n // 2
    freqs = np.where(np.arange(n) < half, 880.0, 1320.0)
    envelope = np.minimum(1.0, np.minimum(t, t[-1] - t) * 40) if n else t
    return pcm16_from_float(0.25 * envelope * np.sin(2 * np.pi * freqs * t))


class PcmChunker:
    """Accumulates captured PCM into chunks of at least ``min_bytes``."""

    def __init__(self, min_bytes: int = 3200) -> None:
        self.min_bytes = min_bytes
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        if len(self._buffer) < self.min_bytes:
            return []
        chunk = bytes(self._buffer)
        self._buffer.clear()
        return [chunk]

    def flush(self) -> bytes:
        chunk = bytes(self._buffer)
        self._buffer.clear()
        return chunk

    @property
    def pending(self) -> int:
        return len(self._buffer)


class AudioBackend:
    """Abstract capture/playback backend."""

    def __init__(self, chunk_bytes: int = 3200) -> None:
        self.chunker = PcmChunker(chunk_bytes)
        self.on_audio_captured: AudioCallback | None = None
        self.is_running = False

    async def start(self) -> None:
        """Start microphone capture and the playback stream."""
        raise NotImplementedError

    async def stop(self) -> None:
        """Stop capture, flushing any partial chunk, and playback."""
        raise NotImplementedError

    def play(self, pcm: bytes) -> None:
        """Queue model audio for playback."""
        raise NotImplementedError

    def stop_playback(self) -> None:
        """Drop queued output, e.g. when the model is interrupted."""
        raise NotImplementedError

    def play_chime(self) -> None:
        self.play(generate_chime())

    def _deliver(self, data: bytes) -> None:
        if not self.on_audio_captured:
            return
        for chunk in self.chunker.feed(data):
            self.on_audio_captured(chunk)

    def _flush(self) -> None:
        remainder = self.chunker.flush()
        if remainder and self.on_audio_captured:
            self.on_audio_captured(remainder)

    def get_status(self) -> dict:
        return {"running": self.is_running, "pending_capture_bytes": self.chunker.pending}


class MockAudioBackend(AudioBackend):
    """Mock audio backend for testing.

    Capture comes from :meth:`feed_mic`. Played audio is recorded.
    """

    def __init__(self, chunk_bytes: int = 3200, fail_start: bool = False) -> None:
        super().__init__(chunk_bytes)
        self.fail_start = fail_start
        self.played: list[bytes] = []
        self.chimes = 0
        self.playback_stops = 0

    async def start(self) -> None:
        if self.fail_start:
            raise AudioCaptureError("Mock microphone unavailable")
        self.is_running = True

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._flush()
        self.is_running = False

    def feed_mic(self, pcm: bytes) -> None:
        if self.is_running:
            self._deliver(pcm)

    def play(self, pcm: bytes) -> None:
        if not self.is_running or not pcm:
            return
        self.played.append(pcm)

    def stop_playback(self) -> None:
        self.playback_stops += 1
        self.played.clear()

    def play_chime(self) -> None:
        self.chimes += 1


class SoundDeviceAudioBackend(AudioBackend):
    """Desktop microphone and speaker through PortAudio."""

    def __init__(
        self,
        input_sample_rate: int = 16000,
        output_sample_rate: int = 24000,
        chunk_bytes: int = 3200,
    ) -> None:
        super().__init__(chunk_bytes)
        self.input_sample_rate = input_sample_rate
        self.output_sample_rate = output_sample_rate
        self.logger = get_logger("sounddevice_audio_backend")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._input: Any = None
        self._output: Any = None
        self._playback = bytearray()
        self._playback_lock = threading.Lock()

    async def start(self) -> None:
        if self.is_running:
            return
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise AudioCaptureError(f"sounddevice not available: {e}") from e

        self._loop = asyncio.get_running_loop()
        blocksize = self.chunker.min_bytes // 2
        try:
            self._input = sd.RawInputStream(
                samplerate=self.input_sample_rate,
                channels=1,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_input,
            )
            self._output = sd.RawOutputStream(
                samplerate=self.output_sample_rate,
                channels=1,
                dtype="int16",
                callback=self._on_output,
            )
            self._input.start()
            self._output.start()
        except Exception as e:
            await self._close_streams()
            raise AudioCaptureError(str(e)) from e

        self.is_running = True
        self.logger.info("capture_started", sample_rate=self.input_sample_rate)

    def _on_input(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self.logger.debug("input_status", status=str(status))
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliver, bytes(indata))

    def _on_output(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        wanted = len(outdata)
        with self._playback_lock:
            chunk = bytes(self._playback[:wanted])
            del self._playback[:wanted]
        outdata[: len(chunk)] = chunk
        if len(chunk) < wanted:
            outdata[len(chunk) :] = b"\x00" * (wanted - len(chunk))

    async def _close_streams(self) -> None:
        for stream in (self._input, self._output):
            if stream is None:
                continue
            stream.stop()
            stream.close()
        self._input = None
        self._output = None

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.is_running = False
        await self._close_streams()
        self._flush()
        self.stop_playback()
        self.logger.info("capture_stopped")

    def play(self, pcm: bytes) -> None:
        if not self.is_running or not pcm:
            return
        with self._playback_lock:
            self._playback.extend(pcm)

    def stop_playback(self) -> None:
        with self._playback_lock:
            self._playback.clear()
