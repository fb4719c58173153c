"""Camera frame sources and encoding."""

from __future__ import annotations

import asyncio
import io
import time
from pathlib import Path
from typing import AsyncIterator

from PIL import Image

from visionclaw.common.logging import get_logger

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


def encode_jpeg(image: Image.Image, quality: int = 50) -> bytes:
    """Encode a frame as JPEG, converting to RGB first."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


class FrameThrottle:
    """Lets a frame through at most once per interval."""

    def __init__(self, interval_seconds: float = 1.0) -> None:
        self.interval_seconds = interval_seconds
        self._last: float | None = None

    def ready(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        if self._last is not None and now - self._last < self.interval_seconds:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None


class FrameSource:
    """Abstract frame source."""

    async def setup(self) -> None:
        """Setup frame source."""
        pass

    async def teardown(self) -> None:
        """Teardown frame source."""
        pass

    async def frames(self, fps: float = 1.0) -> AsyncIterator[Image.Image]:
        """Yield frames at roughly ``fps``."""
        raise NotImplementedError
        yield  # pragma: no cover


class MockFrameSource(FrameSource):
    """Mock frame source for testing."""

    def __init__(self, size: tuple[int, int] = (640, 480), limit: int | None = None) -> None:
        self.size = size
        self.limit = limit
        self.frame_count = 0

    async def frames(self, fps: float = 1.0) -> AsyncIterator[Image.Image]:
        while self.limit is None or self.frame_count < self.limit:
            self.frame_count += 1
            shade = (self.frame_count * 37) % 256
            yield Image.new("RGB", self.size, color=(73, 109, shade))
            await asyncio.sleep(1.0 / fps if fps > 0 else 0)


class DirectoryFrameSource(FrameSource):
    """Cycles through the image files of a directory."""

    def __init__(self, directory: Path | str, loop: bool = True) -> None:
        self.directory = Path(directory)
        self.loop = loop
        self.logger = get_logger("directory_frame_source", directory=str(self.directory))

    def image_paths(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(p for p in self.directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)

    async def frames(self, fps: float = 1.0) -> AsyncIterator[Image.Image]:
        paths = self.image_paths()
        if not paths:
            self.logger.warning("no_images_found")
            return

        while True:
            for path in paths:
                try:
                    with Image.open(path) as img:
                        frame = img.convert("RGB")
                except OSError as e:
                    self.logger.warning("image_load_failed", path=str(path), error=str(e))
                    continue
                yield frame
                await asyncio.sleep(1.0 / fps if fps > 0 else 0)
            if not self.loop:
                return
