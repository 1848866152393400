"""
series.py - Ordered slice navigation and autoplay.

Playback advances one slice per timer tick at ``1000 / fps`` ms.  When
the last slice is reached the next tick jumps back to the first slice
and stops; it does not keep looping.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from dicom_viewer.config import CONFIG
from dicom_viewer.pixels import DecodedImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesState:
    """Snapshot of a controller, for reports and session saving."""
    length: int
    current_index: int
    playing: bool
    fps: int


class SeriesController:
    """
    Holds the decoded slices of one upload and the current position.

    Entries may be None for files that failed to decode; rendering such
    an entry produces a placeholder.
    """

    def __init__(self, images: Sequence[Optional[DecodedImage]], fps: Optional[int] = None):
        self._images = tuple(images)
        self.current_index = 0
        self.playing = False
        self.fps = fps or CONFIG["playback"]["fps"]

    def __len__(self) -> int:
        return len(self._images)

    @property
    def images(self) -> tuple[Optional[DecodedImage], ...]:
        return self._images

    @property
    def fps(self) -> int:
        return self._fps

    @fps.setter
    def fps(self, value: int) -> None:
        if value <= 0:
            raise ValueError(f"fps must be > 0, got fps={value}.")
        self._fps = int(value)

    @property
    def interval_ms(self) -> float:
        return 1000.0 / self._fps

    @property
    def current(self) -> Optional[DecodedImage]:
        if not self._images:
            return None
        return self._images[self.current_index]

    @property
    def state(self) -> SeriesState:
        return SeriesState(len(self), self.current_index, self.playing, self._fps)

    # ---------- navigation ----------

    def go_to(self, index: int) -> int:
        if self._images:
            self.current_index = min(max(int(index), 0), len(self._images) - 1)
        return self.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    # ---------- playback ----------

    def play(self) -> None:
        if self._images:
            self.playing = True

    def pause(self) -> None:
        self.playing = False

    def toggle(self) -> bool:
        if self.playing:
            self.pause()
        else:
            self.play()
        return self.playing

    def tick(self) -> int:
        """One timer step.  Wraps to 0 and stops after the last slice."""
        if not self.playing:
            return self.current_index
        if self.current_index >= len(self._images) - 1:
            self.current_index = 0
            self.playing = False
            logger.debug("Playback reached the end of %d slices", len(self._images))
        else:
            self.current_index += 1
        return self.current_index

    async def autoplay(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Drive tick() from the event loop until playback stops."""
        self.play()
        while self.playing:
            await sleep(self.interval_ms / 1000.0)
            if not self.playing:
                break
            self.tick()
