"""
Frame Buffer
============

Bounded hand-off between the Dispatcher and the frame consumer.

The reassembler emits frames synchronously from the connection's read loop,
so handing a frame over must never wait on the consumer. When the consumer
falls behind, the oldest queued frame is discarded: a display only cares
about the freshest image.

Design Rules:
    - put_nowait() never blocks and never fails
    - Drop-oldest on overflow; frames are never modified
    - Single event loop; not shared across threads

Example:
    buffer = FrameBuffer(maxsize=4)
    dispatcher = Dispatcher(correlator, buffer=buffer)

    frame = await buffer.get(timeout=1.0)
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from framepipe.stream.frame import Frame


logger = logging.getLogger(__name__)


class FrameBuffer:
    """
    Drop-oldest frame queue.

    Attributes:
        maxsize: Frames held before the oldest is discarded
        dropped_count: Frames discarded on overflow
        dropped_bytes: Pixel bytes discarded on overflow
        total_put: Frames ever offered
    """

    def __init__(self, maxsize: int = 4, warn_every: int = 100) -> None:
        """
        Initialize frame buffer.

        Args:
            maxsize: Maximum frames to hold. Must be >= 1.
            warn_every: Log a warning on the first drop and then every this many
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._warn_every = max(1, warn_every)
        self._frames: Deque[Frame] = deque()
        self._ready = asyncio.Event()

        self.dropped_count: int = 0
        self.dropped_bytes: int = 0
        self.total_put: int = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        """Frames waiting for the consumer."""
        return len(self._frames)

    def put_nowait(self, frame: Frame) -> bool:
        """
        Queue a frame, discarding the oldest one if the buffer is full.

        Returns:
            False if a frame had to be discarded, True otherwise
        """
        self.total_put += 1
        kept = True

        if len(self._frames) >= self._maxsize:
            stale = self._frames.popleft()
            self.dropped_count += 1
            self.dropped_bytes += len(stale.pixels)
            kept = False
            if self.dropped_count % self._warn_every == 1 or self._warn_every == 1:
                logger.warning(
                    f"Consumer behind, dropped frame {stale.sequence} "
                    f"({self.dropped_count} dropped so far)"
                )

        self._frames.append(frame)
        self._ready.set()
        return kept

    async def put(self, frame: Frame) -> bool:
        return self.put_nowait(frame)

    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Wait for the next frame.

        Args:
            timeout: Seconds to wait; None waits forever

        Returns:
            The oldest queued frame, or None if the timeout expired
        """
        while not self._frames:
            self._ready.clear()
            try:
                if timeout is None:
                    await self._ready.wait()
                else:
                    await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
        return self._frames.popleft()

    def get_nowait(self) -> Optional[Frame]:
        if not self._frames:
            return None
        return self._frames.popleft()

    def clear(self) -> int:
        """Discard every queued frame; returns how many were discarded."""
        cleared = len(self._frames)
        self._frames.clear()
        self._ready.clear()
        return cleared

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self.dropped_count,
            "dropped_bytes": self.dropped_bytes,
            "total_put": self.total_put,
        }
