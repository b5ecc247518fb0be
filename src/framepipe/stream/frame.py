"""
Frame Data Model
=================

Decoded frame representation handed from the reassembler to consumers.

Design Rules:
    - pixels is an owned copy, never a view into a connection buffer
    - Does NOT decode or convert pixel data
    - Carries the pose stamped at encode time, not at consume time
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from framepipe.wire.format import BYTES_PER_PIXEL


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One decoded image payload plus its metadata.

    It is immutable (frozen) so ownership can pass between the
    reassembler, dispatcher and consumer without defensive copies.

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        pixels: Owned payload bytes (RGBA when uncompressed)
        frame_timestamp: Render time, when the header variant carries it
        pose_timestamp: Timestamp of the pose active at encode time
        pose_id: Id of the pose active at encode time
        sequence: Per-connection frame counter, starting at 0
    """

    width: int
    height: int
    pixels: bytes
    frame_timestamp: Optional[float] = None
    pose_timestamp: Optional[float] = None
    pose_id: Optional[int] = None
    sequence: int = 0

    @property
    def is_rgba(self) -> bool:
        """Whether the payload is exactly width*height RGBA pixels."""
        return len(self.pixels) == self.width * self.height * BYTES_PER_PIXEL

    def as_array(self) -> np.ndarray:
        """
        Read-only (height, width, 4) uint8 view of the pixels.

        Raises:
            ValueError: If the payload is not uncompressed RGBA
        """
        if not self.is_rgba:
            raise ValueError(
                f"Frame {self.sequence} payload ({len(self.pixels)} bytes) "
                f"is not {self.width}x{self.height} RGBA"
            )
        return np.frombuffer(self.pixels, dtype=np.uint8).reshape(
            (self.height, self.width, BYTES_PER_PIXEL)
        )

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixels."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"size={self.width}x{self.height}, "
            f"bytes={len(self.pixels)}, "
            f"pose_id={self.pose_id})"
        )
