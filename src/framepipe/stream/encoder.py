"""
Frame Encoder
=============

Turns a raw pixel buffer plus metadata into wire segments.

The current pose is read from the PoseCorrelator at encode time and
stamped into the header, so the receiver knows which pose was active
when the frame was rendered even though poses and frames travel on
independent streams.

Design Rules:
    - Produces one message per frame as a list of segments: the header,
      then the raw payload (LEGACY, STAMPED) or one chunkLength prefix plus
      chunk bytes per chunk (BASIC)
    - Segments reference the caller's pixels without copying
    - Falls back to pose_timestamp=frame_timestamp, pose_id=0 without a pose
"""

import logging
from typing import List, Optional

from framepipe.pose.correlator import PoseCorrelator
from framepipe.wire.format import (
    HeaderVariant,
    encode_chunk_header,
    encode_header,
    rgba_size,
    split_payload,
)


logger = logging.getLogger(__name__)


DEFAULT_MAX_CHUNK_SIZE = 64 * 1024 * 1024


class FrameEncoder:
    """
    Encoder for one header variant.

    Attributes:
        variant: Header layout shared with the receiver
        max_chunk_size: Largest BASIC payload chunk before splitting
        correlator: Source of the current pose (optional)

    Example:
        encoder = FrameEncoder(HeaderVariant.STAMPED, correlator=correlator)
        segments = encoder.encode(pixels, 640, 480, time.monotonic())
        await transport.write(b"".join(segments))
    """

    def __init__(
        self,
        variant: HeaderVariant = HeaderVariant.STAMPED,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        correlator: Optional[PoseCorrelator] = None,
        fixed_frame_size: int = 0,
    ) -> None:
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be > 0")
        self.variant = variant
        self.max_chunk_size = max_chunk_size
        self.correlator = correlator
        self.fixed_frame_size = fixed_frame_size
        self.frames_encoded = 0

    def encode(
        self,
        pixels,
        width: int,
        height: int,
        frame_timestamp: float = 0.0,
    ) -> List:
        """
        Encode one frame.

        Args:
            pixels: Bytes-like payload (RGBA for LEGACY, STAMPED and FIXED)
            width: Frame width in pixels
            height: Frame height in pixels
            frame_timestamp: Render time of the frame

        Returns:
            Ordered list of bytes-like segments forming one wire message

        Raises:
            ValueError: If the payload size does not match the variant
        """
        payload = memoryview(pixels).cast("B")
        length = len(payload)
        self._check_payload(length, width, height)

        if self.variant is HeaderVariant.STAMPED:
            header = self._stamped_header(width, height, length, frame_timestamp)
            self.frames_encoded += 1
            return [header, payload]

        if not self.variant.chunked:
            header = encode_header(self.variant, width, height, length)
            self.frames_encoded += 1
            return [header, payload] if header else [payload]

        spans = split_payload(length, self.max_chunk_size)
        segments = [
            encode_header(self.variant, width, height, length, chunk_count=len(spans))
        ]
        for start, end in spans:
            segments.append(encode_chunk_header(end - start))
            segments.append(payload[start:end])

        self.frames_encoded += 1
        return segments

    def encode_message(self, pixels, width: int, height: int, frame_timestamp: float = 0.0) -> bytes:
        """Encode one frame as a single contiguous bytes object."""
        return b"".join(self.encode(pixels, width, height, frame_timestamp))

    def _check_payload(self, length: int, width: int, height: int) -> None:
        expected = rgba_size(width, height)

        if self.variant is HeaderVariant.FIXED:
            size = self.fixed_frame_size or expected
            if length != size:
                raise ValueError(f"Fixed-size frame must be {size} bytes, got {length}")
        elif self.variant is HeaderVariant.BASIC:
            if length == 0 or length > expected:
                raise ValueError(
                    f"Payload of {length} bytes invalid for {width}x{height} frame"
                )
        elif length != expected:
            raise ValueError(
                f"{self.variant.value} payload must be {width}x{height} RGBA "
                f"({expected} bytes), got {length}"
            )

    def _stamped_header(
        self,
        width: int,
        height: int,
        length: int,
        frame_timestamp: float,
    ) -> bytes:
        pose = self.correlator.current() if self.correlator else None
        return encode_header(
            HeaderVariant.STAMPED,
            width,
            height,
            length,
            frame_timestamp=frame_timestamp,
            pose_timestamp=pose.timestamp if pose else None,
            pose_id=pose.id if pose else None,
        )
