"""
Wire Format
===========

Header and payload layout of frame messages, plus the binary pose transform.

All integers and floats are little-endian. The header variant is a
deployment setting shared by both ends; it is never negotiated on the wire.

Layouts:
    FIXED    0 bytes   payload is exactly N bytes, N agreed out-of-band
    LEGACY   8 bytes   width:u32 height:u32, then width*height*4 raw bytes
    BASIC   16 bytes   width:u32 height:u32 payloadLength:u32 chunkCount:u32
    STAMPED 32 bytes   width:u32 height:u32 frameTimestamp:f64
                       poseTimestamp:f64 poseId:f64

BASIC payloads are chunkCount chunks, each a chunkLength:u32 followed by
that many bytes. LEGACY and STAMPED are followed directly by
width*height*4 raw bytes with no chunk prefix.

Design Rules:
    - Pure functions, no I/O
    - Every field is validated before it is trusted
    - Never allocates payload copies (callers decide ownership)
"""

import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from framepipe.errors import ProtocolError, ProtocolErrorKind


BYTES_PER_PIXEL = 4  # uncompressed RGBA

LEGACY_HEADER_FORMAT = "<II"
BASIC_HEADER_FORMAT = "<IIII"
STAMPED_HEADER_FORMAT = "<IIddd"
CHUNK_HEADER_FORMAT = "<I"
TRANSFORM_FORMAT = "<16f"

CHUNK_HEADER_SIZE = struct.calcsize(CHUNK_HEADER_FORMAT)  # 4 bytes
TRANSFORM_SIZE = struct.calcsize(TRANSFORM_FORMAT)  # 64 bytes

MAX_U32 = 0xFFFFFFFF


class HeaderVariant(str, Enum):
    """Frame header layout selected per deployment."""

    FIXED = "fixed"
    LEGACY = "legacy"
    BASIC = "basic"
    STAMPED = "stamped"

    @property
    def header_size(self) -> int:
        """Size of the header preamble in bytes."""
        return _HEADER_SIZES[self]

    @property
    def chunked(self) -> bool:
        """Whether the payload is carried as length-prefixed chunks."""
        return self is HeaderVariant.BASIC


_HEADER_SIZES = {
    HeaderVariant.FIXED: 0,
    HeaderVariant.LEGACY: struct.calcsize(LEGACY_HEADER_FORMAT),
    HeaderVariant.BASIC: struct.calcsize(BASIC_HEADER_FORMAT),
    HeaderVariant.STAMPED: struct.calcsize(STAMPED_HEADER_FORMAT),
}


@dataclass(frozen=True, slots=True)
class FrameHeader:
    """
    Decoded frame header.

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        payload_length: Total payload bytes across all chunks
        chunk_count: Declared chunk count (None when implied by the variant)
        frame_timestamp: Render time of the frame (STAMPED only)
        pose_timestamp: Timestamp of the pose active at encode time (STAMPED only)
        pose_id: Id of the pose active at encode time (STAMPED only)
    """

    width: int
    height: int
    payload_length: int
    chunk_count: Optional[int] = None
    frame_timestamp: Optional[float] = None
    pose_timestamp: Optional[float] = None
    pose_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ChunkLayout:
    """Location of a complete message's payload chunks inside a buffer."""

    spans: Tuple[Tuple[int, int], ...]
    message_length: int


def rgba_size(width: int, height: int) -> int:
    """Payload size of an uncompressed RGBA frame."""
    return width * height * BYTES_PER_PIXEL


# =============================================================================
# Headers
# =============================================================================

def encode_header(
    variant: HeaderVariant,
    width: int,
    height: int,
    payload_length: int,
    chunk_count: int = 1,
    frame_timestamp: Optional[float] = None,
    pose_timestamp: Optional[float] = None,
    pose_id: Optional[int] = None,
) -> bytes:
    """
    Encode a frame header for the given variant.

    Args:
        variant: Header layout
        width: Frame width in pixels
        height: Frame height in pixels
        payload_length: Total payload bytes
        chunk_count: Number of chunks (BASIC only)
        frame_timestamp: Frame render time (STAMPED only)
        pose_timestamp: Pose timestamp, defaults to frame_timestamp (STAMPED only)
        pose_id: Pose id, defaults to 0 (STAMPED only)

    Returns:
        Header bytes (empty for FIXED)

    Raises:
        ValueError: If a field does not fit its wire type
    """
    for name, value in (
        ("width", width),
        ("height", height),
        ("payload_length", payload_length),
        ("chunk_count", chunk_count),
    ):
        if not 0 <= value <= MAX_U32:
            raise ValueError(f"{name} out of u32 range: {value}")

    if variant is HeaderVariant.FIXED:
        return b""
    if variant is HeaderVariant.LEGACY:
        return struct.pack(LEGACY_HEADER_FORMAT, width, height)
    if variant is HeaderVariant.BASIC:
        return struct.pack(BASIC_HEADER_FORMAT, width, height, payload_length, chunk_count)

    frame_ts = 0.0 if frame_timestamp is None else float(frame_timestamp)
    pose_ts = frame_ts if pose_timestamp is None else float(pose_timestamp)
    return struct.pack(
        STAMPED_HEADER_FORMAT,
        width,
        height,
        frame_ts,
        pose_ts,
        float(pose_id or 0),
    )


def decode_header(variant: HeaderVariant, data, offset: int = 0) -> FrameHeader:
    """
    Decode and validate a frame header.

    Args:
        variant: Header layout (FIXED has no header and is rejected)
        data: Bytes-like object holding the header
        offset: Position of the header inside data

    Returns:
        Validated FrameHeader

    Raises:
        ProtocolError: If too few bytes are available or fields are inconsistent
    """
    if variant is HeaderVariant.FIXED:
        raise ValueError("FIXED variant has no header to decode")

    size = variant.header_size
    available = len(data) - offset
    if available < size:
        raise ProtocolError(
            f"Insufficient bytes for {variant.value} header",
            ProtocolErrorKind.MALFORMED,
            declared=size,
            actual=available,
        )

    if variant is HeaderVariant.LEGACY:
        width, height = struct.unpack_from(LEGACY_HEADER_FORMAT, data, offset)
        header = FrameHeader(width, height, rgba_size(width, height))
    elif variant is HeaderVariant.BASIC:
        width, height, payload_length, chunk_count = struct.unpack_from(
            BASIC_HEADER_FORMAT, data, offset
        )
        header = FrameHeader(width, height, payload_length, chunk_count)
    else:
        width, height, frame_ts, pose_ts, pose_id = struct.unpack_from(
            STAMPED_HEADER_FORMAT, data, offset
        )
        if not (math.isfinite(frame_ts) and math.isfinite(pose_ts)):
            raise ProtocolError(
                f"Non-finite timestamp in header: frame={frame_ts}, pose={pose_ts}"
            )
        if not math.isfinite(pose_id) or pose_id < 0 or pose_id != int(pose_id):
            raise ProtocolError(f"Invalid pose id in header: {pose_id}")
        header = FrameHeader(
            width,
            height,
            rgba_size(width, height),
            frame_timestamp=frame_ts,
            pose_timestamp=pose_ts,
            pose_id=int(pose_id),
        )

    _validate_header(header)
    return header


def _validate_header(header: FrameHeader) -> None:
    """Reject structurally inconsistent headers."""
    if header.width == 0 or header.height == 0:
        raise ProtocolError(
            f"Empty frame dimensions: {header.width}x{header.height}"
        )

    expected = rgba_size(header.width, header.height)
    if header.payload_length > expected:
        raise ProtocolError(
            f"Payload larger than {header.width}x{header.height} RGBA",
            ProtocolErrorKind.MALFORMED,
            declared=header.payload_length,
            actual=expected,
        )

    if header.chunk_count is not None:
        if header.chunk_count == 0 and header.payload_length > 0:
            raise ProtocolError(
                "Non-empty payload declared with zero chunks",
                declared=header.payload_length,
            )
        if header.chunk_count > header.payload_length:
            raise ProtocolError(
                "More chunks than payload bytes",
                declared=header.chunk_count,
                actual=header.payload_length,
            )


# =============================================================================
# Chunks
# =============================================================================

def encode_chunk_header(length: int) -> bytes:
    """Encode the chunkLength:u32 prefix of a chunk."""
    if not 0 < length <= MAX_U32:
        raise ValueError(f"chunk length out of range: {length}")
    return struct.pack(CHUNK_HEADER_FORMAT, length)


def decode_chunk_header(data, offset: int = 0) -> int:
    """Decode the chunkLength:u32 prefix located at offset."""
    if len(data) - offset < CHUNK_HEADER_SIZE:
        raise ProtocolError(
            "Insufficient bytes for chunk header",
            declared=CHUNK_HEADER_SIZE,
            actual=len(data) - offset,
        )
    (length,) = struct.unpack_from(CHUNK_HEADER_FORMAT, data, offset)
    return length


def split_payload(payload_length: int, max_chunk_size: int) -> List[Tuple[int, int]]:
    """
    Split a payload into chunk spans no larger than max_chunk_size.

    Returns:
        List of (start, end) offsets into the payload
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be > 0")
    return [
        (start, min(start + max_chunk_size, payload_length))
        for start in range(0, payload_length, max_chunk_size)
    ]


def minimum_message_length(variant: HeaderVariant, header: FrameHeader) -> int:
    """
    Total message length implied by a decoded header.

    Every header variant declares enough to size the whole message up front.
    """
    length = variant.header_size + header.payload_length
    if variant is HeaderVariant.BASIC:
        length += CHUNK_HEADER_SIZE * (header.chunk_count or 0)
    return length


def locate_chunks(
    variant: HeaderVariant,
    header: FrameHeader,
    data,
    offset: int,
    end: int,
) -> Optional[ChunkLayout]:
    """
    Walk the chunk prefixes of a message whose header starts at offset.

    Args:
        variant: Header layout
        header: Decoded header of the message
        data: Buffer holding the message
        offset: Position of the header inside data
        end: End of the valid bytes inside data

    Returns:
        ChunkLayout once every chunk is buffered, None if more bytes are needed

    Raises:
        ProtocolError: If declared chunk lengths disagree with payload_length
    """
    position = offset + variant.header_size

    if not variant.chunked:
        if end - position < header.payload_length:
            return None
        span = (position, position + header.payload_length)
        return ChunkLayout((span,), span[1] - offset)

    spans = []
    covered = 0
    while len(spans) < header.chunk_count:
        if end - position < CHUNK_HEADER_SIZE:
            return None

        length = decode_chunk_header(data, position)
        if length == 0:
            raise ProtocolError(
                f"Zero-length chunk {len(spans)}",
                ProtocolErrorKind.LENGTH_MISMATCH,
                declared=header.payload_length,
                actual=covered,
            )
        if covered + length > header.payload_length:
            raise ProtocolError(
                f"Chunk {len(spans)} overruns declared payload",
                ProtocolErrorKind.LENGTH_MISMATCH,
                declared=header.payload_length,
                actual=covered + length,
            )

        position += CHUNK_HEADER_SIZE
        if end - position < length:
            return None
        spans.append((position, position + length))
        position += length
        covered += length

    if covered != header.payload_length:
        raise ProtocolError(
            f"Chunk lengths do not sum to payload length over {len(spans)} chunks",
            ProtocolErrorKind.LENGTH_MISMATCH,
            declared=header.payload_length,
            actual=covered,
        )

    return ChunkLayout(tuple(spans), position - offset)


# =============================================================================
# Pose transform
# =============================================================================

def encode_transform(rows) -> bytes:
    """
    Encode a 3x4 or 4x4 row-major transform as 16 little-endian f32.

    A 3x4 input is padded with the homogeneous row (0, 0, 0, 1).
    """
    rows = [list(row) for row in rows]
    if len(rows) == 3:
        rows.append([0.0, 0.0, 0.0, 1.0])
    if len(rows) != 4 or any(len(row) != 4 for row in rows):
        raise ValueError("transform must be 3x4 or 4x4")
    return struct.pack(TRANSFORM_FORMAT, *(float(v) for row in rows for v in row))


def decode_transform(data) -> Tuple[Tuple[float, ...], ...]:
    """
    Decode a 64-byte binary transform into its top three rows.

    Raises:
        ProtocolError: If data is not exactly 64 bytes
    """
    if len(data) != TRANSFORM_SIZE:
        raise ProtocolError(
            "Transform message has wrong size",
            declared=TRANSFORM_SIZE,
            actual=len(data),
        )
    values = struct.unpack(TRANSFORM_FORMAT, data)
    return tuple(tuple(values[row * 4:row * 4 + 4]) for row in range(3))
