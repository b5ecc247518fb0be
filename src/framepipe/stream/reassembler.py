"""
Frame Reassembler
=================

Turns a raw ordered byte stream into discrete, validated frames.

Each connection owns one FrameReassembler and one fixed-capacity
ConnectionBuffer. Bytes are appended at write_pos; complete messages are
extracted from read_pos; the unread tail is compacted to offset 0 before
every read so the free space stays contiguous.

Read cycle:
    1. compact      move [read_pos, write_pos) to offset 0
    2. bounds check buffer still full after compaction -> ProtocolError
    3. ingest       read at most the free space; b"" ends the connection
    4. extract      emit every complete message, copying payloads out

Design Rules:
    - The buffer never grows; capacity is a configuration invariant
    - No resynchronization after a protocol fault: the connection is closed
    - Emitted frames own their bytes; the buffer is reused for later reads
    - Only the transport read suspends; everything else is synchronous
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from framepipe.errors import (
    AllocationError,
    ConsumerError,
    FramePipeError,
    ProtocolError,
    ProtocolErrorKind,
    TransportError,
)
from framepipe.stream.frame import Frame
from framepipe.stream.transport import ByteStreamTransport
from framepipe.wire.format import (
    HeaderVariant,
    decode_header,
    locate_chunks,
    minimum_message_length,
    rgba_size,
)


logger = logging.getLogger(__name__)


FrameSink = Callable[[Frame], None]


class ConnectionState(str, Enum):
    """Lifecycle of one connection's read loop."""

    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


# =============================================================================
# Connection Buffer
# =============================================================================

class ConnectionBuffer:
    """
    Fixed-capacity staging area for bytes not yet parsed into frames.

    Invariant: 0 <= read_pos <= write_pos <= capacity.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise AllocationError(f"Buffer capacity must be > 0, got {capacity}")
        try:
            self._bytes = bytearray(capacity)
        except MemoryError as e:
            raise AllocationError(f"Cannot allocate {capacity} byte buffer") from e

        self._capacity = capacity
        self.read_pos = 0
        self.write_pos = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def unread(self) -> int:
        """Bytes received but not yet consumed."""
        return self.write_pos - self.read_pos

    @property
    def free_space(self) -> int:
        """Contiguous bytes available after write_pos."""
        return self._capacity - self.write_pos

    @property
    def raw(self) -> bytearray:
        return self._bytes

    def compact(self) -> None:
        """Move the unread region to offset 0."""
        if self.read_pos == 0:
            return
        unread = self.unread
        if unread:
            self._bytes[0:unread] = self._bytes[self.read_pos:self.write_pos]
        self.read_pos = 0
        self.write_pos = unread

    def append(self, data: bytes) -> None:
        """
        Copy data in at write_pos.

        Raises:
            ProtocolError: If data does not fit; nothing is truncated
        """
        size = len(data)
        if self.write_pos + size > self._capacity:
            raise ProtocolError(
                "Read exceeds remaining buffer capacity",
                ProtocolErrorKind.CAPACITY_EXCEEDED,
                declared=size,
                actual=self.free_space,
            )
        self._bytes[self.write_pos:self.write_pos + size] = data
        self.write_pos += size

    def consume(self, size: int) -> None:
        """Advance read_pos past a consumed message."""
        if size > self.unread:
            raise ValueError(f"Cannot consume {size} bytes, only {self.unread} unread")
        self.read_pos += size

    def release(self) -> None:
        """Drop the backing storage once the connection is closed."""
        self._bytes = bytearray()
        self._capacity = 0
        self.read_pos = 0
        self.write_pos = 0


# =============================================================================
# Sizing Policies
# =============================================================================

class SizingPolicy(ABC):
    """Decides where each message ends and how it becomes a Frame."""

    @property
    def max_message_size(self) -> Optional[int]:
        """Largest possible message, when known up front."""
        return None

    @abstractmethod
    def extract(
        self,
        view: memoryview,
        start: int,
        end: int,
        capacity: int,
        sequence: int,
    ) -> Optional[Tuple[Frame, int]]:
        """
        Try to extract one message from view[start:end].

        Returns:
            (frame, consumed_bytes), or None if the message is incomplete

        Raises:
            ProtocolError: If the message can never be valid
        """


class FixedSizePolicy(SizingPolicy):
    """Every message is exactly frame_size bytes, agreed out-of-band."""

    def __init__(self, frame_size: int, width: int = 0, height: int = 0) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        if width and height and rgba_size(width, height) != frame_size:
            raise ValueError(
                f"{width}x{height} RGBA is {rgba_size(width, height)} bytes, "
                f"not {frame_size}"
            )
        self.frame_size = frame_size
        self.width = width
        self.height = height

    @property
    def max_message_size(self) -> int:
        return self.frame_size

    def extract(self, view, start, end, capacity, sequence):
        if end - start < self.frame_size:
            return None
        pixels = bytes(view[start:start + self.frame_size])
        frame = Frame(
            width=self.width,
            height=self.height,
            pixels=pixels,
            sequence=sequence,
        )
        return frame, self.frame_size


class HeaderPrefixedPolicy(SizingPolicy):
    """Each message starts with a header that determines its length."""

    def __init__(self, variant: HeaderVariant = HeaderVariant.STAMPED) -> None:
        if variant is HeaderVariant.FIXED:
            raise ValueError("FIXED variant requires FixedSizePolicy")
        self.variant = variant

    def extract(self, view, start, end, capacity, sequence):
        if end - start < self.variant.header_size:
            return None

        header = decode_header(self.variant, view[:end], start)

        needed = minimum_message_length(self.variant, header)
        if needed > capacity:
            raise ProtocolError(
                f"Message for {header.width}x{header.height} frame "
                f"can never fit the connection buffer",
                ProtocolErrorKind.CAPACITY_EXCEEDED,
                declared=needed,
                actual=capacity,
            )

        layout = locate_chunks(self.variant, header, view, start, end)
        if layout is None:
            return None

        if len(layout.spans) == 1:
            first, last = layout.spans[0]
            pixels = bytes(view[first:last])
        else:
            pixels = b"".join(view[first:last] for first, last in layout.spans)

        frame = Frame(
            width=header.width,
            height=header.height,
            pixels=pixels,
            frame_timestamp=header.frame_timestamp,
            pose_timestamp=header.pose_timestamp,
            pose_id=header.pose_id,
            sequence=sequence,
        )
        return frame, layout.message_length


def build_policy(
    variant: HeaderVariant,
    fixed_frame_size: int = 0,
    fixed_width: int = 0,
    fixed_height: int = 0,
) -> SizingPolicy:
    """Create the sizing policy matching a header variant."""
    if variant is HeaderVariant.FIXED:
        size = fixed_frame_size or rgba_size(fixed_width, fixed_height)
        return FixedSizePolicy(size, fixed_width, fixed_height)
    return HeaderPrefixedPolicy(variant)


# =============================================================================
# Reassembler
# =============================================================================

@dataclass(frozen=True, slots=True)
class ConnectionOutcome:
    """
    How a connection ended.

    Attributes:
        name: Connection label
        frames_received: Frames extracted and emitted
        unconsumed_bytes: Bytes left in the buffer at close
        error: Fault that ended the connection, if any
    """

    name: str
    frames_received: int
    unconsumed_bytes: int
    error: Optional[FramePipeError] = None

    @property
    def clean(self) -> bool:
        """End of stream with every byte consumed and no fault."""
        return self.error is None and self.unconsumed_bytes == 0

    @property
    def reason(self) -> str:
        if self.error is not None:
            return type(self.error).__name__
        if self.unconsumed_bytes:
            return "TRAILING_BYTES"
        return "END_OF_STREAM"


class FrameReassembler:
    """
    Per-connection frame extraction from a byte stream.

    Attributes:
        policy: Message sizing policy
        buffer: Fixed-capacity connection buffer
        state: Connection lifecycle state
        frames_received: Frames emitted so far

    Example:
        reassembler = FrameReassembler(
            HeaderPrefixedPolicy(HeaderVariant.STAMPED),
            capacity=16 * 1024 * 1024,
            on_frame=dispatcher.on_frame,
        )
        outcome = await reassembler.run(transport, idle_timeout=10.0)
    """

    def __init__(
        self,
        policy: SizingPolicy,
        capacity: int,
        on_frame: FrameSink,
        name: str = "connection",
        log_interval: int = 100,
    ) -> None:
        """
        Initialize reassembler.

        Args:
            policy: Sizing policy shared with the sender
            capacity: Connection buffer capacity in bytes
            on_frame: Called synchronously with every extracted frame
            name: Label used in logs
            log_interval: Log progress every this many frames (0 disables)

        Raises:
            AllocationError: If capacity cannot hold the largest message
        """
        max_size = policy.max_message_size
        if max_size is not None and capacity < max_size:
            raise AllocationError(
                f"Buffer capacity {capacity} is smaller than the "
                f"{max_size} byte message size"
            )

        self.policy = policy
        self.buffer = ConnectionBuffer(capacity)
        self.state = ConnectionState.CONNECTING
        self.frames_received = 0
        self.name = name
        self._on_frame = on_frame
        self._log_interval = log_interval

    def prepare(self) -> int:
        """
        Compact the buffer and return the free space for the next read.

        Raises:
            ProtocolError: If no space remains after compaction
        """
        self.buffer.compact()
        if self.buffer.write_pos == self.buffer.capacity:
            raise ProtocolError(
                "Buffer full after compaction; message exceeds capacity",
                ProtocolErrorKind.CAPACITY_EXCEEDED,
                declared=self.buffer.unread,
                actual=self.buffer.capacity,
            )
        return self.buffer.free_space

    def ingest(self, data: bytes) -> None:
        """Append freshly read bytes to the buffer."""
        self.buffer.append(data)

    def extract(self) -> int:
        """
        Emit every complete message currently buffered.

        Frames extracted before a fault are emitted before the
        ProtocolError propagates. An exception from on_frame is re-raised
        as ConsumerError.

        Returns:
            Number of frames emitted
        """
        emitted = 0
        buffer = self.buffer
        with memoryview(buffer.raw) as view:
            while buffer.unread:
                result = self.policy.extract(
                    view,
                    buffer.read_pos,
                    buffer.write_pos,
                    buffer.capacity,
                    self.frames_received,
                )
                if result is None:
                    break

                frame, consumed = result
                buffer.consume(consumed)
                self.frames_received += 1
                emitted += 1
                try:
                    self._on_frame(frame)
                except Exception as e:
                    raise ConsumerError(
                        f"Frame consumer failed on frame {frame.sequence}: {e}"
                    ) from e

                if self._log_interval and self.frames_received % self._log_interval == 0:
                    logger.info(f"[{self.name}] Processed {self.frames_received} frames")

        return emitted

    def feed(self, data: bytes) -> int:
        """Run one full compact/ingest/extract cycle on data."""
        self.prepare()
        self.ingest(data)
        return self.extract()

    async def run(
        self,
        transport: ByteStreamTransport,
        idle_timeout: Optional[float] = None,
    ) -> ConnectionOutcome:
        """
        Read from transport until end of stream or a fatal error.

        The transport is closed and the buffer released before returning.

        Args:
            transport: Connection to read from (owned by this loop from now on)
            idle_timeout: Seconds a single read may wait; None or 0 waits forever

        Returns:
            ConnectionOutcome describing how the connection ended
        """
        self.state = ConnectionState.OPEN
        error: Optional[FramePipeError] = None
        logger.info(f"[{self.name}] Connection open")

        try:
            while True:
                free = self.prepare()
                data = await self._read(transport, free, idle_timeout)

                if not data:
                    if self.buffer.unread:
                        logger.warning(
                            f"[{self.name}] Stream ended with {self.buffer.unread} "
                            f"unprocessed bytes in buffer"
                        )
                    else:
                        logger.info(f"[{self.name}] Stream ended")
                    break

                self.ingest(data)
                self.extract()

        except ProtocolError as e:
            error = e
            logger.error(
                f"[{self.name}] Protocol error after {self.frames_received} frames: {e}"
            )
        except TransportError as e:
            error = e
            logger.error(
                f"[{self.name}] Transport error after {self.frames_received} frames: {e}"
            )
        except ConsumerError as e:
            error = e
            logger.exception(
                f"[{self.name}] Consumer error after {self.frames_received} frames: {e}"
            )
        finally:
            self.state = ConnectionState.CLOSING
            unconsumed = self.buffer.unread
            await transport.close()
            self.buffer.release()
            self.state = ConnectionState.CLOSED

        outcome = ConnectionOutcome(
            name=self.name,
            frames_received=self.frames_received,
            unconsumed_bytes=unconsumed,
            error=error,
        )
        if outcome.clean:
            logger.info(
                f"[{self.name}] Finished cleanly after {outcome.frames_received} frames"
            )
        else:
            logger.warning(
                f"[{self.name}] Finished unexpectedly ({outcome.reason}) "
                f"after {outcome.frames_received} frames"
            )
        return outcome

    async def _read(
        self,
        transport: ByteStreamTransport,
        max_bytes: int,
        idle_timeout: Optional[float],
    ) -> bytes:
        if not idle_timeout:
            return await transport.read(max_bytes)
        try:
            return await asyncio.wait_for(transport.read(max_bytes), timeout=idle_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"No data on {self.name} for {idle_timeout:.1f}s"
            ) from e
