"""
Frame Sender
============

Producer-side owner of the connection to a FrameReceiver.

This module provides the FrameSender class which:
    - Connects to the receiver endpoint, retrying with a fixed delay
    - Encodes frames (stamping the current pose) and writes them whole
    - Drops frames while disconnected instead of queueing them
    - Reconnects in the background after a write failure
    - Exposes metrics for health monitoring

Design Rules:
    - One message per write; writes are serialized so messages never interleave
    - The written message is an owned copy, so callers may reuse their pixel buffer
    - Never blocks the render path waiting for a connection
"""

import asyncio
import logging
from typing import Optional

from framepipe.errors import TransportError
from framepipe.stream.encoder import FrameEncoder
from framepipe.stream.transport import ByteStreamTransport, open_transport


logger = logging.getLogger(__name__)


class FrameSenderMetrics:
    """Metrics for FrameSender observability."""

    __slots__ = (
        "frames_sent",
        "bytes_sent",
        "frames_dropped",
        "reconnect_count",
        "write_errors",
    )

    def __init__(self) -> None:
        self.frames_sent: int = 0
        self.bytes_sent: int = 0
        self.frames_dropped: int = 0
        self.reconnect_count: int = 0
        self.write_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_sent": self.frames_sent,
            "bytes_sent": self.bytes_sent,
            "frames_dropped": self.frames_dropped,
            "reconnect_count": self.reconnect_count,
            "write_errors": self.write_errors,
        }


class FrameSender:
    """
    Connection owner for the producer side of a frame stream.

    Attributes:
        endpoint: Receiver address
        encoder: Frame encoder (header variant, chunking, pose stamping)
        connected: Whether a connection is currently open
        metrics: Operational metrics

    Example:
        sender = FrameSender(
            endpoint="unix:/tmp/framepipe.sock",
            encoder=FrameEncoder(HeaderVariant.STAMPED, correlator=correlator),
        )

        # Keep a connection open (runs until stopped)
        task = asyncio.create_task(sender.run())

        # Render loop
        await sender.send_frame(pixels, 1296, 1296, time.monotonic())

        await sender.stop()
        await task
    """

    def __init__(
        self,
        endpoint: str,
        encoder: FrameEncoder,
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 0,
    ) -> None:
        """
        Initialize frame sender.

        Args:
            endpoint: unix:/path or tcp://host:port of the receiver
            encoder: Encoder producing wire messages
            reconnect_delay: Seconds between connection attempts
            max_reconnect_attempts: Max consecutive failed attempts (0 = unlimited)
        """
        self.endpoint = endpoint
        self.encoder = encoder
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts

        # State
        self._transport: Optional[ByteStreamTransport] = None
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()
        self._disconnected: asyncio.Event = asyncio.Event()
        self._write_lock: asyncio.Lock = asyncio.Lock()

        # Metrics
        self.metrics = FrameSenderMetrics()

    @property
    def connected(self) -> bool:
        """Whether a receiver connection is open."""
        return self._transport is not None and not self._transport.closed

    async def run(self) -> None:
        """
        Keep a connection to the receiver open.

        Runs indefinitely, reconnecting whenever the connection is lost.
        Call stop() to terminate gracefully.
        """
        self._running = True
        self._stop_event.clear()
        failures = 0
        opened = 0

        logger.info(f"FrameSender starting, connecting to {self.endpoint}")

        while self._running:
            try:
                self._transport = await open_transport(self.endpoint)
            except TransportError as e:
                if not self._running:
                    break

                failures += 1
                logger.warning(f"Connection error: {e}")

                if (
                    self.max_reconnect_attempts > 0
                    and failures >= self.max_reconnect_attempts
                ):
                    logger.error(
                        f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                    )
                    break

                logger.info(
                    f"Reconnecting in {self.reconnect_delay:.1f}s (attempt {failures})"
                )
                if await self._wait_for_stop(self.reconnect_delay):
                    break
                continue

            if opened:
                self.metrics.reconnect_count += 1
            opened += 1
            failures = 0
            self._disconnected.clear()

            # Park until a write fails or stop() is called
            stop_task = asyncio.ensure_future(self._stop_event.wait())
            lost_task = asyncio.ensure_future(self._disconnected.wait())
            try:
                await asyncio.wait(
                    {stop_task, lost_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                stop_task.cancel()
                lost_task.cancel()

            if self._stop_event.is_set():
                break

            logger.info(
                f"Connection to {self.endpoint} lost, reconnecting in "
                f"{self.reconnect_delay:.1f}s"
            )
            if await self._wait_for_stop(self.reconnect_delay):
                break

        await self._drop_connection()
        logger.info("FrameSender stopped")

    async def stop(self) -> None:
        """
        Stop sending gracefully.

        Signals the run loop to exit and closes the connection.
        """
        logger.info("FrameSender stopping...")
        self._running = False
        self._stop_event.set()
        await self._drop_connection()

    async def send_frame(
        self,
        pixels,
        width: int,
        height: int,
        frame_timestamp: float = 0.0,
    ) -> bool:
        """
        Encode and write one frame.

        Args:
            pixels: Bytes-like payload
            width: Frame width in pixels
            height: Frame height in pixels
            frame_timestamp: Render time of the frame

        Returns:
            True if the frame was written, False if it was dropped
            because no connection is open or the write failed.

        Raises:
            ValueError: If the payload does not match the header variant
        """
        message = self.encoder.encode_message(pixels, width, height, frame_timestamp)

        async with self._write_lock:
            transport = self._transport
            if transport is None or transport.closed:
                self.metrics.frames_dropped += 1
                logger.debug("No receiver connection, frame dropped")
                return False

            try:
                await transport.write(message)
            except TransportError as e:
                self.metrics.write_errors += 1
                self.metrics.frames_dropped += 1
                logger.error(f"Write failed, dropping connection: {e}")
                await self._drop_connection()
                self._disconnected.set()
                return False

        self.metrics.frames_sent += 1
        self.metrics.bytes_sent += len(message)
        return True

    async def _drop_connection(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is not None:
            await transport.close()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep for timeout; True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
