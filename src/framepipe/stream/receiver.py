"""
Frame Receiver
==============

Consumer-side listener for frame connections.

This module provides the FrameReceiver class which:
    - Listens on a local socket or TCP endpoint
    - Gives every accepted connection its own FrameReassembler and buffer
    - Forwards frames and connection-end signals to the Dispatcher
    - Keeps listening after any single connection fails
    - Exposes metrics for health monitoring

Design Rules:
    - No state shared between connections except the Dispatcher
    - Never retries a failed connection; the sender reconnects
    - Protocol and consumer faults close only the offending connection
"""

import asyncio
import logging
from typing import Dict, Optional

from framepipe.errors import (
    AllocationError,
    ConsumerError,
    ProtocolError,
    TransportError,
)
from framepipe.stream.dispatcher import Dispatcher
from framepipe.stream.reassembler import (
    ConnectionOutcome,
    ConnectionState,
    FrameReassembler,
    SizingPolicy,
)
from framepipe.stream.transport import StreamTransport, serve


logger = logging.getLogger(__name__)


class FrameReceiverMetrics:
    """Metrics for FrameReceiver observability."""

    __slots__ = (
        "connections_accepted",
        "frames_received",
        "clean_ends",
        "abrupt_ends",
        "protocol_errors",
        "transport_errors",
        "consumer_errors",
    )

    def __init__(self) -> None:
        self.connections_accepted: int = 0
        self.frames_received: int = 0
        self.clean_ends: int = 0
        self.abrupt_ends: int = 0
        self.protocol_errors: int = 0
        self.transport_errors: int = 0
        self.consumer_errors: int = 0

    def record(self, outcome: ConnectionOutcome) -> None:
        """Fold a finished connection into the counters."""
        self.frames_received += outcome.frames_received
        if outcome.clean:
            self.clean_ends += 1
        else:
            self.abrupt_ends += 1
        if isinstance(outcome.error, ProtocolError):
            self.protocol_errors += 1
        elif isinstance(outcome.error, TransportError):
            self.transport_errors += 1
        elif isinstance(outcome.error, ConsumerError):
            self.consumer_errors += 1

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "connections_accepted": self.connections_accepted,
            "frames_received": self.frames_received,
            "clean_ends": self.clean_ends,
            "abrupt_ends": self.abrupt_ends,
            "protocol_errors": self.protocol_errors,
            "transport_errors": self.transport_errors,
            "consumer_errors": self.consumer_errors,
        }


class FrameReceiver:
    """
    Listener that reassembles frames from every incoming connection.

    Attributes:
        endpoint: Address to listen on
        dispatcher: Destination of frames and connection-end signals
        metrics: Operational metrics

    Example:
        receiver = FrameReceiver(
            endpoint="unix:/tmp/framepipe.sock",
            policy=HeaderPrefixedPolicy(HeaderVariant.STAMPED),
            capacity=32 * 1024 * 1024,
            dispatcher=dispatcher,
        )
        await receiver.start()
        ...
        await receiver.stop()
    """

    def __init__(
        self,
        endpoint: str,
        policy: SizingPolicy,
        capacity: int,
        dispatcher: Dispatcher,
        idle_timeout: Optional[float] = None,
        log_interval: int = 100,
    ) -> None:
        """
        Initialize frame receiver.

        Args:
            endpoint: unix:/path or tcp://host:port to listen on
            policy: Sizing policy shared by every connection
            capacity: Per-connection buffer capacity in bytes
            dispatcher: Receives frames and connection outcomes
            idle_timeout: Seconds without data before a connection is closed
            log_interval: Progress log interval in frames
        """
        max_size = policy.max_message_size
        if max_size is not None and capacity < max_size:
            raise AllocationError(
                f"Buffer capacity {capacity} is smaller than the "
                f"{max_size} byte message size"
            )

        self.endpoint = endpoint
        self.policy = policy
        self.capacity = capacity
        self.dispatcher = dispatcher
        self.idle_timeout = idle_timeout
        self.log_interval = log_interval

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[str, FrameReassembler] = {}
        self._transports: Dict[str, StreamTransport] = {}

        self.metrics = FrameReceiverMetrics()

    @property
    def listening(self) -> bool:
        """Whether the listener is accepting connections."""
        return self._server is not None and self._server.is_serving()

    @property
    def active_connections(self) -> int:
        """Connections currently being read."""
        return sum(
            1 for r in self._connections.values() if r.state is ConnectionState.OPEN
        )

    async def start(self) -> None:
        """Bind the endpoint and start accepting connections."""
        if self._server is not None:
            raise RuntimeError("FrameReceiver already started")
        self._server = await serve(self.endpoint, self._handle_connection)

    async def stop(self) -> None:
        """
        Stop accepting connections and close the open ones.

        Closing a transport ends its read loop with end of stream.
        """
        logger.info("FrameReceiver stopping...")
        if self._server is not None:
            self._server.close()

        for transport in list(self._transports.values()):
            await transport.close()

        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

        logger.info("FrameReceiver stopped")

    async def _handle_connection(self, transport: StreamTransport) -> None:
        """Own one connection from accept to close."""
        self.metrics.connections_accepted += 1
        name = transport.name

        try:
            reassembler = FrameReassembler(
                self.policy,
                self.capacity,
                self.dispatcher.on_frame,
                name=name,
                log_interval=self.log_interval,
            )
        except AllocationError as e:
            logger.error(f"[{name}] Rejecting connection: {e}")
            await transport.close()
            return

        self._connections[name] = reassembler
        self._transports[name] = transport

        try:
            outcome = await reassembler.run(transport, idle_timeout=self.idle_timeout)
        finally:
            self._connections.pop(name, None)
            self._transports.pop(name, None)

        self.metrics.record(outcome)
        self.dispatcher.on_connection_end(outcome)
