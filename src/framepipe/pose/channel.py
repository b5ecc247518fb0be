"""
Pose Channel
============

WebSocket client for the pose side channel.

This module provides the PoseChannel class which:
    - Connects to the pose feed (headset tracking worker)
    - Forwards every text or binary message to the Dispatcher
    - Handles reconnection with a fixed backoff
    - Exposes metrics for health monitoring

Design Rules:
    - Does NOT interpret messages; the Dispatcher classifies them
    - Unrecognized messages are counted, never fatal
    - Reconnects automatically on disconnect
"""

import asyncio
import logging
from typing import Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
)

from framepipe.models.pose import PoseSample
from framepipe.stream.dispatcher import Dispatcher


logger = logging.getLogger(__name__)


class PoseChannelMetrics:
    """Metrics for PoseChannel observability."""

    __slots__ = (
        "messages_received",
        "poses_received",
        "unknown_messages",
        "reconnect_count",
    )

    def __init__(self) -> None:
        self.messages_received: int = 0
        self.poses_received: int = 0
        self.unknown_messages: int = 0
        self.reconnect_count: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "messages_received": self.messages_received,
            "poses_received": self.poses_received,
            "unknown_messages": self.unknown_messages,
            "reconnect_count": self.reconnect_count,
        }


class PoseChannel:
    """
    WebSocket consumer for pose messages.

    Attributes:
        url: WebSocket URL of the pose feed
        dispatcher: Classifies messages and feeds the PoseCorrelator
        connected: Whether currently connected
        metrics: Operational metrics

    Example:
        channel = PoseChannel(
            url="ws://localhost:8000",
            dispatcher=dispatcher,
            reconnect_backoff_ms=1000,
        )

        task = asyncio.create_task(channel.run())
        ...
        await channel.stop()
        await task
    """

    def __init__(
        self,
        url: str,
        dispatcher: Dispatcher,
        reconnect_backoff_ms: int = 1000,
        max_reconnect_attempts: int = 0,
    ) -> None:
        """
        Initialize pose channel.

        Args:
            url: WebSocket URL of the pose feed
            dispatcher: Receives every message
            reconnect_backoff_ms: Backoff between reconnect attempts
            max_reconnect_attempts: Max attempts (0 = unlimited)
        """
        self.url = url
        self.dispatcher = dispatcher
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        # State
        self._websocket = None
        self._connected: bool = False
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()

        # Metrics
        self.metrics = PoseChannelMetrics()

    @property
    def connected(self) -> bool:
        """Whether currently connected to the pose feed."""
        return self._connected

    async def run(self) -> None:
        """
        Start receiving poses.

        Runs indefinitely, reconnecting on disconnect.
        Call stop() to terminate gracefully.
        """
        self._running = True
        self._stop_event.clear()

        logger.info(f"PoseChannel starting, connecting to {self.url}")

        while self._running:
            try:
                await self._connect_and_receive()
            except (OSError, ConnectionClosed, InvalidHandshake) as e:
                if not self._running:
                    break
                logger.error(f"Pose connection error: {e}")
            finally:
                self._connected = False

            if not self._running:
                break

            if (
                self.max_reconnect_attempts > 0
                and self.metrics.reconnect_count >= self.max_reconnect_attempts
            ):
                logger.error(
                    f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                )
                break

            self.metrics.reconnect_count += 1
            backoff_sec = self.reconnect_backoff_ms / 1000.0
            logger.info(
                f"Reconnecting in {backoff_sec:.1f}s "
                f"(attempt {self.metrics.reconnect_count})"
            )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                break
            except asyncio.TimeoutError:
                pass

        logger.info("PoseChannel stopped")

    async def stop(self) -> None:
        """
        Stop receiving gracefully.

        Signals the run loop to exit and closes the connection.
        """
        logger.info("PoseChannel stopping...")
        self._running = False
        self._stop_event.set()

        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, ConnectionClosed) as e:
                logger.debug(f"Ignored error while closing pose channel: {e}")

        self._connected = False

    def handle_message(self, message) -> None:
        """Forward one received message to the dispatcher."""
        self.metrics.messages_received += 1
        result = self.dispatcher.on_pose_message(message)
        if isinstance(result, PoseSample):
            self.metrics.poses_received += 1
        else:
            self.metrics.unknown_messages += 1

    async def _connect_and_receive(self) -> None:
        """Connect to the pose feed and forward messages until disconnect."""
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
        ) as ws:
            self._websocket = ws
            self._connected = True
            logger.info(f"Connected to pose feed: {self.url}")

            try:
                async for message in ws:
                    if not self._running:
                        break
                    self.handle_message(message)

            except ConnectionClosedOK:
                logger.info("Pose connection closed normally")
            except ConnectionClosedError as e:
                logger.warning(f"Pose connection closed with error: {e}")
                raise
            finally:
                self._connected = False
                self._websocket = None

    def last_pose(self) -> Optional[PoseSample]:
        """Freshest pose known to the correlator."""
        return self.dispatcher.correlator.current()
