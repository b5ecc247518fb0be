"""
Dispatcher
==========

Hands reassembled frames to the consumer and feeds pose messages into
the PoseCorrelator.

Frames go to a bounded FrameBuffer (drop-oldest) or a direct callback.
Either way on_frame never blocks, so a slow consumer cannot stall the
read loop.

Side-channel messages are a closed set:
    PoseSample      recognized pose (JSON or 64-byte binary transform)
    UnknownMessage  anything else, forwarded to the consumer
"""

import json
import logging
import math
from typing import Callable, Optional, Union

from pydantic import ValidationError

from framepipe.errors import ProtocolError
from framepipe.models.input import PoseMessage
from framepipe.models.pose import PoseSample, UnknownMessage
from framepipe.pose.correlator import PoseCorrelator
from framepipe.stream.buffer import FrameBuffer
from framepipe.stream.frame import Frame
from framepipe.stream.reassembler import ConnectionOutcome
from framepipe.wire.format import TRANSFORM_SIZE, decode_transform


logger = logging.getLogger(__name__)


SideChannelMessage = Union[PoseSample, UnknownMessage]


class Dispatcher:
    """
    Routes frames, pose messages and connection-end signals.

    Example:
        dispatcher = Dispatcher(correlator, buffer=FrameBuffer(maxsize=4))
        reassembler = FrameReassembler(policy, capacity, dispatcher.on_frame)
        dispatcher.on_pose_message('{"id": 1, "timestamp": 0.5, "transform": ...}')
    """

    def __init__(
        self,
        correlator: PoseCorrelator,
        buffer: Optional[FrameBuffer] = None,
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_unknown: Optional[Callable[[UnknownMessage], None]] = None,
        on_connection_end: Optional[Callable[[ConnectionOutcome], None]] = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            correlator: Pose cell fed by incoming pose messages
            buffer: Bounded frame queue (used when on_frame is not given)
            on_frame: Direct frame callback, must not block
            on_unknown: Receives unrecognized side-channel messages
            on_connection_end: Receives the outcome of every finished connection
        """
        if buffer is None and on_frame is None:
            raise ValueError("Dispatcher needs a buffer or an on_frame callback")

        self.correlator = correlator
        self.buffer = buffer
        self._frame_callback = on_frame
        self._unknown_callback = on_unknown
        self._end_callback = on_connection_end

        self.frames_dispatched = 0
        self.poses_received = 0
        self.unknown_messages = 0
        self.last_frame: Optional[Frame] = None

    def on_frame(self, frame: Frame) -> None:
        """Forward a frame to the callback or the drop-oldest buffer."""
        self.frames_dispatched += 1
        self.last_frame = frame
        if self._frame_callback is not None:
            self._frame_callback(frame)
        else:
            self.buffer.put_nowait(frame)

    def on_pose_message(self, raw: Union[str, bytes, bytearray]) -> SideChannelMessage:
        """
        Parse a side-channel message and feed recognized poses to the correlator.

        Args:
            raw: JSON text, JSON bytes, or a 64-byte binary transform

        Returns:
            The PoseSample or UnknownMessage the input was classified as
        """
        message = self.parse_message(raw)

        if isinstance(message, PoseSample):
            self.poses_received += 1
            self.correlator.observe(message)
        else:
            self.unknown_messages += 1
            logger.debug(f"Unrecognized side-channel message: {message.reason}")
            if self._unknown_callback is not None:
                self._unknown_callback(message)

        return message

    def on_connection_end(self, outcome: ConnectionOutcome) -> None:
        """Forward the connection-ended signal to the consumer."""
        if self._end_callback is not None:
            self._end_callback(outcome)

    def parse_message(self, raw: Union[str, bytes, bytearray]) -> SideChannelMessage:
        """Classify raw input without touching the correlator."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            if isinstance(raw, (bytes, bytearray)) and len(raw) == TRANSFORM_SIZE:
                return self._parse_transform(raw)
            return UnknownMessage(raw=raw, reason=f"not JSON: {e}")

        try:
            return PoseMessage.model_validate(data).to_sample()
        except ValidationError as e:
            return UnknownMessage(
                raw=raw,
                reason=f"not a pose: {e.error_count()} validation errors",
                data=data,
            )

    def _parse_transform(self, raw: bytes) -> SideChannelMessage:
        try:
            transform = decode_transform(raw)
        except ProtocolError as e:
            return UnknownMessage(raw=raw, reason=str(e))
        if not all(math.isfinite(value) for row in transform for value in row):
            return UnknownMessage(raw=raw, reason="non-finite transform values")
        return PoseSample(timestamp=None, id=None, transform=transform)

    def metrics(self) -> dict:
        """Dispatch counters plus buffer and correlator metrics."""
        result = {
            "frames_dispatched": self.frames_dispatched,
            "poses_received": self.poses_received,
            "unknown_messages": self.unknown_messages,
            "pose": self.correlator.metrics(),
        }
        if self.buffer is not None:
            result["buffer"] = self.buffer.metrics()
        return result
