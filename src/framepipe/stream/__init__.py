"""
Stream Module
=============

Byte stream transport and frame reassembly components.

This module provides both ends of a frame connection:
    - Frame: Decoded frame with owned pixels and stamped pose
    - FrameBuffer: Bounded queue (drops oldest on overflow)
    - FrameReassembler: Per-connection extraction of frames from raw bytes
    - FrameEncoder: Frame to wire message
    - FrameSender: Producer connection owner with reconnection
    - FrameReceiver: Listener giving each connection its own reassembler
    - Dispatcher: Routes frames and pose messages

Example:
    from framepipe.stream import Dispatcher, FrameBuffer, FrameReceiver
    from framepipe.stream import HeaderPrefixedPolicy

    buffer = FrameBuffer(maxsize=4)
    dispatcher = Dispatcher(PoseCorrelator(), buffer=buffer)
    receiver = FrameReceiver(
        endpoint="unix:/tmp/framepipe.sock",
        policy=HeaderPrefixedPolicy(),
        capacity=32 * 1024 * 1024,
        dispatcher=dispatcher,
    )
    await receiver.start()

    while True:
        frame = await buffer.get()
        process(frame)
"""

from framepipe.stream.frame import Frame
from framepipe.stream.buffer import FrameBuffer
from framepipe.stream.transport import (
    ByteStreamTransport,
    Endpoint,
    StreamTransport,
    open_transport,
    parse_endpoint,
    serve,
)
from framepipe.stream.reassembler import (
    ConnectionBuffer,
    ConnectionOutcome,
    ConnectionState,
    FixedSizePolicy,
    FrameReassembler,
    HeaderPrefixedPolicy,
    SizingPolicy,
    build_policy,
)
from framepipe.stream.encoder import FrameEncoder
from framepipe.stream.dispatcher import Dispatcher
from framepipe.stream.sender import FrameSender, FrameSenderMetrics
from framepipe.stream.receiver import FrameReceiver, FrameReceiverMetrics


__all__ = [
    "Frame",
    "FrameBuffer",
    "ByteStreamTransport",
    "Endpoint",
    "StreamTransport",
    "open_transport",
    "parse_endpoint",
    "serve",
    "ConnectionBuffer",
    "ConnectionOutcome",
    "ConnectionState",
    "FixedSizePolicy",
    "FrameReassembler",
    "HeaderPrefixedPolicy",
    "SizingPolicy",
    "build_policy",
    "FrameEncoder",
    "Dispatcher",
    "FrameSender",
    "FrameSenderMetrics",
    "FrameReceiver",
    "FrameReceiverMetrics",
]
