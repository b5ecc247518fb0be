"""
Sender / Receiver Integration Tests
===================================

End-to-end tests: FrameSender -> local socket -> FrameReceiver -> Dispatcher.
"""

import asyncio
import struct

import pytest

from framepipe.errors import AllocationError
from framepipe.models.pose import PoseSample
from framepipe.pose.correlator import PoseCorrelator
from framepipe.stream.dispatcher import Dispatcher
from framepipe.stream.encoder import FrameEncoder
from framepipe.stream.reassembler import FixedSizePolicy, HeaderPrefixedPolicy
from framepipe.stream.receiver import FrameReceiver
from framepipe.stream.sender import FrameSender
from framepipe.stream.transport import open_transport
from framepipe.wire.format import HeaderVariant

from conftest import rgba_pixels


async def wait_until(predicate, timeout=5.0):
    """Poll predicate until it is true or the timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def endpoint(tmp_path):
    return f"unix:{tmp_path / 'fp.sock'}"


class TestFrameReceiver:
    """Tests for the listening side."""

    def test_capacity_checked_at_construction(self, endpoint):
        dispatcher = Dispatcher(PoseCorrelator(), on_frame=lambda f: None)
        with pytest.raises(AllocationError):
            FrameReceiver(endpoint, FixedSizePolicy(64), capacity=32, dispatcher=dispatcher)

    def test_protocol_error_closes_only_that_connection(self, endpoint):
        """A malformed connection is dropped; the listener keeps accepting."""
        frames = []
        outcomes = []
        dispatcher = Dispatcher(
            PoseCorrelator(), on_frame=frames.append, on_connection_end=outcomes.append
        )
        receiver = FrameReceiver(
            endpoint, HeaderPrefixedPolicy(HeaderVariant.BASIC), 4096, dispatcher
        )
        good = FrameEncoder(HeaderVariant.BASIC).encode_message(rgba_pixels(2, 2), 2, 2)

        async def scenario():
            await receiver.start()

            bad = await open_transport(endpoint)
            await bad.write(struct.pack("<IIII", 0, 0, 0, 0))
            await wait_until(lambda: len(outcomes) == 1)
            await bad.close()

            assert receiver.listening

            client = await open_transport(endpoint)
            await client.write(good)
            await client.close()
            await wait_until(lambda: len(outcomes) == 2)

            await receiver.stop()

        asyncio.run(scenario())

        assert len(frames) == 1
        assert not outcomes[0].clean
        assert outcomes[0].reason == "ProtocolError"
        assert outcomes[1].clean
        assert receiver.metrics.connections_accepted == 2
        assert receiver.metrics.protocol_errors == 1
        assert receiver.metrics.clean_ends == 1
        assert receiver.metrics.abrupt_ends == 1
        assert not receiver.listening

    def test_consumer_error_is_recorded(self, endpoint):
        """A raising frame callback still produces the connection-ended signal."""
        outcomes = []
        calls = []

        def on_frame(frame):
            calls.append(frame)
            raise ValueError("consumer broke")

        dispatcher = Dispatcher(
            PoseCorrelator(), on_frame=on_frame, on_connection_end=outcomes.append
        )
        receiver = FrameReceiver(
            endpoint, HeaderPrefixedPolicy(HeaderVariant.LEGACY), 1024, dispatcher
        )
        message = struct.pack("<II", 2, 2) + b"\x07" * 16

        async def scenario():
            await receiver.start()

            client = await open_transport(endpoint)
            await client.write(message + message)
            await wait_until(lambda: len(outcomes) == 1)
            await client.close()
            await wait_until(lambda: receiver.active_connections == 0)

            assert receiver.listening
            await receiver.stop()

        asyncio.run(scenario())

        assert len(calls) == 1
        assert outcomes[0].reason == "ConsumerError"
        assert not outcomes[0].clean
        assert receiver.metrics.consumer_errors == 1
        assert receiver.metrics.abrupt_ends == 1
        assert receiver.metrics.to_dict()["consumer_errors"] == 1

    def test_connections_are_independent(self, endpoint):
        """Interleaved connections each reassemble their own frames."""
        frames = []
        dispatcher = Dispatcher(PoseCorrelator(), on_frame=frames.append)
        receiver = FrameReceiver(
            endpoint, HeaderPrefixedPolicy(HeaderVariant.LEGACY), 1024, dispatcher
        )
        first = struct.pack("<II", 2, 2) + b"\x01" * 16
        second = struct.pack("<II", 2, 2) + b"\x02" * 16

        async def scenario():
            await receiver.start()
            a = await open_transport(endpoint)
            b = await open_transport(endpoint)

            await a.write(first[:10])
            await b.write(second[:5])
            await a.write(first[10:])
            await b.write(second[5:])
            await wait_until(lambda: len(frames) == 2)

            await a.close()
            await b.close()
            await wait_until(lambda: receiver.active_connections == 0)
            await receiver.stop()

        asyncio.run(scenario())

        assert sorted(f.pixels for f in frames) == [b"\x01" * 16, b"\x02" * 16]


    def test_receivers_share_no_connection_state(self, tmp_path):
        """Two receivers in one process keep separate connections and counters."""
        frames_a, frames_b = [], []
        receiver_a = FrameReceiver(
            f"unix:{tmp_path / 'a.sock'}",
            HeaderPrefixedPolicy(HeaderVariant.LEGACY),
            1024,
            Dispatcher(PoseCorrelator(), on_frame=frames_a.append),
        )
        receiver_b = FrameReceiver(
            f"unix:{tmp_path / 'b.sock'}",
            HeaderPrefixedPolicy(HeaderVariant.LEGACY),
            1024,
            Dispatcher(PoseCorrelator(), on_frame=frames_b.append),
        )
        message = struct.pack("<II", 1, 1) + b"\x05" * 4

        async def scenario():
            await receiver_a.start()
            await receiver_b.start()

            client = await open_transport(receiver_a.endpoint)
            await client.write(message[:6])
            await wait_until(lambda: receiver_a.active_connections == 1)
            assert receiver_b.active_connections == 0

            await client.write(message[6:])
            await client.close()
            await wait_until(lambda: receiver_a.active_connections == 0)

            await receiver_a.stop()
            await receiver_b.stop()

        asyncio.run(scenario())

        assert [f.pixels for f in frames_a] == [b"\x05" * 4]
        assert frames_b == []
        assert receiver_a.metrics.connections_accepted == 1
        assert receiver_b.metrics.connections_accepted == 0


class TestFrameSender:
    """Tests for the producing side."""

    def test_drops_frames_while_disconnected(self):
        sender = FrameSender("unix:/nonexistent/fp.sock", FrameEncoder(HeaderVariant.LEGACY))

        sent = asyncio.run(sender.send_frame(rgba_pixels(1, 1), 1, 1))

        assert not sent
        assert sender.metrics.frames_dropped == 1
        assert not sender.connected

    def test_gives_up_after_max_attempts(self, tmp_path):
        sender = FrameSender(
            f"unix:{tmp_path / 'missing.sock'}",
            FrameEncoder(HeaderVariant.LEGACY),
            reconnect_delay=0.01,
            max_reconnect_attempts=3,
        )

        asyncio.run(asyncio.wait_for(sender.run(), timeout=5.0))

        assert not sender.connected
        assert sender.metrics.reconnect_count == 0

    def test_end_to_end_with_pose(self, endpoint):
        """Frames arrive intact and stamped with the sender's current pose."""
        received = []
        outcomes = []
        dispatcher = Dispatcher(
            PoseCorrelator(), on_frame=received.append, on_connection_end=outcomes.append
        )
        receiver = FrameReceiver(
            endpoint, HeaderPrefixedPolicy(HeaderVariant.STAMPED), 64 * 1024, dispatcher
        )

        correlator = PoseCorrelator()
        sender = FrameSender(
            endpoint,
            FrameEncoder(HeaderVariant.STAMPED, correlator=correlator),
            reconnect_delay=0.01,
        )
        frames = [rgba_pixels(16, 16, seed=i) for i in range(3)]

        async def scenario():
            await receiver.start()
            task = asyncio.create_task(sender.run())
            await wait_until(lambda: sender.connected)

            for i, pixels in enumerate(frames):
                correlator.observe(PoseSample(timestamp=10.0 + i, id=i + 1))
                assert await sender.send_frame(pixels, 16, 16, frame_timestamp=20.0 + i)

            await sender.stop()
            await asyncio.wait_for(task, timeout=5.0)
            await wait_until(lambda: len(outcomes) == 1)
            await receiver.stop()

        asyncio.run(scenario())

        assert [f.pixels for f in received] == frames
        assert [f.pose_id for f in received] == [1, 2, 3]
        assert [f.pose_timestamp for f in received] == [10.0, 11.0, 12.0]
        assert [f.frame_timestamp for f in received] == [20.0, 21.0, 22.0]
        assert outcomes[0].clean
        assert sender.metrics.frames_sent == 3
        assert sender.metrics.bytes_sent == 3 * (32 + 1024)
        assert receiver.metrics.frames_received == 3

    def test_reconnects_after_receiver_restart(self, endpoint):
        """A write failure drops the connection; the sender connects again."""
        received = []
        dispatcher = Dispatcher(PoseCorrelator(), on_frame=received.append)
        policy = HeaderPrefixedPolicy(HeaderVariant.LEGACY)
        sender = FrameSender(endpoint, FrameEncoder(HeaderVariant.LEGACY), reconnect_delay=0.05)
        pixels = rgba_pixels(4, 4)

        async def scenario():
            receiver = FrameReceiver(endpoint, policy, 1024, dispatcher)
            await receiver.start()
            task = asyncio.create_task(sender.run())
            await wait_until(lambda: sender.connected)
            assert await sender.send_frame(pixels, 4, 4)
            await wait_until(lambda: len(received) == 1)

            await receiver.stop()

            # Writes fail once the peer is gone
            async def write_fails():
                for _ in range(100):
                    if not await sender.send_frame(pixels, 4, 4):
                        return True
                    await asyncio.sleep(0.01)
                return False

            assert await write_fails()

            receiver = FrameReceiver(endpoint, policy, 1024, dispatcher)
            await receiver.start()
            await wait_until(lambda: sender.connected)
            assert await sender.send_frame(pixels, 4, 4)
            await wait_until(lambda: len(received) == 2)

            await sender.stop()
            await asyncio.wait_for(task, timeout=5.0)
            await receiver.stop()

        asyncio.run(scenario())

        assert sender.metrics.reconnect_count >= 1
        assert sender.metrics.write_errors >= 1
