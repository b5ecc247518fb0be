"""
Test Configuration
==================

Pytest fixtures and test configuration for framepipe.
"""

import asyncio
from typing import Iterable, List, Optional

import pytest

from framepipe.errors import TransportError
from framepipe.models.pose import PoseSample
from framepipe.stream.transport import DEFAULT_READ_SIZE, ByteStreamTransport


class ScriptedTransport(ByteStreamTransport):
    """
    In-memory transport that replays predetermined reads.

    Each scripted read is returned as-is unless it exceeds max_bytes, in
    which case the remainder is served by the next read. After the script
    runs out the transport reports end of stream, raises `error`, or
    blocks forever when `hang` is set.
    """

    def __init__(
        self,
        reads: Iterable[bytes],
        error: Optional[Exception] = None,
        hang: bool = False,
    ) -> None:
        self._reads: List[bytes] = [bytes(r) for r in reads]
        self._error = error
        self._hang = hang
        self._closed = False
        self.read_sizes: List[int] = []
        self.written: List[bytes] = []
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        if self._closed:
            return b""
        if self._reads:
            data = self._reads.pop(0)
            if len(data) > max_bytes:
                self._reads.insert(0, data[max_bytes:])
                data = data[:max_bytes]
            self.read_sizes.append(len(data))
            return data
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()
        return b""

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportError("write on closed scripted transport")
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


def split_at(data: bytes, sizes: Iterable[int]) -> List[bytes]:
    """Cut data into consecutive pieces of the given sizes."""
    pieces = []
    position = 0
    for size in sizes:
        pieces.append(data[position:position + size])
        position += size
    assert position == len(data)
    return pieces


def rgba_pixels(width: int, height: int, seed: int = 0) -> bytes:
    """Deterministic RGBA payload."""
    return bytes((i * 7 + seed) % 256 for i in range(width * height * 4))


@pytest.fixture
def scripted_transport():
    """Factory for ScriptedTransport instances."""
    return ScriptedTransport


@pytest.fixture
def sample_pose():
    """Provide a sample PoseSample for testing."""
    return PoseSample(
        timestamp=100.0,
        id=5,
        transform=(
            (1.0, 0.0, 0.0, 0.25),
            (0.0, 1.0, 0.0, 0.5),
            (0.0, 0.0, 1.0, 0.75),
        ),
    )


@pytest.fixture
def sample_pose_message():
    """Provide a sample pose message for testing."""
    return {
        "timestamp": 12.5,
        "id": 42,
        "transform": [
            [1.0, 0.0, 0.0, 0.1],
            [0.0, 1.0, 0.0, 0.2],
            [0.0, 0.0, 1.0, 0.3],
        ],
    }

