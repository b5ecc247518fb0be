"""
Byte Stream Transport
=====================

Ordered, reliable byte connection with no message boundaries.

A single read returns *some* available bytes: less than one message,
more than one message, or a message split anywhere. Callers must never
assume one read equals one message.

Endpoints:
    unix:/tmp/framepipe.sock   local socket (the "pipe")
    tcp://127.0.0.1:9400       network socket
    127.0.0.1:9400             shorthand for tcp

Design Rules:
    - No protocol knowledge
    - b"" from read() means end of stream
    - Every library failure surfaces as TransportError
    - close() is idempotent; close races are benign
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from framepipe.errors import TransportError


logger = logging.getLogger(__name__)


DEFAULT_READ_SIZE = 256 * 1024


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Parsed connection endpoint."""

    kind: str  # "unix" or "tcp"
    path: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None

    def __str__(self) -> str:
        if self.kind == "unix":
            return f"unix:{self.path}"
        return f"tcp://{self.host}:{self.port}"


def parse_endpoint(endpoint: str) -> Endpoint:
    """
    Parse an endpoint string.

    Raises:
        ValueError: If the endpoint is not understood
    """
    if endpoint.startswith("unix:"):
        path = endpoint[len("unix:"):]
        if path.startswith("//"):
            path = path[2:]
        if not path:
            raise ValueError(f"Missing socket path in endpoint: {endpoint!r}")
        return Endpoint(kind="unix", path=path)

    address = endpoint[len("tcp://"):] if endpoint.startswith("tcp://") else endpoint
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid endpoint: {endpoint!r}")
    return Endpoint(kind="tcp", host=host.strip("[]"), port=int(port))


class ByteStreamTransport(ABC):
    """Abstract ordered reliable byte connection."""

    @abstractmethod
    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        """
        Read some available bytes.

        Args:
            max_bytes: Upper bound on the bytes returned

        Returns:
            Between 1 and max_bytes bytes, or b"" at end of stream

        Raises:
            TransportError: On connection failure
        """

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write all of data, in order.

        Raises:
            TransportError: On connection failure
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether close() has been called or the peer went away."""


class StreamTransport(ByteStreamTransport):
    """
    ByteStreamTransport over an asyncio StreamReader/StreamWriter pair.

    Works identically for Unix domain sockets and TCP.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str = "stream",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False
        self.name = name

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        if self._closed:
            return b""
        try:
            return await self._reader.read(max_bytes)
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Read failed on {self.name}: {e}") from e

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportError(f"Write on closed transport {self.name}")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Write failed on {self.name}: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            # Peer already gone; closing a closing connection is a no-op
            logger.debug(f"Ignored error while closing {self.name}: {e}")


async def open_transport(endpoint: str, limit: int = DEFAULT_READ_SIZE) -> StreamTransport:
    """
    Connect to an endpoint.

    Raises:
        TransportError: If the connection cannot be established
    """
    parsed = parse_endpoint(endpoint)
    try:
        if parsed.kind == "unix":
            reader, writer = await asyncio.open_unix_connection(parsed.path, limit=limit)
        else:
            reader, writer = await asyncio.open_connection(
                parsed.host, parsed.port, limit=limit
            )
    except (ConnectionError, OSError) as e:
        raise TransportError(f"Connect to {parsed} failed: {e}") from e

    logger.info(f"Connected to {parsed}")
    return StreamTransport(reader, writer, name=str(parsed))


ConnectionHandler = Callable[[StreamTransport], Awaitable[None]]


async def serve(
    endpoint: str,
    handler: ConnectionHandler,
    limit: int = DEFAULT_READ_SIZE,
) -> asyncio.AbstractServer:
    """
    Listen on an endpoint and run handler for every accepted connection.

    Each connection gets its own StreamTransport and its own task.

    Raises:
        TransportError: If the endpoint cannot be bound
    """
    parsed = parse_endpoint(endpoint)
    counter = 0

    async def _on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        nonlocal counter
        counter += 1
        transport = StreamTransport(reader, writer, name=f"{parsed}#{counter}")
        await handler(transport)

    try:
        if parsed.kind == "unix":
            server = await asyncio.start_unix_server(_on_connect, parsed.path, limit=limit)
        else:
            server = await asyncio.start_server(
                _on_connect, parsed.host, parsed.port, limit=limit
            )
    except (ConnectionError, OSError) as e:
        raise TransportError(f"Listen on {parsed} failed: {e}") from e

    logger.info(f"Listening on {parsed}")
    return server
