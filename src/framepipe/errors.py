"""
Errors
======

Exception hierarchy shared by every layer of the frame pipe.

Taxonomy:
    - TransportError: connect/read/write failure or idle timeout.
      Recoverable only by opening a new connection.
    - ProtocolError: malformed header, length mismatch, capacity exceeded.
      Fatal for the current connection only.
    - AllocationError: connection buffer cannot be sized as configured.
      Fatal at startup.
    - ConsumerError: the frame consumer raised while handling a frame.
      Fatal for the current connection only.
"""

from enum import Enum
from typing import Optional


class FramePipeError(Exception):
    """Base exception for all frame pipe errors."""

    pass


class TransportError(FramePipeError):
    """Raised when the underlying byte stream fails or times out."""

    pass


class ProtocolErrorKind(str, Enum):
    """Reason a byte stream was rejected."""

    MALFORMED = "MALFORMED"
    LENGTH_MISMATCH = "LENGTH_MISMATCH"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"


class ProtocolError(FramePipeError):
    """
    Raised when bytes on the wire violate the frame protocol.

    Attributes:
        kind: Category of the violation
        declared: Length declared by the sender, if relevant
        actual: Length actually observed or available, if relevant
    """

    def __init__(
        self,
        message: str,
        kind: ProtocolErrorKind = ProtocolErrorKind.MALFORMED,
        declared: Optional[int] = None,
        actual: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.declared = declared
        self.actual = actual

        full_message = f"[{kind.value}] {message}"
        if declared is not None or actual is not None:
            full_message = f"{full_message} (declared={declared}, actual={actual})"

        super().__init__(full_message)


class AllocationError(FramePipeError):
    """Raised when a connection buffer cannot be allocated as configured."""

    pass


class ConsumerError(FramePipeError):
    """Raised when the frame callback fails; the callback's exception is the cause."""

    pass
