"""
Pose Data Model
===============

In-process representation of head-pose samples and of side-channel
messages that could not be recognized.

Design Rules:
    - PoseSample is immutable so it can be swapped atomically as a whole
    - The transform is stored as plain floats; numpy is produced on demand
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np


Row = Tuple[float, float, float, float]

IDENTITY_TRANSFORM: Tuple[Row, Row, Row] = (
    (1.0, 0.0, 0.0, 0.0),
    (0.0, 1.0, 0.0, 0.0),
    (0.0, 0.0, 1.0, 0.0),
)


@dataclass(frozen=True, slots=True)
class PoseSample:
    """
    Timestamped spatial transform of the tracked device.

    Attributes:
        timestamp: Monotonic timestamp on the source clock, None when the
            source sends none
        id: Monotonic sample counter, None when the source sends none
        transform: 3x4 row-major rotation+translation matrix
    """

    timestamp: Optional[float] = None
    id: Optional[int] = None
    transform: Tuple[Row, Row, Row] = IDENTITY_TRANSFORM

    def is_newer_than(self, other: "PoseSample") -> bool:
        """
        Whether this sample should replace other as the current pose.

        Ids are compared when both samples carry one, otherwise timestamps
        when both carry one. Ties are never newer. A pair with nothing in
        common to compare is always newer.
        """
        if self.id is not None and other.id is not None:
            return self.id > other.id
        if self.timestamp is not None and other.timestamp is not None:
            return self.timestamp > other.timestamp
        return True

    def matrix(self) -> np.ndarray:
        """Transform as a (3, 4) float64 array."""
        return np.array(self.transform, dtype=np.float64)

    def __repr__(self) -> str:
        if self.timestamp is None:
            return f"PoseSample(id={self.id}, timestamp=None)"
        return f"PoseSample(id={self.id}, timestamp={self.timestamp:.3f})"


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    """
    Side-channel message whose shape was not recognized.

    Forwarded to the consumer as-is rather than dropped.

    Attributes:
        raw: Original message as received
        reason: Why it was not recognized
        data: Parsed JSON value, when the message was valid JSON
    """

    raw: Any
    reason: str
    data: Any = None
