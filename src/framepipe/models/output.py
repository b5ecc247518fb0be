"""
Service Output Models
=====================

Response payloads of the receiver service.

Output Contract (GET /frame/latest):
    {
        "sequence": 41,
        "width": 1296,
        "height": 1296,
        "payload_bytes": 6718464,
        "frame_timestamp": 1812.25,
        "pose_timestamp": 1812.24,
        "pose_id": 905
    }

Output Contract (GET /pose):
    {
        "id": 905,
        "timestamp": 1812.24,
        "transform": [[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 1, 0]]
    }

Design Rules:
    - Metadata only; pixels are never serialized
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from framepipe.models.pose import PoseSample
from framepipe.stream.frame import Frame


class FrameInfo(BaseModel):
    """Metadata of a received frame."""

    sequence: int = Field(..., ge=0, description="Per-connection frame counter")
    width: int = Field(..., ge=0, description="Frame width in pixels")
    height: int = Field(..., ge=0, description="Frame height in pixels")
    payload_bytes: int = Field(..., ge=0, description="Size of the pixel payload")
    frame_timestamp: Optional[float] = Field(
        default=None,
        description="Render time, when the header variant carries it",
    )
    pose_timestamp: Optional[float] = Field(
        default=None,
        description="Timestamp of the pose active when the frame was encoded",
    )
    pose_id: Optional[int] = Field(
        default=None,
        description="Id of the pose active when the frame was encoded",
    )

    @classmethod
    def from_frame(cls, frame: Frame) -> "FrameInfo":
        return cls(
            sequence=frame.sequence,
            width=frame.width,
            height=frame.height,
            payload_bytes=len(frame.pixels),
            frame_timestamp=frame.frame_timestamp,
            pose_timestamp=frame.pose_timestamp,
            pose_id=frame.pose_id,
        )


class PoseInfo(BaseModel):
    """Current pose held by the correlator."""

    id: Optional[int] = Field(default=None, description="Pose counter, if any")
    timestamp: Optional[float] = Field(
        default=None, description="Source-clock timestamp, if any"
    )
    transform: List[List[float]] = Field(..., description="3x4 row-major matrix")

    @classmethod
    def from_sample(cls, sample: PoseSample) -> "PoseInfo":
        return cls(
            id=sample.id,
            timestamp=sample.timestamp,
            transform=[list(row) for row in sample.transform],
        )
