"""
Pose Message Schema
===================

Pydantic model for pose messages received on the side channel.

Accepted shapes:
    {
        "timestamp": 1234.5,
        "id": 42,
        "transform": [[r00, r01, r02, tx], [r10, r11, r12, ty], [r20, r21, r22, tz]]
    }

    {
        "timestamp": 1234.5,
        "id": 42,
        "mDeviceToAbsoluteTracking": {"m": [[...], [...], [...]]}
    }

The second form is what the headset tracking feed emits, usually with
neither timestamp nor id. A fourth homogeneous row is tolerated and
discarded.

Example:
    from framepipe.models.input import PoseMessage

    message = PoseMessage.model_validate_json(raw)
    sample = message.to_sample()
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from framepipe.models.pose import PoseSample


class PoseMessage(BaseModel):
    """
    Schema for pose messages on the side channel.

    Attributes:
        timestamp: Source-clock timestamp, if the source provides one
        id: Monotonic sample counter, if the source provides one
        transform: 3x4 row-major matrix
    """

    timestamp: Optional[float] = Field(
        default=None,
        ge=0,
        description="Source-clock timestamp of the sample",
    )

    id: Optional[int] = Field(
        default=None,
        ge=0,
        description="Monotonic pose counter",
    )

    transform: List[List[float]] = Field(
        ...,
        description="3x4 row-major rotation+translation matrix",
    )

    @model_validator(mode="before")
    @classmethod
    def _unwrap_tracking(cls, data):
        if isinstance(data, dict) and "transform" not in data:
            tracking = data.get("mDeviceToAbsoluteTracking")
            if isinstance(tracking, dict) and "m" in tracking:
                data = {**data, "transform": tracking["m"]}
        return data

    @field_validator("transform")
    @classmethod
    def _check_shape(cls, rows: List[List[float]]) -> List[List[float]]:
        if len(rows) == 4:
            rows = rows[:3]
        if len(rows) != 3 or any(len(row) != 4 for row in rows):
            raise ValueError("transform must be a 3x4 matrix")
        return rows

    def to_sample(self) -> PoseSample:
        """Convert to the immutable in-process PoseSample."""
        return PoseSample(
            timestamp=self.timestamp,
            id=self.id,
            transform=tuple(tuple(row) for row in self.transform),
        )
