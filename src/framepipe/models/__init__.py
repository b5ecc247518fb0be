"""
Data Models
===========

Pose-related models for framepipe.

Models:
    - PoseSample: Immutable pose sample held by the correlator
    - UnknownMessage: Unrecognized side-channel message
    - PoseMessage: Pydantic schema for JSON pose messages
    - FrameInfo, PoseInfo: Service response payloads
"""

from framepipe.models.pose import IDENTITY_TRANSFORM, PoseSample, UnknownMessage
from framepipe.models.input import PoseMessage
from framepipe.models.output import FrameInfo, PoseInfo

__all__ = [
    "IDENTITY_TRANSFORM",
    "PoseSample",
    "UnknownMessage",
    "PoseMessage",
    "FrameInfo",
    "PoseInfo",
]
