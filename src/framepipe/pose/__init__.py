"""
Pose Module
===========

Pose side channel components.

    - PoseCorrelator: Single-cell holder of the freshest pose
    - PoseChannel: WebSocket client feeding pose messages to the Dispatcher

Note:
    PoseChannel is imported from framepipe.pose.channel directly; it depends
    on the stream layer, which itself depends on PoseCorrelator.
"""

from framepipe.pose.correlator import PoseCorrelator


__all__ = [
    "PoseCorrelator",
]
