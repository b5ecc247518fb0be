"""
framepipe
=========

Frame streaming transport: rendered RGBA frames over a local socket or
TCP connection, each stamped with the head pose that was current when it
was encoded.

Components:
    - wire: Header variants, chunk layout and the binary pose transform
    - stream: Byte transport, frame reassembly, encoding and dispatch
    - pose: Pose correlation and the WebSocket pose channel
    - models: Pose, message and response data models

Example:
    from framepipe.config import settings

    # The receiver service is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
