"""
framepipe Receiver Service
==========================

FastAPI entry point for the consumer side of the frame pipe.

Startup wires:
    FrameReceiver -> FrameReassembler (per connection) -> Dispatcher -> FrameBuffer
    PoseChannel (optional) and WS /ws/pose -> Dispatcher -> PoseCorrelator

Endpoints:
    GET  /              - Service information
    GET  /health        - Liveness probe (is process alive?)
    GET  /ready         - Readiness probe (is the frame endpoint listening?)
    GET  /metrics       - Receiver, dispatch, buffer and pose metrics
    GET  /frame/latest  - Metadata of the most recent frame
    GET  /pose          - Current pose held by the correlator
    WS   /ws/pose       - Pose ingress (JSON text or 64-byte binary transform)
"""

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from framepipe import __version__
from framepipe.config import settings, setup_logging
from framepipe.models.output import FrameInfo, PoseInfo
from framepipe.pose.channel import PoseChannel
from framepipe.pose.correlator import PoseCorrelator
from framepipe.stream import (
    Dispatcher,
    Frame,
    FrameBuffer,
    FrameReceiver,
    build_policy,
)
from framepipe.stream.reassembler import ConnectionOutcome


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Service wiring only. Connection buffers and read state live in the
# FrameReassembler each accepted connection owns.

# Shutdown flag
_shutdown_flag: bool = False

_frame_buffer: Optional[FrameBuffer] = None
_correlator: Optional[PoseCorrelator] = None
_dispatcher: Optional[Dispatcher] = None
_receiver: Optional[FrameReceiver] = None
_pose_channel: Optional[PoseChannel] = None

_pose_task: Optional[asyncio.Task] = None
_consume_task: Optional[asyncio.Task] = None

_latest_frame: Optional[Frame] = None
_frames_consumed: int = 0
_last_outcome: Optional[ConnectionOutcome] = None
_startup_time: float = 0.0


# =============================================================================
# Getters
# =============================================================================

def get_frame_buffer() -> Optional[FrameBuffer]:
    return _frame_buffer

def get_dispatcher() -> Optional[Dispatcher]:
    return _dispatcher

def get_receiver() -> Optional[FrameReceiver]:
    return _receiver

def get_latest_frame() -> Optional[Frame]:
    return _latest_frame


# =============================================================================
# Signal Handlers
# =============================================================================

def _handle_sigterm(signum, frame):
    """Handle SIGTERM for graceful shutdown."""
    global _shutdown_flag
    logger.info("Received SIGTERM, initiating graceful shutdown...")
    _shutdown_flag = True


# =============================================================================
# Consumer Loop
# =============================================================================

def _on_connection_end(outcome: ConnectionOutcome) -> None:
    global _last_outcome
    _last_outcome = outcome


async def consume_frames() -> None:
    """Drain the frame buffer, keeping the most recent frame for inspection."""
    global _latest_frame, _frames_consumed

    if _frame_buffer is None:
        logger.error("Frame buffer not initialized")
        return

    logger.info("Frame consumer loop started")

    while not _shutdown_flag:
        try:
            frame = await _frame_buffer.get(timeout=1.0)
            if frame is None:
                continue

            _latest_frame = frame
            _frames_consumed += 1

        except asyncio.CancelledError:
            logger.info("Frame consumer loop cancelled")
            break

    logger.info("Frame consumer loop stopped")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _frame_buffer, _correlator, _dispatcher, _receiver
    global _pose_channel, _pose_task, _consume_task, _startup_time
    global _shutdown_flag

    setup_logging(settings)
    signal.signal(signal.SIGTERM, _handle_sigterm)

    _startup_time = time.time()
    _shutdown_flag = False
    logger.info(f"Starting framepipe receiver {__version__}")

    wire = settings.wire
    transport = settings.transport

    _frame_buffer = FrameBuffer(maxsize=settings.dispatch.max_queue_size)
    _correlator = PoseCorrelator()
    _dispatcher = Dispatcher(
        _correlator,
        buffer=_frame_buffer,
        on_connection_end=_on_connection_end,
    )

    policy = build_policy(
        wire.header_variant,
        fixed_frame_size=wire.fixed_frame_size,
        fixed_width=wire.fixed_width,
        fixed_height=wire.fixed_height,
    )
    logger.info(
        f"Frame endpoint: {transport.endpoint} "
        f"(variant={wire.header_variant.value}, capacity={transport.buffer_capacity})"
    )
    _receiver = FrameReceiver(
        endpoint=transport.endpoint,
        policy=policy,
        capacity=transport.buffer_capacity,
        dispatcher=_dispatcher,
        idle_timeout=transport.idle_read_timeout_seconds or None,
    )
    await _receiver.start()

    _consume_task = asyncio.create_task(consume_frames(), name="frame_consumer")

    if settings.pose.enabled:
        logger.info(f"Pose URL: {settings.pose.url}")
        _pose_channel = PoseChannel(
            url=settings.pose.url,
            dispatcher=_dispatcher,
            reconnect_backoff_ms=settings.pose.reconnect_backoff_ms,
        )
        _pose_task = asyncio.create_task(_pose_channel.run(), name="pose_channel")

    logger.info("All components started")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    if _receiver:
        await _receiver.stop()

    if _consume_task:
        _consume_task.cancel()
        try:
            await _consume_task
        except asyncio.CancelledError:
            pass

    if _pose_channel:
        await _pose_channel.stop()

    if _pose_task:
        try:
            await asyncio.wait_for(_pose_task, timeout=5.0)
        except asyncio.TimeoutError:
            _pose_task.cancel()
            try:
                await _pose_task
            except asyncio.CancelledError:
                pass

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="framepipe",
    description="Frame streaming receiver with pose correlation",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "framepipe",
        "version": __version__,
        "status": "running",
        "endpoint": settings.transport.endpoint,
        "header_variant": settings.wire.header_variant.value,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is the frame endpoint accepting connections?

    Returns 503 until the receiver is listening.
    """
    receiver = get_receiver()
    listening = receiver.listening if receiver else False

    if listening:
        return JSONResponse({
            "status": "ready",
            "listening": True,
            "active_connections": receiver.active_connections,
            "pose_connected": _pose_channel.connected if _pose_channel else False,
        })
    return JSONResponse(
        {"status": "not_ready", "listening": False},
        status_code=503,
    )


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    receiver = get_receiver()
    dispatcher = get_dispatcher()

    receiver_metrics = {}
    if receiver:
        receiver_metrics = {
            "listening": receiver.listening,
            "active_connections": receiver.active_connections,
            **receiver.metrics.to_dict(),
        }

    last_outcome = {}
    if _last_outcome is not None:
        last_outcome = {
            "last_connection": _last_outcome.name,
            "last_connection_end": _last_outcome.reason,
            "last_connection_unconsumed_bytes": _last_outcome.unconsumed_bytes,
        }

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "frames_consumed": _frames_consumed,
        "receiver": receiver_metrics,
        "dispatch": dispatcher.metrics() if dispatcher else {},
        "pose_channel": _pose_channel.metrics.to_dict() if _pose_channel else {},
        **last_outcome,
    })


@app.get("/frame/latest")
async def latest_frame() -> JSONResponse:
    """Metadata of the most recently consumed frame."""
    frame = get_latest_frame()

    if frame is None:
        return JSONResponse(
            {"error": "No frame received yet"},
            status_code=503,
        )

    return JSONResponse(FrameInfo.from_frame(frame).model_dump(mode="json"))


@app.get("/pose")
async def current_pose() -> JSONResponse:
    """Current pose held by the correlator."""
    dispatcher = get_dispatcher()
    pose = dispatcher.correlator.current() if dispatcher else None

    if pose is None:
        return JSONResponse(
            {"error": "No pose received yet"},
            status_code=503,
        )

    return JSONResponse(PoseInfo.from_sample(pose).model_dump(mode="json"))


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/pose")
async def pose_ingress(websocket: WebSocket) -> None:
    """WebSocket endpoint accepting pose messages from a tracking source."""
    await websocket.accept()
    logger.info("Client connected to /ws/pose")

    dispatcher = get_dispatcher()
    if dispatcher is None:
        await websocket.close(code=1013)
        logger.warning("Pose client rejected: dispatcher not initialized")
        return

    try:
        while not _shutdown_flag:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            dispatcher.on_pose_message(raw)

    except WebSocketDisconnect:
        pass
    finally:
        logger.info("Client disconnected from /ws/pose")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "framepipe.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
