#!/usr/bin/env python3
"""
Synthetic Frame Stream
======================

Standalone producer for end-to-end checks of a running receiver.

This script:
    1. Connects to a framepipe receiver (unix socket or TCP)
    2. Renders moving RGBA test patterns at a fixed rate
    3. Stamps each frame with a synthetic, monotonically increasing pose
    4. Logs send stats every few seconds and reports a final summary

Prerequisites:
    - The receiver must be running: python -m framepipe.main
    - Install the package: pip install -e .

Usage:
    python scripts/stream_synthetic.py --duration 30
    python scripts/stream_synthetic.py --endpoint tcp://127.0.0.1:9400 --variant basic
"""

import argparse
import asyncio
import logging
import os
import sys
import time

import numpy as np

from framepipe.models.pose import PoseSample
from framepipe.pose.correlator import PoseCorrelator
from framepipe.stream import FrameEncoder, FrameSender
from framepipe.wire import HeaderVariant


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


def render_pattern(width: int, height: int, index: int) -> np.ndarray:
    """Diagonal RGBA gradient that scrolls by one pixel per frame."""
    ys, xs = np.mgrid[0:height, 0:width]
    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[..., 0] = (xs + index) % 256
    frame[..., 1] = (ys + index) % 256
    frame[..., 2] = (xs + ys) % 256
    frame[..., 3] = 255
    return frame


def synthetic_pose(index: int, timestamp: float) -> PoseSample:
    """Slow translation along x so every frame carries a distinct pose."""
    return PoseSample(
        timestamp=timestamp,
        id=index + 1,
        transform=(
            (1.0, 0.0, 0.0, index * 0.001),
            (0.0, 1.0, 0.0, 0.0),
            (0.0, 0.0, 1.0, 0.0),
        ),
    )


async def run_stream(
    endpoint: str,
    variant: HeaderVariant,
    width: int,
    height: int,
    fps: float,
    duration: int,
    max_chunk_size: int,
    report_interval: int,
) -> dict:
    """
    Stream synthetic frames for a fixed duration.

    Args:
        endpoint: Receiver endpoint
        variant: Header variant configured on the receiver
        width: Frame width in pixels
        height: Frame height in pixels
        fps: Target frame rate
        duration: Run time in seconds
        max_chunk_size: Largest BASIC chunk before a frame is split
        report_interval: Seconds between progress reports

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info("Synthetic Frame Stream")
    logger.info("=" * 60)
    logger.info(f"Endpoint: {endpoint}")
    logger.info(f"Variant: {variant.value}")
    logger.info(f"Frame: {width}x{height} RGBA @ {fps:.1f} fps")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    correlator = PoseCorrelator()
    encoder = FrameEncoder(
        variant,
        max_chunk_size=max_chunk_size,
        correlator=correlator,
        fixed_frame_size=width * height * 4,
    )
    sender = FrameSender(endpoint=endpoint, encoder=encoder, reconnect_delay=1.0)
    sender_task = asyncio.create_task(sender.run())

    # Pre-render a short loop of patterns; rendering is not what is measured
    patterns = [render_pattern(width, height, i).tobytes() for i in range(16)]

    interval = 1.0 / fps
    start_time = time.monotonic()
    last_report_time = start_time
    last_sent = 0
    index = 0

    try:
        while True:
            now = time.monotonic()
            elapsed = now - start_time
            if elapsed >= duration:
                logger.info(f"Duration ({duration}s) reached")
                break

            correlator.observe(synthetic_pose(index, now))
            await sender.send_frame(patterns[index % len(patterns)], width, height, now)
            index += 1

            if now - last_report_time >= report_interval:
                metrics = sender.metrics
                rate = (metrics.frames_sent - last_sent) / (now - last_report_time)
                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {elapsed:.0f}s)")
                logger.info(f"  Connected: {sender.connected}")
                logger.info(f"  Frames sent: {metrics.frames_sent}")
                logger.info(f"  Current FPS: {rate:.1f}")
                logger.info(f"  Frames dropped: {metrics.frames_dropped}")
                logger.info(f"  Reconnects: {metrics.reconnect_count}")
                last_report_time = now
                last_sent = metrics.frames_sent

            await asyncio.sleep(max(0.0, interval - (time.monotonic() - now)))

    except KeyboardInterrupt:
        logger.info("Stream interrupted by user")
    finally:
        await sender.stop()
        try:
            await asyncio.wait_for(sender_task, timeout=5.0)
        except asyncio.TimeoutError:
            sender_task.cancel()
            try:
                await sender_task
            except asyncio.CancelledError:
                pass

    total_time = time.monotonic() - start_time
    metrics = sender.metrics
    avg_fps = metrics.frames_sent / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames sent: {metrics.frames_sent}")
    logger.info(f"Bytes sent: {metrics.bytes_sent}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"Frames dropped: {metrics.frames_dropped}")
    logger.info(f"Write errors: {metrics.write_errors}")
    logger.info(f"Reconnections: {metrics.reconnect_count}")
    logger.info("=" * 60)

    if metrics.frames_sent > 0:
        logger.info("STREAM OK - frames delivered")
    else:
        logger.error("STREAM FAILED - no frames delivered")

    return {
        "duration": total_time,
        "avg_fps": avg_fps,
        **metrics.to_dict(),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Stream synthetic RGBA frames to a framepipe receiver"
    )
    parser.add_argument(
        "--endpoint",
        type=str,
        default=os.environ.get("FRAMEPIPE_ENDPOINT", "unix:/tmp/framepipe.sock"),
        help="Receiver endpoint (unix:/path or tcp://host:port)",
    )
    parser.add_argument(
        "--variant",
        type=str,
        choices=[v.value for v in HeaderVariant],
        default=os.environ.get("FRAMEPIPE_HEADER_VARIANT", HeaderVariant.STAMPED.value),
        help="Header variant configured on the receiver (default: stamped)",
    )
    parser.add_argument("--width", type=int, default=1296, help="Frame width (default: 1296)")
    parser.add_argument("--height", type=int, default=1296, help="Frame height (default: 1296)")
    parser.add_argument("--fps", type=float, default=30.0, help="Target frame rate (default: 30)")
    parser.add_argument(
        "--duration",
        type=int,
        default=30,
        help="Run time in seconds (default: 30)",
    )
    parser.add_argument(
        "--max-chunk-size",
        type=int,
        default=1024 * 1024,
        help="Largest BASIC chunk before a frame is split (default: 1 MiB)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_stream(
        endpoint=args.endpoint,
        variant=HeaderVariant(args.variant),
        width=args.width,
        height=args.height,
        fps=args.fps,
        duration=args.duration,
        max_chunk_size=args.max_chunk_size,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["frames_sent"] > 0 else 1)


if __name__ == "__main__":
    main()
