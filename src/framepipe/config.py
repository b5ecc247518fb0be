"""
framepipe Configuration
=======================

This module handles configuration loading for the frame pipe.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    FRAMEPIPE_ENDPOINT        -> transport.endpoint
    FRAMEPIPE_BUFFER_CAPACITY -> transport.buffer_capacity
    FRAMEPIPE_IDLE_TIMEOUT    -> transport.idle_read_timeout_seconds
    FRAMEPIPE_HEADER_VARIANT  -> wire.header_variant
    FRAMEPIPE_MAX_CHUNK_SIZE  -> wire.max_chunk_size
    FRAMEPIPE_MAX_QUEUE_SIZE  -> dispatch.max_queue_size
    FRAMEPIPE_POSE_URL        -> pose.url (and pose.enabled)
    FRAMEPIPE_PORT            -> server.port
    FRAMEPIPE_LOG_LEVEL       -> logging.level
    PORT                      -> server.port

Example:
    from framepipe.config import settings

    print(settings.transport.endpoint)
    print(settings.wire.header_variant)
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from framepipe.errors import AllocationError
from framepipe.wire.format import (
    CHUNK_HEADER_SIZE,
    HeaderVariant,
    rgba_size,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class TransportConfig(BaseModel):
    """Byte stream connection configuration."""

    endpoint: str = Field(
        default="unix:/tmp/framepipe.sock",
        description="unix:/path or tcp://host:port of the frame receiver",
    )
    buffer_capacity: int = Field(
        default=32 * 1024 * 1024,
        gt=0,
        description="Per-connection buffer capacity in bytes",
    )
    idle_read_timeout_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Close a connection after this long without data (0 = never)",
    )
    reconnect_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Fixed delay between sender reconnection attempts",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )


class WireConfig(BaseModel):
    """Frame message layout, shared by both ends."""

    header_variant: HeaderVariant = Field(
        default=HeaderVariant.STAMPED,
        description="fixed, legacy, basic or stamped",
    )
    max_chunk_size: int = Field(
        default=64 * 1024 * 1024,
        gt=0,
        description="Largest BASIC payload chunk before a frame is split",
    )
    max_width: int = Field(default=2048, gt=0, description="Largest frame width")
    max_height: int = Field(default=2048, gt=0, description="Largest frame height")
    fixed_frame_size: int = Field(
        default=0,
        ge=0,
        description="Message size for the fixed variant (0 = width*height*4)",
    )
    fixed_width: int = Field(default=1296, ge=0, description="Width for the fixed variant")
    fixed_height: int = Field(default=1296, ge=0, description="Height for the fixed variant")


class DispatchConfig(BaseModel):
    """Consumer hand-off configuration."""

    max_queue_size: int = Field(
        default=4,
        ge=1,
        description="Frames buffered for the consumer before dropping oldest",
    )


class PoseConfig(BaseModel):
    """Pose side channel configuration."""

    enabled: bool = Field(
        default=False,
        description="Connect to the pose feed at startup",
    )
    url: str = Field(
        default="ws://localhost:8000",
        description="WebSocket URL of the pose feed",
    )
    reconnect_backoff_ms: int = Field(
        default=1000,
        ge=100,
        description="Backoff in milliseconds between reconnect attempts",
    )


class ServerConfig(BaseModel):
    """Receiver service configuration."""

    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8010, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for framepipe.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    transport: TransportConfig = Field(default_factory=TransportConfig)
    wire: WireConfig = Field(default_factory=WireConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    pose: PoseConfig = Field(default_factory=PoseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def minimum_capacity(self) -> int:
        """
        Largest message the configured variant can produce.

        The connection buffer must be at least this large.
        """
        wire = self.wire
        variant = wire.header_variant

        if variant is HeaderVariant.FIXED:
            return wire.fixed_frame_size or rgba_size(wire.fixed_width, wire.fixed_height)

        payload = rgba_size(wire.max_width, wire.max_height)
        size = variant.header_size + payload
        if variant.chunked:
            chunks = -(-payload // wire.max_chunk_size)
            size += CHUNK_HEADER_SIZE * chunks
        return size


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration

    Raises:
        AllocationError: If buffer_capacity cannot hold the largest message
    """
    if config_path is None:
        config_path = os.environ.get("FRAMEPIPE_CONFIG")
    if config_path is None:
        search_paths = [
            Path("framepipe.yaml"),
            Path("config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    settings = Settings.model_validate(config_data)

    required = settings.minimum_capacity()
    if settings.transport.buffer_capacity < required:
        raise AllocationError(
            f"transport.buffer_capacity={settings.transport.buffer_capacity} is smaller "
            f"than the largest {settings.wire.header_variant.value} message ({required} bytes)"
        )

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Transport settings
    if env_endpoint := os.environ.get("FRAMEPIPE_ENDPOINT"):
        config_data.setdefault("transport", {})["endpoint"] = env_endpoint
    if env_capacity := os.environ.get("FRAMEPIPE_BUFFER_CAPACITY"):
        config_data.setdefault("transport", {})["buffer_capacity"] = int(env_capacity)
    if env_timeout := os.environ.get("FRAMEPIPE_IDLE_TIMEOUT"):
        config_data.setdefault("transport", {})["idle_read_timeout_seconds"] = float(env_timeout)

    # Wire settings
    if env_variant := os.environ.get("FRAMEPIPE_HEADER_VARIANT"):
        config_data.setdefault("wire", {})["header_variant"] = env_variant.lower()
    if env_chunk := os.environ.get("FRAMEPIPE_MAX_CHUNK_SIZE"):
        config_data.setdefault("wire", {})["max_chunk_size"] = int(env_chunk)

    # Dispatch settings
    if env_queue := os.environ.get("FRAMEPIPE_MAX_QUEUE_SIZE"):
        config_data.setdefault("dispatch", {})["max_queue_size"] = int(env_queue)

    # Pose settings
    if env_pose := os.environ.get("FRAMEPIPE_POSE_URL"):
        config_data.setdefault("pose", {})["url"] = env_pose
        config_data["pose"]["enabled"] = True

    # Server settings
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("FRAMEPIPE_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("FRAMEPIPE_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
