"""Pydantic models for utmeta.

Provides validated configuration models and shared enums.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SessionState(str, Enum):
    """Metadata session states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    EXTENSION_HANDSHAKING = "extension_handshaking"
    REQUESTING_PIECES = "requesting_pieces"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


class NetworkConfig(BaseModel):
    """Network configuration."""

    dial_timeout: float = Field(
        default=3.0,
        gt=0.0,
        le=300.0,
        description="TCP connect timeout in seconds",
    )
    handshake_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Deadline for each handshake phase in seconds",
    )
    metadata_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=3600.0,
        description="Deadline covering all piece requests and replies in seconds",
    )
    max_frame_size: int = Field(
        default=4 * 1024 * 1024,
        ge=32 * 1024,
        le=64 * 1024 * 1024,
        description="Largest frame length accepted from a peer in bytes",
    )
    peer_id_prefix: str = Field(
        default="-UM0100-",
        min_length=1,
        max_length=20,
        description="Client prefix of generated peer ids",
    )

    @field_validator("peer_id_prefix")
    @classmethod
    def validate_peer_id_prefix(cls, v: str) -> str:
        """Peer id prefix must be ASCII."""
        if not v.isascii():
            msg = "peer_id_prefix must be ASCII"
            raise ValueError(msg)
        return v


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=True,
        description="Write JSON records to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main configuration model."""

    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Network configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
