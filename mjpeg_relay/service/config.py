"""Application configuration models and loaders."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class StreamSettings(BaseModel):
    """HTTP listener and broadcast cadence."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=0, le=65535, description="0 binds any free port")
    jpeg_quality: int = Field(default=85, ge=1, le=100)
    frame_interval_ms: int = Field(
        default=33,
        ge=1,
        description="Period of the broadcast timer (33 ms is roughly 30 fps)",
    )
    max_write_backlog: int = Field(
        default=2 * 1024 * 1024,
        ge=1,
        description="Bytes a client may leave unsent before it is evicted",
    )
    boundary: str = Field(default="--boundary")

    @field_validator("boundary")
    @classmethod
    def _validate_boundary(cls, value: str) -> str:
        if not value or any(ch in value for ch in "\r\n "):
            raise ValueError("boundary must be a non-empty token without whitespace")
        return value

    @property
    def frame_interval(self) -> float:
        return self.frame_interval_ms / 1000.0


class SourceSettings(BaseModel):
    """Video producer feeding the stream."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(
        default="test-pattern",
        description="'test-pattern', a camera index, or a file/URL readable by OpenCV",
    )
    width: int = Field(default=640, ge=16)
    height: int = Field(default=480, ge=16)
    fps: float = Field(default=30.0, gt=0.0, le=240.0)
    reconnect_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to wait before reopening a capture that stopped delivering",
    )


class AppConfig(BaseModel):
    """Top-level configuration for the relay."""

    model_config = ConfigDict(frozen=True)

    stream: StreamSettings = Field(default_factory=StreamSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ValueError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | Path) -> "AppConfig":
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {cfg_path}")
        suffix = cfg_path.suffix.lower()
        if suffix not in {".json"}:
            raise ValueError("Unsupported configuration file format; use JSON")
        data = json.loads(cfg_path.read_text(encoding="utf-8"))
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "AppConfig":
        return cls()


def resolve_config(path: Optional[str]) -> AppConfig:
    """Load configuration from disk, falling back to defaults when missing."""

    if path:
        return AppConfig.from_file(path)
    return AppConfig.default()


__all__ = ["AppConfig", "SourceSettings", "StreamSettings", "resolve_config"]
