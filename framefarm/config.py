"""Engine configuration: defaults, JSON loading and validation."""

import json
import os
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field, ValidationError, field_validator

from .analysis import BlurMethod
from .cache import DEFAULT_CACHE_DIR


class ConfigError(Exception):
    """Configuration file could not be loaded."""
    pass


def _default_cache_dir() -> Path:
    override = os.environ.get("FRAMEFARM_CACHE_DIR")
    return Path(override) if override else DEFAULT_CACHE_DIR


class EngineConfig(BaseModel):
    """Settings for extraction, analysis and export."""

    # Decoder
    ffmpeg_path: Optional[str] = None  # None = auto-detect

    # Extraction
    cache_dir: Path = Field(default_factory=_default_cache_dir)
    frame_count: int = Field(default=15, ge=1)
    thumbnail_width: int = Field(default=320, gt=0)
    concurrency: int = Field(default=4, ge=1)
    cache_max_age_days: float = Field(default=7, ge=0)

    # Analysis
    blur_method: BlurMethod = BlurMethod.GRADIENT
    blur_threshold: float = Field(default=50, ge=0, le=100)
    similarity_threshold: float = Field(default=90, ge=0, le=100)

    # Output
    output_format: str = "png"
    jpg_quality: int = Field(default=95, ge=1, le=100)
    filename_pattern: str = "{video}_frame_{frame}_{datetime}"
    gif_fps: float = Field(default=10, gt=0)

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v):
        v = v.lower()
        if v not in ("png", "jpg"):
            raise ValueError(f"Invalid output format: {v}. Must be 'png' or 'jpg'")
        return v

    @field_validator("filename_pattern")
    @classmethod
    def validate_filename_pattern(cls, v):
        if not v.strip():
            raise ValueError("Filename pattern must not be empty")
        return v


def validate_config(config_path: Path) -> Tuple[bool, Optional[EngineConfig], List[str]]:
    """
    Validate a JSON config file.

    Returns:
        Tuple of (is_valid, parsed_config, list_of_errors)
    """
    if not config_path.exists():
        return False, None, [f"Config file does not exist: {config_path}"]

    try:
        with open(config_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        return False, None, [f"Invalid JSON: {e}"]

    if not isinstance(data, dict):
        return False, None, ["Config must be a JSON object"]

    try:
        return True, EngineConfig(**data), []
    except ValidationError as e:
        return False, None, [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load config from JSON, or defaults when no path is given."""
    if config_path is None:
        return EngineConfig()

    is_valid, config, errors = validate_config(Path(config_path))
    if not is_valid:
        raise ConfigError(f"Invalid config {config_path}: " + "; ".join(errors))
    return config
