"""Harness configuration loaded from YAML and validated with pydantic."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from constants import (
    ALL_TESTS,
    AUTO_ACQUIRE_SESSION,
    DETECTION_GRACE_MS,
    DEVICE_CACHE_TTL_MS,
    HARDWARE_POLL_INTERVAL_MS,
    INPUT_EVENT_HISTORY,
    PERMISSION_CACHE_TTL_MS,
    VIDEO_IDEAL_HEIGHT,
    VIDEO_IDEAL_WIDTH,
    VIDEO_MIN_HEIGHT,
    VIDEO_MIN_WIDTH,
)
from exceptions import ConfigurationError
from utils.logger import get_logger

logger = get_logger(__name__)

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class VideoHints(BaseModel):
    """Resolution hints for camera constraints."""

    min_width: int = Field(default=VIDEO_MIN_WIDTH, gt=0)
    min_height: int = Field(default=VIDEO_MIN_HEIGHT, gt=0)
    ideal_width: int = Field(default=VIDEO_IDEAL_WIDTH, gt=0)
    ideal_height: int = Field(default=VIDEO_IDEAL_HEIGHT, gt=0)

    @model_validator(mode="after")
    def validate_ideal_not_below_min(self):
        """Ideal resolution must not be smaller than the minimum."""
        if self.ideal_width < self.min_width or self.ideal_height < self.min_height:
            raise ValueError("Ideal resolution must be at least the minimum resolution")
        return self


class HarnessConfig(BaseModel):
    """Settings shared by every test controller in a suite."""

    device_cache_ttl_ms: int = Field(
        default=DEVICE_CACHE_TTL_MS, gt=0, description="Device list cache lifetime"
    )
    permission_cache_ttl_ms: int = Field(
        default=PERMISSION_CACHE_TTL_MS, gt=0, description="Permission state cache lifetime"
    )
    detection_grace_ms: int = Field(
        default=DETECTION_GRACE_MS, ge=0, description="Delay before showing the no-devices state"
    )
    auto_acquire: bool = Field(
        default=AUTO_ACQUIRE_SESSION,
        description="Open the device session as soon as a stream test is ready",
    )
    input_event_history: int = Field(
        default=INPUT_EVENT_HISTORY, ge=1, description="Input events kept per test"
    )
    hardware_poll_interval_ms: int = Field(
        default=HARDWARE_POLL_INTERVAL_MS, ge=0, description="Sensor poll interval, 0 disables"
    )
    video: VideoHints = Field(default_factory=VideoHints)
    tests: list[str] = Field(default_factory=lambda: list(ALL_TESTS))
    log_level: str = Field(default="INFO")

    @field_validator("tests")
    @classmethod
    def validate_tests(cls, v):
        """Validate test names against the catalogue."""
        unknown = [name for name in v if name not in ALL_TESTS]
        if unknown:
            raise ValueError(f"Unknown tests: {unknown}. Must be among {list(ALL_TESTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate and normalize the log level name."""
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {sorted(LOG_LEVELS)}")
        return level


def load_config(config_path: str | Path) -> HarnessConfig:
    """Load harness settings from a YAML file.

    The file may hold the settings at top level or under a ``harness`` key.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated HarnessConfig

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    path = Path(config_path)
    try:
        with open(path) as f:
            raw: Any = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {path}", config_path=str(path), cause=e
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Malformed YAML in {path}", config_path=str(path), cause=e
        ) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Configuration root must be a mapping", config_path=str(path)
        )
    data = raw.get("harness", raw)

    try:
        config = HarnessConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration in {path}: {e.error_count()} error(s)",
            config_path=str(path),
            context={"errors": [err["msg"] for err in e.errors()]},
            cause=e,
        ) from e

    logger.info(f"Loaded configuration from {path}")
    return config
