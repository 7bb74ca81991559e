"""
movietools configuration

Loads configuration from environment variables with sensible defaults.
Command-line flags override whatever is set here.
"""

import os
from dataclasses import dataclass
from typing import Optional

from movietools.core.cancellation import DEFAULT_CANCEL_RETRY_INTERVAL, DEFAULT_POLL_INTERVAL


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # External tools (names looked up on PATH, or explicit paths)
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Processing
    jobs: int = 1
    cancel_retry_seconds: float = DEFAULT_CANCEL_RETRY_INTERVAL
    poll_seconds: float = DEFAULT_POLL_INTERVAL

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _parse_positive_int(value: str, name: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer: {value!r}") from None
    if parsed < 1:
        raise ValueError(f"{name} must be at least 1: {value!r}")
    return parsed


def _parse_positive_float(value: str, name: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number: {value!r}") from None
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than 0: {value!r}")
    return parsed


def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config(
        ffmpeg_path=os.getenv("MOVIETOOLS_FFMPEG", "ffmpeg"),
        ffprobe_path=os.getenv("MOVIETOOLS_FFPROBE", "ffprobe"),
        jobs=_parse_positive_int(os.getenv("MOVIETOOLS_JOBS", "1"), "MOVIETOOLS_JOBS"),
        cancel_retry_seconds=_parse_positive_float(
            os.getenv("MOVIETOOLS_CANCEL_RETRY_SECONDS", str(DEFAULT_CANCEL_RETRY_INTERVAL)),
            "MOVIETOOLS_CANCEL_RETRY_SECONDS",
        ),
        poll_seconds=_parse_positive_float(
            os.getenv("MOVIETOOLS_POLL_SECONDS", str(DEFAULT_POLL_INTERVAL)),
            "MOVIETOOLS_POLL_SECONDS",
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE"),
    )
