from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from .timecode import try_parse_time

# ffmpeg's human-readable stderr is not a stable interface; lines that do
# not match these patterns are passed through or dropped, never fatal.
QUIT_ACKNOWLEDGED_PREFIX = "[q] command received. Exiting."
PROGRESS_PREFIX = "frame="
DURATION_RE = re.compile(r"\s*(?:Duration|DURATION)\s*:\s*(?P<time>\d+:\d+:\d+(?:\.\d+)?)")
TIME_RE = re.compile(r" time=(?P<time>\d+:\d+:\d+(?:\.\d+)?) ")

ProgressSink = Callable[[float], None]
LineSink = Callable[[str], None]


@dataclass(slots=True)
class FfmpegLogState:
    quit_acknowledged: bool = False
    max_duration_seconds: float | None = None


class FfmpegLogScanner:
    """Classifies ffmpeg stderr lines into progress, quit acknowledgement and plain log.

    Plain lines go to ``log_line_sink``; any ``Duration:`` they announce is
    remembered, keeping the longest one since a conversion with several
    inputs logs one duration per input. Progress lines are turned into a
    fraction of that duration and handed to ``progress_sink``.
    """

    def __init__(self, log_line_sink: LineSink, progress_sink: ProgressSink) -> None:
        self.log_line_sink = log_line_sink
        self.progress_sink = progress_sink
        self.state = FfmpegLogState()

    def __call__(self, line: str) -> None:
        self.feed(line)

    def feed(self, line: str) -> None:
        if line.startswith(QUIT_ACKNOWLEDGED_PREFIX):
            self.state.quit_acknowledged = True
            return

        if line.startswith(PROGRESS_PREFIX):
            progress = self.parse_progress(line)
            if progress is not None:
                self.progress_sink(progress)
            return

        self.log_line_sink(line)
        if (duration := parse_duration(line)) is not None:
            current = self.state.max_duration_seconds
            if current is None or duration > current:
                self.state.max_duration_seconds = duration

    def parse_progress(self, line: str) -> float | None:
        """Return the completed fraction for a progress line, if it can be computed."""
        total = self.state.max_duration_seconds
        if total is None:
            return None
        match = TIME_RE.search(line)
        if not match:
            return None
        elapsed = try_parse_time(match.group("time"))
        if elapsed is None:
            return None
        if total <= 0:
            return 1.0
        return min(max(elapsed / total, 0.0), 1.0)


def parse_duration(line: str) -> float | None:
    if match := DURATION_RE.search(line):
        return try_parse_time(match.group("time"))
    return None
