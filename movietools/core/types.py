from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union


class MovieToolsError(Exception):
    """Base error for the movietools package."""


class CommandNotFoundError(MovieToolsError, FileNotFoundError):
    """Raised when an external executable cannot be located."""


class SpawnError(MovieToolsError):
    """Raised when the OS refuses to start a child process."""


class StreamError(MovieToolsError):
    """Raised when pumping a child process's stdin/stdout/stderr fails."""

    def __init__(self, message: str, stream_name: str) -> None:
        super().__init__(message)
        self.stream_name = stream_name


class ProbeError(MovieToolsError):
    """Raised when ffprobe fails or returns information that cannot be decoded."""


class FFmpegError(MovieToolsError):
    """Raised when an FFmpeg conversion exits with a non-zero code."""

    def __init__(self, message: str, command: Iterable[str], exit_code: int) -> None:
        super().__init__(message)
        self.command = list(command)
        self.exit_code = exit_code


@dataclass(frozen=True, slots=True)
class Completed:
    """The child ran to its own end and reported ``exit_code``."""

    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class Cancelled:
    """The child was stopped by a cancellation request; its exit code is meaningless."""


RunOutcome = Union[Completed, Cancelled]


class OperationCancelledError(MovieToolsError):
    """Raised by higher-level helpers whose child process run was cancelled."""
