"""Redirection policies for a child process's stdin, stdout and stderr.

A policy is a small tagged value: its ``kind`` says how the pipe is handled
and ``handler`` is the single callable it was built with.

========  ==============================  ===============================
kind      input handler                   output handler
========  ==============================  ===============================
BINARY    ``() -> bytes`` (``b""`` ends)  ``(bytes) -> None`` per chunk
TEXT      ``() -> str | None`` (``None``  ``(str) -> None`` per line
          ends)
NULL      none, stdin closed at once      not allowed
========  ==============================  ===============================
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import IO, Callable, Optional, Union

from .types import StreamError

logger = logging.getLogger(__name__)

IO_BUFFER_SIZE = 64 * 1024

BinaryProducer = Callable[[], bytes]
TextProducer = Callable[[], Optional[str]]
BinaryConsumer = Callable[[bytes], None]
TextConsumer = Callable[[str], None]


class RedirectionKind(Enum):
    BINARY = auto()
    TEXT = auto()
    NULL = auto()


@dataclass(frozen=True, slots=True)
class InputRedirection:
    kind: RedirectionKind
    handler: Union[BinaryProducer, TextProducer, None] = None


@dataclass(frozen=True, slots=True)
class OutputRedirection:
    kind: RedirectionKind
    handler: Union[BinaryConsumer, TextConsumer]

    def __post_init__(self) -> None:
        if self.kind is RedirectionKind.NULL:
            raise ValueError("Output streams cannot use a NULL redirection.")


def binary_input(producer: BinaryProducer) -> InputRedirection:
    return InputRedirection(RedirectionKind.BINARY, producer)


def text_input(producer: TextProducer) -> InputRedirection:
    return InputRedirection(RedirectionKind.TEXT, producer)


def null_input() -> InputRedirection:
    return InputRedirection(RedirectionKind.NULL)


def binary_output(consumer: BinaryConsumer) -> OutputRedirection:
    return OutputRedirection(RedirectionKind.BINARY, consumer)


def text_output(consumer: TextConsumer) -> OutputRedirection:
    return OutputRedirection(RedirectionKind.TEXT, consumer)


# ----------------------------------------------------------------------
# Input feeder
# ----------------------------------------------------------------------
def feed_input(policy: InputRedirection, stream: IO[bytes], encoding: str = "utf-8") -> None:
    """Write everything the producer yields into ``stream`` and close it.

    Closing stdin is the only way the child learns that no more input is
    coming, so the stream is closed on every path.
    """

    def produce():
        try:
            return policy.handler()
        except Exception as exc:  # noqa: BLE001
            raise StreamError(f"stdin producer failed: {exc}", "stdin") from exc

    try:
        if policy.kind is RedirectionKind.BINARY:
            while True:
                chunk = produce()
                if not chunk:
                    break
                stream.write(chunk)
            stream.flush()
        elif policy.kind is RedirectionKind.TEXT:
            writer = io.TextIOWrapper(stream, encoding=encoding, newline="\n")
            try:
                while True:
                    line = produce()
                    if line is None:
                        break
                    writer.write(line)
                    writer.write("\n")
                writer.flush()
            finally:
                # closing the wrapper closes the pipe as well
                writer.close()
    except (OSError, ValueError) as exc:
        raise StreamError(f"writing to stdin failed: {exc}", "stdin") from exc
    finally:
        _close_quietly(stream, "stdin")


# ----------------------------------------------------------------------
# Output pump
# ----------------------------------------------------------------------
def pump_output(
    policy: OutputRedirection,
    stream: IO[bytes],
    stream_name: str,
    encoding: str = "utf-8",
) -> None:
    """Drain ``stream`` to end-of-file, handing each chunk or line to the handler.

    A failing handler does not stop the draining: the child must never be
    left blocked on a full pipe. The first handler error is raised once the
    stream has been read to the end.
    """
    handler_error: BaseException | None = None

    def dispatch(item) -> None:
        nonlocal handler_error
        try:
            policy.handler(item)
        except Exception as exc:  # noqa: BLE001
            if handler_error is None:
                handler_error = exc
                logger.warning("%s handler raised %r; still draining", stream_name, exc)

    try:
        if policy.kind is RedirectionKind.BINARY:
            read = getattr(stream, "read1", stream.read)
            while True:
                chunk = read(IO_BUFFER_SIZE)
                if not chunk:
                    break
                dispatch(chunk)
        elif policy.kind is RedirectionKind.TEXT:
            # universal newlines: ffmpeg ends progress lines with a bare '\r'
            reader = io.TextIOWrapper(stream, encoding=encoding, errors="replace", newline=None)
            for line in reader:
                dispatch(line.rstrip("\n"))
    except (OSError, ValueError) as exc:
        raise StreamError(f"reading {stream_name} failed: {exc}", stream_name) from exc
    finally:
        _close_quietly(stream, stream_name)

    if handler_error is not None:
        raise StreamError(
            f"{stream_name} handler failed: {handler_error}", stream_name
        ) from handler_error


def _close_quietly(stream: IO[bytes], stream_name: str) -> None:
    try:
        stream.close()
    except (OSError, ValueError) as exc:
        logger.debug("closing %s failed: %s", stream_name, exc)
