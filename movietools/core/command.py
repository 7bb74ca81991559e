from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import sys
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from .cancellation import (
    DEFAULT_CANCEL_RETRY_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    CancelAction,
    CancellationToken,
    CancellationWatchdog,
    process_token,
)
from .redirection import InputRedirection, OutputRedirection, feed_input, pump_output, text_output
from .types import Cancelled, CommandNotFoundError, Completed, RunOutcome, SpawnError

if sys.platform != "win32":
    import resource

logger = logging.getLogger(__name__)

Arguments = Union[str, Sequence[Union[str, Path]]]


@dataclass(frozen=True, slots=True)
class ChildProcessSpec:
    """What to run: one executable, its arguments and the pipe encodings."""

    executable: Path
    arguments: Tuple[str, ...] = ()
    input_encoding: str = "utf-8"
    output_encoding: str = "utf-8"

    @classmethod
    def create(
        cls,
        executable: str | Path,
        arguments: Arguments = (),
        *,
        input_encoding: str = "utf-8",
        output_encoding: str = "utf-8",
    ) -> ChildProcessSpec:
        if isinstance(arguments, str):
            arguments = shlex.split(arguments)
        return cls(
            Path(executable),
            tuple(str(arg) for arg in arguments),
            input_encoding,
            output_encoding,
        )

    def command(self) -> List[str]:
        return [str(self.executable), *self.arguments]

    def stringify(self) -> str:
        """Return a shell-safe string for logging or debugging."""
        return shlex.join(self.command())


def where_is(command: str | Path) -> Path | None:
    """Locate ``command`` on PATH, or check it directly when it contains a directory."""
    candidate = Path(command)
    if candidate.is_absolute() or len(candidate.parts) > 1:
        return candidate.absolute() if candidate.is_file() else None
    found = shutil.which(str(command))
    return Path(found) if found else None


def require_command(command: str | Path) -> Path:
    path = where_is(command)
    if path is None:
        raise CommandNotFoundError(f"{command} command is not installed.")
    return path


def execute_command(
    executable: str | Path,
    arguments: Arguments = (),
    *,
    stdin: InputRedirection | None = None,
    stdout: OutputRedirection | None = None,
    stderr: OutputRedirection | None = None,
    cancel_action: CancelAction | None = None,
    token: CancellationToken | None = None,
    log: logging.Logger | None = None,
    input_encoding: str = "utf-8",
    output_encoding: str = "utf-8",
    cancel_retry_interval: float = DEFAULT_CANCEL_RETRY_INTERVAL,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_cancel_attempts: int | None = None,
) -> RunOutcome:
    """Run one child process to completion and report how it ended.

    stdin, stdout and stderr are serviced by separate worker threads so that
    a child filling one pipe never stalls on another. Without a ``stdin``
    policy the child reads from the null device, unless a ``cancel_action``
    is given, in which case stdin stays open for that action to use.
    Unredirected stdout/stderr lines go to ``log`` at DEBUG level.

    Returns ``Cancelled()`` when ``token`` (the process-wide token by
    default) stopped the run, otherwise ``Completed(exit_code)``; a non-zero
    exit code is not an error here. Raises ``CommandNotFoundError`` when the
    executable does not exist, ``SpawnError`` when it cannot be started and
    ``StreamError`` when one of the pipes fails.
    """
    spec = ChildProcessSpec.create(
        executable,
        arguments,
        input_encoding=input_encoding,
        output_encoding=output_encoding,
    )
    log = log or logger
    token = token or process_token()

    if not spec.executable.is_file():
        raise CommandNotFoundError(f"Executable not found: {spec.executable}")

    stdout = stdout or _logging_output(log, "stdout")
    stderr = stderr or _logging_output(log, "stderr")
    stdin_mode = subprocess.PIPE if stdin is not None or cancel_action is not None else subprocess.DEVNULL

    cpu_before = _children_cpu_seconds()
    try:
        process = subprocess.Popen(
            spec.command(),
            stdin=stdin_mode,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise SpawnError(f"Could not start {spec.executable}: {exc}") from exc

    log.info("Child process started: pid=%d %s", process.pid, spec.stringify())
    watchdog = (
        CancellationWatchdog(
            process,
            cancel_action,
            token,
            retry_interval=cancel_retry_interval,
            poll_interval=poll_interval,
            max_attempts=max_cancel_attempts,
        )
        if cancel_action is not None
        else None
    )

    try:
        with ThreadPoolExecutor(max_workers=4, thread_name_prefix=f"child-{process.pid}") as pool:
            futures: List[Future] = []
            if stdin is not None:
                futures.append(pool.submit(feed_input, stdin, process.stdin, spec.input_encoding))
            futures.append(pool.submit(pump_output, stderr, process.stderr, "stderr", spec.output_encoding))
            futures.append(pool.submit(pump_output, stdout, process.stdout, "stdout", spec.output_encoding))
            if watchdog is not None:
                futures.append(pool.submit(watchdog.run))
            errors = _join_workers(futures, process, log)
        exit_code = process.wait()
    finally:
        _dispose(process, log)

    cpu_after = _children_cpu_seconds()
    log.info(
        "Child process exited: pid=%d exit-code=%d cpu-time=%s %s",
        process.pid,
        exit_code,
        f"{cpu_after - cpu_before:.2f}s" if cpu_after is not None and cpu_before is not None else "n/a",
        spec.executable,
    )

    if errors:
        raise errors[0]
    if watchdog is not None and watchdog.cancelled:
        log.info("Child process %d was cancelled", process.pid)
        return Cancelled()
    return Completed(exit_code)


# ----------------------------------------------------------------------
# Internal helpers
# ----------------------------------------------------------------------
def _logging_output(log: logging.Logger, stream_name: str) -> OutputRedirection:
    return text_output(lambda line: log.debug("%s: %s", stream_name, line))


def _join_workers(futures: Sequence[Future], process: subprocess.Popen, log: logging.Logger) -> List[BaseException]:
    """Wait for every worker; kill the child as soon as one of them fails."""
    done, _ = wait(futures, return_when=FIRST_EXCEPTION)
    if any(future.exception() is not None for future in done) and process.poll() is None:
        log.warning("I/O worker failed; killing child process %d", process.pid)
        process.kill()

    errors: List[BaseException] = []
    for future in futures:
        try:
            future.result()
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)
    return errors


def _dispose(process: subprocess.Popen, log: logging.Logger) -> None:
    for stream in (process.stdin, process.stdout, process.stderr):
        if stream is None:
            continue
        try:
            stream.close()
        except OSError as exc:
            log.debug("Closing pipe of child process %d failed: %s", process.pid, exc)
    if process.poll() is None:
        log.warning("Child process %d still running on exit path; killing it", process.pid)
        process.kill()
        process.wait()


def _children_cpu_seconds() -> float | None:
    """CPU seconds used by reaped children so far, where the platform reports it."""
    if sys.platform == "win32":
        return None
    usage = resource.getrusage(resource.RUSAGE_CHILDREN)
    return usage.ru_utime + usage.ru_stime
