from __future__ import annotations

import logging
import subprocess
import threading
from typing import Callable

logger = logging.getLogger(__name__)

CancelAction = Callable[[subprocess.Popen], None]

DEFAULT_CANCEL_RETRY_INTERVAL = 10.0
DEFAULT_POLL_INTERVAL = 0.5


class CancellationToken:
    """A set-once flag shared by every run that was handed the same token."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


_PROCESS_TOKEN = CancellationToken()


def process_token() -> CancellationToken:
    """Return the process-wide token used when a run is not given its own."""
    return _PROCESS_TOKEN


def abort_external_commands() -> None:
    """Request cancellation of every running and future child that can be cancelled.

    The request is never withdrawn for the lifetime of the process.
    """
    logger.info("Cancellation of external commands requested")
    _PROCESS_TOKEN.cancel()


class CancellationWatchdog:
    """Watches one child and keeps asking it to stop once the token is set.

    ``run`` returns when the child has exited. After that, ``cancelled`` is
    True when the token was observed before the child was seen to exit.
    With ``max_attempts`` left at None the cancel action is repeated until
    the child exits, however long that takes; with a limit, the child is
    killed after the last attempt.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        cancel_action: CancelAction,
        token: CancellationToken,
        *,
        retry_interval: float = DEFAULT_CANCEL_RETRY_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int | None = None,
    ) -> None:
        self.process = process
        self.cancel_action = cancel_action
        self.token = token
        self.retry_interval = retry_interval
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.cancelled = False
        self.attempts = 0

    def run(self) -> bool:
        if not self._watch():
            return False

        self.cancelled = True
        logger.info("Cancelling child process %d", self.process.pid)
        while self.process.poll() is None:
            if self.max_attempts is not None and self.attempts >= self.max_attempts:
                logger.warning(
                    "Child process %d ignored %d cancel requests; killing it",
                    self.process.pid,
                    self.attempts,
                )
                self.process.kill()
                self.process.wait()
                break
            self._request_cancel()
            try:
                self.process.wait(timeout=self.retry_interval)
            except subprocess.TimeoutExpired:
                logger.debug("Child process %d still running after cancel request", self.process.pid)
        return True

    def _watch(self) -> bool:
        """Return True once cancellation is requested, False if the child exits first."""
        while True:
            if self.token.is_cancelled:
                return True
            if self.process.poll() is not None:
                return False
            if self.token.wait(self.poll_interval):
                return True

    def _request_cancel(self) -> None:
        self.attempts += 1
        try:
            self.cancel_action(self.process)
        except Exception as exc:  # noqa: BLE001
            # the child may close its stdin or exit between the liveness check and the call
            logger.debug("Cancel action for child process %d failed: %s", self.process.pid, exc)


def write_quit_key(process: subprocess.Popen) -> None:
    """Cancel action asking an interactive ffmpeg to finish gracefully."""
    if process.stdin is None:
        raise RuntimeError("stdin of the child process is not redirected")
    process.stdin.write(b"q")
    process.stdin.flush()


def terminate(process: subprocess.Popen) -> None:
    process.terminate()
