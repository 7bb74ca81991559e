from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Mapping
from uuid import uuid4

from .cancellation import CancellationToken, abort_external_commands, process_token
from .ffmpeg_service import FFmpegService
from .types import Cancelled

logger = logging.getLogger(__name__)

TaskProgressCallback = Callable[["Task", float], None]


class TaskStatus(Enum):
    QUEUED = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass
class Task:
    task_id: str
    input_file: Path
    output: Path
    params: Mapping[str, object]
    status: TaskStatus = TaskStatus.QUEUED
    error: str | None = None
    progress: float = 0.0
    future: Future | None = None


class TaskManager:
    """Threaded runner for batches of ffmpeg conversions.

    ``abort`` is process-wide: it stops every running child that can be
    cancelled, not just the ones started here, and drops queued tasks.
    """

    def __init__(
        self,
        service: FFmpegService | None = None,
        *,
        max_workers: int = 1,
        on_task_update: Callable[[Task], None] | None = None,
        on_progress: TaskProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.service = service or FFmpegService()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ffmpeg-task")
        self.on_task_update = on_task_update
        self.on_progress = on_progress
        self.token = token or process_token()
        self.tasks: Dict[str, Task] = {}
        self._lock = Lock()

    def submit_conversion(
        self,
        input_file: str | Path,
        output_file: str | Path,
        params: Mapping[str, object] | None = None,
    ) -> Task:
        task = Task(str(uuid4()), Path(input_file), Path(output_file), params or {})
        self._register_task(task)
        task.future = self.executor.submit(self._run_conversion, task)
        return task

    def wait_all(self) -> List[Task]:
        with self._lock:
            tasks = list(self.tasks.values())
        wait([task.future for task in tasks if task.future is not None])
        return tasks

    def abort(self) -> None:
        if self.token is process_token():
            abort_external_commands()
        else:
            self.token.cancel()

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _register_task(self, task: Task) -> None:
        with self._lock:
            self.tasks[task.task_id] = task
        self._update_task(task, TaskStatus.QUEUED)

    def _run_conversion(self, task: Task) -> None:
        if self.token.is_cancelled:
            self._update_task(task, TaskStatus.CANCELLED)
            return

        self._update_task(task, TaskStatus.RUNNING)
        try:
            outcome = self.service.convert(
                task.input_file,
                task.output,
                task.params,
                callback=lambda fraction: self._report_progress(task, fraction),
                token=self.token,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Conversion of %s failed: %s", task.input_file, exc)
            task.error = str(exc)
            self._update_task(task, TaskStatus.FAILED)
        else:
            if isinstance(outcome, Cancelled):
                self._update_task(task, TaskStatus.CANCELLED)
            else:
                task.progress = 1.0
                self._update_task(task, TaskStatus.COMPLETED)

    def _report_progress(self, task: Task, fraction: float) -> None:
        task.progress = fraction
        if self.on_progress:
            self.on_progress(task, fraction)

    def _update_task(self, task: Task, status: TaskStatus) -> None:
        task.status = status
        if self.on_task_update:
            self.on_task_update(task)
