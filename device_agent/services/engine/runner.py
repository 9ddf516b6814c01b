"""
Automation Engine - Task Sequence Runner

Reusable ``run_task`` body for engine bindings: runs a job's tasks in order,
reports progress through the sink and honours stop requests between tasks.
"""

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from ...errors import TaskExecutionError
from ...models.job import Job
from .base import TelemetrySink

logger = logging.getLogger(__name__)

# (task name, resolved override) -> True on success
StepFn = Callable[[str, Dict[str, Any]], bool]
# (task name, user options) -> pipeline override
ResolveFn = Callable[[str, Dict[str, Any]], Dict[str, Any]]


def _passthrough(name: str, options: Dict[str, Any]) -> Dict[str, Any]:
    return dict(options)


class TaskSequenceRunner:
    """
    Sequential task runner.

    Args:
        step: Blocking call that runs one task
        resolve_options: Option-resolution collaborator (default: options as-is)
        known_tasks: Task name -> display label; names not listed are skipped.
            None accepts every task name.
    """

    def __init__(
        self,
        step: StepFn,
        resolve_options: Optional[ResolveFn] = None,
        known_tasks: Optional[Mapping[str, str]] = None,
    ):
        self.step = step
        self.resolve_options = resolve_options or _passthrough
        self.known_tasks = known_tasks
        self._stop_requested = threading.Event()

    def request_stop(self) -> None:
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def _label(self, name: str) -> Optional[str]:
        if self.known_tasks is None:
            return name
        return self.known_tasks.get(name)

    def run(self, job: Job, sink: TelemetrySink) -> None:
        """
        Run every task of ``job``.

        Raises:
            TaskExecutionError: On stop, option resolution failure or the first failed task
        """
        self._stop_requested.clear()
        total = len(job.tasks)

        for index, task in enumerate(job.tasks):
            if self.stop_requested:
                raise TaskExecutionError("job stopped")

            label = self._label(task.name)
            if label is None:
                logger.warning(f"Skipping unknown task: {task.name}")
                continue

            logger.info(f"Running task [{index + 1}/{total}]: {task.name}")
            sink.emit_status(task.name, index, total, message=f"Running: {label}")

            try:
                override = self.resolve_options(task.name, task.options)
            except Exception as e:
                raise TaskExecutionError(f"failed to resolve options for {task.name}: {e}") from e

            if not self.step(task.name, override):
                sink.emit_log("error", f"Task failed: {task.name}", node_name=task.name, event_type="task")
                raise TaskExecutionError(f"task failed: {task.name}")

            logger.info(f"Task finished: {task.name}")


__all__ = ["TaskSequenceRunner"]
