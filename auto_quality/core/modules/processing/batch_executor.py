"""
Batch process executor.

Runs a list of independent ffmpeg tasks with a concurrency cap and returns one
ProcessResult per task id. A failing task never aborts its siblings; callers
interpret the per-id results.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..system.system_utils import ProcessResult, ProcessRunner, default_concurrency
from ....utils.logging import get_logger

logger = get_logger("batch_executor")


@dataclass
class BatchTask:
    """One external command to run as part of a batch."""
    task_id: str
    command: str
    args: List[str] = field(default_factory=list)
    timeout: Optional[float] = None


class BatchExecutor:
    """Bounded worker pool over a ProcessRunner."""

    def __init__(self, runner: Optional[ProcessRunner] = None, max_workers: Optional[int] = None):
        self.runner = runner or ProcessRunner()
        self.max_workers = max(1, max_workers if max_workers is not None else default_concurrency())

    @property
    def parallel(self) -> bool:
        return self.max_workers > 1 and getattr(self.runner, "supports_parallel", False)

    def run(self, tasks: Sequence[BatchTask]) -> Dict[str, ProcessResult]:
        """Run every task and return results keyed by task id."""
        if not tasks:
            return {}

        ids = [t.task_id for t in tasks]
        if len(set(ids)) != len(ids):
            raise ValueError("batch task ids must be unique")

        if not self.parallel or len(tasks) == 1:
            return self._run_sequential(tasks)

        try:
            return self._run_parallel(tasks)
        except RuntimeError as e:
            # Thread creation can fail on constrained hosts (interpreter shutdown, limits)
            logger.warn(f"Parallel execution unavailable ({e}), running {len(tasks)} tasks sequentially")
            return self._run_sequential(tasks)

    def _run_sequential(self, tasks: Sequence[BatchTask]) -> Dict[str, ProcessResult]:
        return {task.task_id: self._execute(task) for task in tasks}

    def _run_parallel(self, tasks: Sequence[BatchTask]) -> Dict[str, ProcessResult]:
        results: Dict[str, ProcessResult] = {}
        workers = min(self.max_workers, len(tasks))
        logger.debug(f"Running {len(tasks)} tasks with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_task = {executor.submit(self._execute, task): task for task in tasks}

            for future in as_completed(future_to_task):
                task = future_to_task[future]
                results[task.task_id] = future.result()

        return {task.task_id: results[task.task_id] for task in tasks}

    def _execute(self, task: BatchTask) -> ProcessResult:
        start = time.monotonic()
        try:
            result = self.runner.run(task.command, task.args, task.timeout)
        except Exception as e:
            # Host-supplied runners may raise; keep the failure local to this task
            logger.error(f"Task {task.task_id} raised: {e}")
            return ProcessResult(-1, str(e), time.monotonic() - start)

        if not result.ok:
            status = "timed out" if result.timed_out else f"exit {result.exit_code}"
            logger.debug(f"Task {task.task_id} failed ({status})")
        return result
