"""Async worker pool for evaluation runs.

In-process async workers with bounded concurrency: each submitted run is an
asyncio task that waits on a global semaphore before executing the pipeline.

The pool does not decide whether a run may start. Callers move the evaluation
to ``in_progress`` with a conditional UPDATE first, so a second submission for
the same evaluation is rejected by the store before it reaches the pool.
"""

from __future__ import annotations

import asyncio

import structlog

from prompt_evaluator.api.metrics import set_active_workers, set_queue_depth
from prompt_evaluator.pipeline.runner import EvaluationPipeline

logger = structlog.get_logger(__name__)


class WorkerPool:
    """Async worker pool with bounded concurrency.

    Manages evaluation runs as asyncio tasks with:
    - Global max worker limit (prevents exhausting the LLM provider quota)
    - Per-evaluation task tracking
    - Automatic cleanup of finished tasks

    Args:
        pipeline: Executes one evaluation run.
        max_workers: Maximum concurrent runs.
    """

    def __init__(self, pipeline: EvaluationPipeline, max_workers: int = 4) -> None:
        self._pipeline = pipeline
        self._semaphore = asyncio.Semaphore(max_workers)
        self._max_workers = max_workers
        self._tasks: dict[int, asyncio.Task] = {}
        self._running = 0

    def submit(self, evaluation_id: int) -> asyncio.Task:
        """Schedule a run in the background and return its task immediately."""
        task = asyncio.create_task(self._execute(evaluation_id))
        self._tasks[evaluation_id] = task
        task.add_done_callback(lambda t: self._on_task_done(evaluation_id, t))
        set_queue_depth(self.pending_count)
        logger.info("evaluation_submitted", evaluation_id=evaluation_id)
        return task

    async def _execute(self, evaluation_id: int) -> None:
        async with self._semaphore:
            self._running += 1
            set_active_workers(self._running)
            set_queue_depth(self.pending_count)
            try:
                evaluation = await self._pipeline.run(evaluation_id)
                logger.info(
                    "evaluation_finished",
                    evaluation_id=evaluation_id,
                    status=evaluation.status.value,
                    score=evaluation.score,
                )
            except Exception as exc:
                # run() records failures itself; this only fires if the store is unreachable
                logger.error(
                    "evaluation_worker_error",
                    evaluation_id=evaluation_id,
                    error=str(exc),
                    exc_info=True,
                )
            finally:
                self._running -= 1
                set_active_workers(self._running)

    def _on_task_done(self, evaluation_id: int, task: asyncio.Task) -> None:
        """Callback when a task completes (success, failure, or cancellation)."""
        if self._tasks.get(evaluation_id) is task:
            self._tasks.pop(evaluation_id, None)
        set_queue_depth(self.pending_count)

    async def shutdown(self) -> None:
        """Cancel outstanding runs. Their evaluations are failed on next startup."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("worker_pool_shutdown", cancelled=len(tasks))

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def pending_count(self) -> int:
        """Number of tasks waiting for a worker slot."""
        return max(0, self.active_count - self._running)

    @property
    def active_count(self) -> int:
        """Number of submitted runs that have not finished."""
        return sum(1 for t in self._tasks.values() if not t.done())
