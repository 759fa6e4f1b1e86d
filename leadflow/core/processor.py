import asyncio
import logging

from leadflow.core.executors import ExecutorRegistry
from leadflow.core.models import TaskType
from leadflow.core.task_queue import Task, TaskQueue

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Drives the task queue with one polling loop per task type.

    Each tick hands out at most one task and runs it in the background, so
    dispatch throughput per type is capped at one task per
    `processing_interval` while `max_concurrent` caps how many run at once.
    """

    def __init__(self, queue: TaskQueue, registry: ExecutorRegistry):
        self.queue = queue
        self.registry = registry
        self._loops: dict[TaskType, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return bool(self._loops)

    def start(self):
        if self._loops:
            logger.warning("Queue processor already running")
            return

        missing = self.registry.missing()
        if missing:
            raise ValueError(
                "No executor registered for task types: "
                + ", ".join(t.value for t in missing)
            )

        for task_type in TaskType:
            self._loops[task_type] = asyncio.create_task(
                self._poll(task_type), name=f"queue-poll-{task_type.value}"
            )
        logger.info(
            "Queue processor started (intervals: %s)",
            {t.value: self.queue.config(t).processing_interval for t in TaskType},
        )

    def stop(self):
        for loop in self._loops.values():
            loop.cancel()
        self._loops.clear()
        logger.info("Queue processor stopped")

    async def join(self, timeout: float | None = None):
        """Wait for dispatched tasks that are still running."""
        if not self._inflight:
            return
        await asyncio.wait(set(self._inflight), timeout=timeout)

    async def _poll(self, task_type: TaskType):
        while True:
            try:
                self.tick(task_type)
            except Exception as e:
                logger.error("Queue tick error (%s): %s", task_type.value, e)
            await asyncio.sleep(self.queue.config(task_type).processing_interval)

    def tick(self, task_type: TaskType) -> asyncio.Task | None:
        """Dispatch at most one task of `task_type`. Must run inside the event loop."""
        task = self.queue.get_next_task(task_type)
        if task is None:
            return None

        logger.info("Processing %s task %s", task.type.value, task.id)
        dispatch = asyncio.create_task(self.execute(task))
        self._inflight.add(dispatch)
        dispatch.add_done_callback(self._inflight.discard)
        return dispatch

    async def execute(self, task: Task):
        try:
            executor = self.registry.get(task.type)
            result = await executor(task.data)
        except Exception as e:
            logger.exception("Task %s raised", task.id)
            self.queue.complete_task(task.id, str(e) or type(e).__name__)
            return

        if result.success:
            self.queue.complete_task(task.id)
        else:
            self.queue.complete_task(task.id, result.error or "Task failed")
