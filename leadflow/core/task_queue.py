"""In-memory task queues, one per task type.

Each type has its own priority-ordered queue and running set. The running
set is the dispatch guard: a task id is added to it when the task is handed
out and removed when the task reaches a terminal state or goes back to
pending for a retry.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from leadflow.core.models import (
    TERMINAL_STATUSES,
    TaskPriority,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)


class QueueFullError(Exception):
    """Raised when a bounded queue already holds its maximum of pending tasks."""


@dataclass
class QueueConfig:
    max_concurrent: int = 5
    processing_interval: float = 1.0
    max_retries: int = 3
    retry_backoff: float = 0.0
    max_queue_depth: int | None = None


@dataclass
class Task:
    id: str
    type: TaskType
    priority: TaskPriority
    data: dict[str, Any]
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    available_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    max_retries: int | None = None


@dataclass
class QueueStats:
    type: TaskType
    pending: int
    running: int
    completed: int
    failed: int
    cancelled: int
    avg_processing_time: float


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskQueue:
    def __init__(self, configs: dict[TaskType, QueueConfig] | None = None):
        configs = configs or {}
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._queues: dict[TaskType, list[Task]] = {}
        self._running: dict[TaskType, set[str]] = {}
        self._config: dict[TaskType, QueueConfig] = {}
        for task_type in TaskType:
            self._queues[task_type] = []
            self._running[task_type] = set()
            self._config[task_type] = configs.get(task_type, QueueConfig())

    def config(self, task_type: TaskType) -> QueueConfig:
        return self._config[TaskType(task_type)]

    def update_config(self, task_type: TaskType, **changes) -> QueueConfig:
        with self._lock:
            task_type = TaskType(task_type)
            self._config[task_type] = replace(self._config[task_type], **changes)
            return self._config[task_type]

    def add_task(
        self,
        task_type: TaskType,
        data: dict[str, Any] | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        max_retries: int | None = None,
    ) -> str:
        task_type = TaskType(task_type)
        priority = TaskPriority(priority)

        with self._lock:
            queue = self._queues[task_type]
            depth = self._config[task_type].max_queue_depth
            if depth is not None:
                pending = sum(1 for t in queue if t.status == TaskStatus.PENDING)
                if pending >= depth:
                    raise QueueFullError(
                        f"{task_type.value} queue is full ({depth} pending tasks)"
                    )

            task_id = (
                f"{task_type.value}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
            )
            task = Task(
                id=task_id,
                type=task_type,
                priority=priority,
                data=dict(data or {}),
                max_retries=max_retries,
            )
            self._tasks[task_id] = task

            # Place after every queued task of equal or higher priority.
            index = next(
                (
                    i
                    for i, queued in enumerate(queue)
                    if queued.priority.rank < priority.rank
                ),
                len(queue),
            )
            queue.insert(index, task)

        logger.info("Task %s added to %s queue (%s)", task_id, task_type.value, priority.value)
        return task_id

    def get_next_task(self, task_type: TaskType) -> Task | None:
        task_type = TaskType(task_type)
        with self._lock:
            running = self._running[task_type]
            if len(running) >= self._config[task_type].max_concurrent:
                return None

            now = _now()
            task = next(
                (
                    t
                    for t in self._queues[task_type]
                    if t.status == TaskStatus.PENDING
                    and t.id not in running
                    and (t.available_at is None or t.available_at <= now)
                ),
                None,
            )
            if task is None:
                return None

            task.status = TaskStatus.RUNNING
            task.started_at = now
            task.completed_at = None
            running.add(task.id)
            return task

    def complete_task(self, task_id: str, error: str | None = None) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status in TERMINAL_STATUSES:
                return

            self._running[task.type].discard(task_id)
            config = self._config[task.type]

            if error is None:
                task.status = TaskStatus.COMPLETED
                task.completed_at = _now()
                self._remove_from_queue(task)
                logger.info("Task %s completed", task_id)
                return

            task.error = error
            task.retry_count += 1
            limit = task.max_retries if task.max_retries is not None else config.max_retries

            # max_retries counts retries after the first attempt.
            if task.retry_count <= limit:
                task.status = TaskStatus.PENDING
                if config.retry_backoff > 0:
                    delay = config.retry_backoff * 2 ** (task.retry_count - 1)
                    task.available_at = _now() + timedelta(seconds=delay)
                logger.warning(
                    "Retrying task %s (retry %d of %d): %s",
                    task_id,
                    task.retry_count,
                    limit,
                    error,
                )
            else:
                task.status = TaskStatus.FAILED
                task.completed_at = _now()
                self._remove_from_queue(task)
                logger.error("Task %s failed: %s", task_id, error)

    def cancel_task(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status in TERMINAL_STATUSES:
                return False

            task.status = TaskStatus.CANCELLED
            task.completed_at = _now()
            self._running[task.type].discard(task_id)
            self._remove_from_queue(task)

        logger.info("Task %s cancelled", task_id)
        return True

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_tasks_by_type(self, task_type: TaskType) -> list[Task]:
        task_type = TaskType(task_type)
        with self._lock:
            return [t for t in self._tasks.values() if t.type == task_type]

    def get_active_tasks(self) -> list[Task]:
        with self._lock:
            return [
                t
                for t in self._tasks.values()
                if t.status in (TaskStatus.PENDING, TaskStatus.RUNNING)
            ]

    def running_count(self, task_type: TaskType) -> int:
        return len(self._running[TaskType(task_type)])

    def get_stats(self, task_type: TaskType) -> QueueStats:
        task_type = TaskType(task_type)
        tasks = self.get_tasks_by_type(task_type)
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1

        durations = [
            (t.completed_at - t.started_at).total_seconds()
            for t in tasks
            if t.status == TaskStatus.COMPLETED and t.started_at and t.completed_at
        ]
        avg = sum(durations) / len(durations) if durations else 0.0

        return QueueStats(
            type=task_type,
            pending=counts[TaskStatus.PENDING],
            running=counts[TaskStatus.RUNNING],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            cancelled=counts[TaskStatus.CANCELLED],
            avg_processing_time=avg,
        )

    def get_all_stats(self) -> list[QueueStats]:
        return [self.get_stats(task_type) for task_type in TaskType]

    def clear_completed(self, task_type: TaskType | None = None) -> int:
        if task_type is not None:
            task_type = TaskType(task_type)
        with self._lock:
            doomed = [
                task_id
                for task_id, task in self._tasks.items()
                if (task_type is None or task.type == task_type)
                and task.status in TERMINAL_STATUSES
            ]
            for task_id in doomed:
                del self._tasks[task_id]

        logger.info("Cleared %d finished tasks", len(doomed))
        return len(doomed)

    def _remove_from_queue(self, task: Task) -> None:
        queue = self._queues[task.type]
        for i, queued in enumerate(queue):
            if queued.id == task.id:
                del queue[i]
                return
