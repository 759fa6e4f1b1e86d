"""Action executor registry: task type -> async executor."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from leadflow.core.collaborators import Collaborators
from leadflow.core.models import TaskType

logger = logging.getLogger(__name__)


@dataclass
class ExecutorResult:
    success: bool
    error: str | None = None
    output: Any = None


Executor = Callable[[dict[str, Any]], Awaitable[ExecutorResult]]


class ExecutorRegistry:
    def __init__(self):
        self._executors: dict[TaskType, Executor] = {}

    def add(self, task_type: TaskType, fn: Executor) -> None:
        self._executors[TaskType(task_type)] = fn

    def register(self, task_type: TaskType):
        """Decorator form of `add`."""

        def decorator(fn: Executor) -> Executor:
            self.add(task_type, fn)
            return fn

        return decorator

    def get(self, task_type: TaskType) -> Executor:
        task_type = TaskType(task_type)
        try:
            return self._executors[task_type]
        except KeyError:
            raise KeyError(
                f"No executor registered for task type '{task_type.value}'"
            ) from None

    def missing(self) -> list[TaskType]:
        return [t for t in TaskType if t not in self._executors]

    def __contains__(self, task_type) -> bool:
        return TaskType(task_type) in self._executors


def build_default_registry(runner, collaborators: Collaborators) -> ExecutorRegistry:
    """Wire the four task types to the workflow runner and the collaborators."""
    registry = ExecutorRegistry()

    registry.add(TaskType.WORKFLOW, runner.run_task)

    @registry.register(TaskType.SCRAPER)
    async def run_scraper(data: dict[str, Any]) -> ExecutorResult:
        logger.info("Processing scraper job %s", data.get("jobId"))
        output = await collaborators.scraper(data)
        return ExecutorResult(success=True, output=output)

    @registry.register(TaskType.EMAIL)
    async def send_email(data: dict[str, Any]) -> ExecutorResult:
        to = data.get("to")
        if not to:
            return ExecutorResult(success=False, error="Email task has no recipient")
        result = await collaborators.email_sender(
            to, data.get("subject", ""), data.get("body", "")
        )
        if not result.success:
            return ExecutorResult(success=False, error=result.error or "Failed to send email")
        logger.info("Email sent to %s", to)
        return ExecutorResult(success=True, output={"messageId": result.message_id})

    @registry.register(TaskType.SOCIAL)
    async def run_social(data: dict[str, Any]) -> ExecutorResult:
        output = await collaborators.social_automation(data)
        logger.info("Social automation %s processed", data.get("automationId"))
        return ExecutorResult(success=True, output=output)

    return registry
