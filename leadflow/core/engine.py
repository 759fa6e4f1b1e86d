from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from leadflow import config
from leadflow.core.collaborators import Collaborators
from leadflow.core.executors import ExecutorRegistry, build_default_registry
from leadflow.core.processor import QueueProcessor
from leadflow.core.runner import WorkflowRunner
from leadflow.core.task_queue import QueueConfig, TaskQueue
from leadflow.core.triggers import WorkflowTriggerService
from leadflow.core.models import TaskType
from leadflow.db.history import ExecutionHistoryStore


@dataclass
class Engine:
    queue: TaskQueue
    registry: ExecutorRegistry
    processor: QueueProcessor
    history: ExecutionHistoryStore
    runner: WorkflowRunner
    triggers: WorkflowTriggerService


def build_engine(
    session_factory: sessionmaker,
    collaborators: Collaborators | None = None,
    queue_configs: dict[TaskType, QueueConfig] | None = None,
    max_inline_delay: float | None = None,
) -> Engine:
    """Construct the queue, processor and workflow machinery for one process."""
    collaborators = collaborators or Collaborators()
    queue = TaskQueue(queue_configs if queue_configs is not None else config.queue_configs())
    history = ExecutionHistoryStore(session_factory)
    runner = WorkflowRunner(
        session_factory,
        history,
        collaborators,
        max_inline_delay=(
            config.MAX_INLINE_DELAY if max_inline_delay is None else max_inline_delay
        ),
    )
    registry = build_default_registry(runner, collaborators)
    return Engine(
        queue=queue,
        registry=registry,
        processor=QueueProcessor(queue, registry),
        history=history,
        runner=runner,
        triggers=WorkflowTriggerService(queue, history, session_factory, collaborators),
    )
