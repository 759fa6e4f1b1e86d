"""Workflow graph interpreter.

Walks a workflow graph from its trigger node, one node at a time, threading
a variable context through the node handlers. A run ends as success when the
cursor runs off the graph, as failed on the first node failure, or as
suspended when a delay is too long to wait out in place.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx

from leadflow.core.collaborators import CollaboratorNotConfigured, Collaborators
from leadflow.core.graph import WorkflowGraph, WorkflowNode
from leadflow.core.models import NodeType, RunState
from leadflow.core.nodes import (
    HANDLERS,
    ExecutionContext,
    NodeExecutionResult,
    NodeHandler,
)

logger = logging.getLogger(__name__)


@dataclass
class NodeStep:
    node_id: str
    node_type: NodeType
    success: bool
    output: Any = None
    error: str | None = None


@dataclass
class RunOutcome:
    status: RunState
    steps: list[NodeStep] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    # Where a suspended run picks up again.
    cursor: str | None = None
    resume_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == RunState.SUCCESS


class WorkflowInterpreter:
    def __init__(
        self,
        graph: WorkflowGraph,
        collaborators: Collaborators | None = None,
        handlers: dict[NodeType, NodeHandler] | None = None,
        max_inline_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_steps: int = 1000,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.graph = graph
        self.collaborators = collaborators or Collaborators()
        self.handlers = handlers if handlers is not None else HANDLERS
        self.max_inline_delay = max_inline_delay
        self.sleep = sleep
        self.max_steps = max_steps
        self.http_transport = http_transport

    async def run(
        self,
        variables: dict[str, Any] | None = None,
        start_at: str | None = None,
        logs: list[str] | None = None,
        workflow_id: str | None = None,
        user_id: str | None = None,
        business_id: str | None = None,
        run_id: str | None = None,
    ) -> RunOutcome:
        """Execute the graph.

        `start_at` resumes a suspended run at that node instead of the
        trigger. `variables` is copied, so the caller's dict is never
        mutated and concurrent runs never share state.
        """
        outcome = RunOutcome(
            status=RunState.RUNNING,
            logs=list(logs or []),
            variables=dict(variables or {}),
        )
        context = ExecutionContext(
            graph=self.graph,
            variables=outcome.variables,
            collaborators=self.collaborators,
            workflow_id=workflow_id,
            user_id=user_id,
            business_id=business_id,
            run_id=run_id,
            http_transport=self.http_transport,
        )

        if start_at is None:
            trigger = self.graph.trigger_node()
            if trigger is None:
                return self._finish(outcome, RunState.FAILED, "No trigger node found")
            outcome.logs.append(f"Starting workflow execution at trigger '{trigger.id}'")
            cursor: str | None = trigger.id
        else:
            if start_at not in self.graph.nodes:
                return self._finish(
                    outcome, RunState.FAILED, f"Resume node '{start_at}' not found"
                )
            outcome.logs.append(f"Resuming workflow execution at '{start_at}'")
            cursor = start_at

        while cursor is not None:
            if len(outcome.steps) >= self.max_steps:
                return self._finish(
                    outcome,
                    RunState.FAILED,
                    f"Step limit of {self.max_steps} reached, the graph likely loops",
                )

            node = self.graph.nodes.get(cursor)
            if node is None:
                return self._finish(outcome, RunState.FAILED, f"Node '{cursor}' not found")

            result = await self._execute_node(node, context)
            outcome.steps.append(
                NodeStep(
                    node_id=node.id,
                    node_type=node.type,
                    success=result.success,
                    output=result.output,
                    error=result.error,
                )
            )
            context.outputs[node.id] = result.output

            if not result.success:
                outcome.logs.append(f"Node '{node.id}' ({node.type.value}) failed: {result.error}")
                return self._finish(outcome, RunState.FAILED, result.error)

            outcome.logs.append(f"Executed {node.type.value} node '{node.id}'")

            if result.halt:
                outcome.logs.append(f"Condition on '{node.id}' has no matching branch, stopping")
                break

            if result.next_node_id is not None:
                cursor = result.next_node_id
            else:
                cursor = self.graph.next_node_id(node.id)

            if result.suspend_seconds:
                if result.suspend_seconds <= self.max_inline_delay:
                    await self.sleep(result.suspend_seconds)
                elif cursor is not None:
                    outcome.cursor = cursor
                    outcome.resume_at = datetime.now(timezone.utc) + timedelta(
                        seconds=result.suspend_seconds
                    )
                    outcome.logs.append(
                        f"Suspended for {result.suspend_seconds:g}s, resuming at '{cursor}'"
                    )
                    outcome.status = RunState.SUSPENDED
                    return outcome

        return self._finish(outcome, RunState.SUCCESS)

    async def _execute_node(
        self, node: WorkflowNode, context: ExecutionContext
    ) -> NodeExecutionResult:
        node_handler = self.handlers.get(node.type)
        if node_handler is None:
            return NodeExecutionResult(
                success=False, error=f"No handler registered for node type '{node.type.value}'"
            )

        try:
            return await node_handler(node, context)
        except CollaboratorNotConfigured as e:
            return NodeExecutionResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Node %s (%s) raised", node.id, node.type.value)
            return NodeExecutionResult(success=False, error=f"{type(e).__name__}: {e}")

    def _finish(
        self, outcome: RunOutcome, status: RunState, error: str | None = None
    ) -> RunOutcome:
        outcome.status = status
        outcome.error = error
        if status == RunState.SUCCESS:
            outcome.logs.append(f"Workflow completed after {len(outcome.steps)} nodes")
        else:
            outcome.logs.append(f"Workflow failed: {error}")
        return outcome
