import logging
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy.orm import sessionmaker

from leadflow.core.collaborators import Collaborators
from leadflow.core.executors import ExecutorResult
from leadflow.core.graph import WorkflowDefinitionError, WorkflowGraph
from leadflow.core.interpreter import RunOutcome, WorkflowInterpreter
from leadflow.core.models import RunState
from leadflow.db import repository
from leadflow.db.history import ExecutionHistoryStore

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """Executes `workflow` tasks.

    Task data for a fresh run: workflowId, userId, businessId (optional),
    variables (optional). A continuation of a suspended run carries only
    resumeRunId.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        history: ExecutionHistoryStore,
        collaborators: Collaborators,
        max_inline_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session_factory = session_factory
        self.history = history
        self.collaborators = collaborators
        self.max_inline_delay = max_inline_delay
        self.sleep = sleep
        self.http_transport = http_transport

    def _interpreter(self, graph: WorkflowGraph) -> WorkflowInterpreter:
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return WorkflowInterpreter(
            graph,
            collaborators=self.collaborators,
            max_inline_delay=self.max_inline_delay,
            http_transport=self.http_transport,
            **kwargs,
        )

    async def run_task(self, data: dict[str, Any]) -> ExecutorResult:
        if data.get("resumeRunId"):
            return await self.resume(data["resumeRunId"])

        workflow_id = data.get("workflowId")
        user_id = data.get("userId")
        if not workflow_id or not user_id:
            return ExecutorResult(success=False, error="workflowId and userId are required")
        return await self.start(
            workflow_id, user_id, data.get("businessId"), data.get("variables")
        )

    async def start(
        self,
        workflow_id: str,
        user_id: str,
        business_id: str | None = None,
        variables: dict[str, Any] | None = None,
    ) -> ExecutorResult:
        db = self.session_factory()
        try:
            workflow = repository.get_workflow(db, workflow_id)
            definition = (
                {"nodes": workflow.nodes, "edges": workflow.edges} if workflow else None
            )
        finally:
            db.close()

        if definition is None:
            return ExecutorResult(success=False, error=f"Workflow '{workflow_id}' not found")

        run_id = self.history.record_run_start(workflow_id, user_id, business_id)
        try:
            graph = WorkflowGraph.from_definition(definition)
        except WorkflowDefinitionError as e:
            self.history.record_run_complete(
                run_id, RunState.FAILED, error=str(e), logs=[f"Workflow failed: {e}"]
            )
            return ExecutorResult(success=False, error=str(e))

        try:
            context = await self._seed_variables(business_id, variables)
            outcome = await self._interpreter(graph).run(
                context,
                workflow_id=workflow_id,
                user_id=user_id,
                business_id=business_id,
                run_id=run_id,
            )
        except Exception as e:
            return self._abort(run_id, workflow_id, e)
        return self._record(run_id, workflow_id, user_id, business_id, graph, outcome)

    async def resume(self, run_id: str) -> ExecutorResult:
        suspended = self.history.get_suspended_run(run_id)
        if suspended is None:
            return ExecutorResult(success=False, error=f"Suspended run '{run_id}' not found")
        if suspended.resumed:
            # A retried continuation reports the outcome already recorded.
            run = self.history.get_run(run_id)
            if run is not None and run.status == RunState.FAILED:
                return ExecutorResult(success=False, error=run.error, output={"runId": run_id})
            logger.info("Run %s was already resumed, skipping", run_id)
            return ExecutorResult(success=True, output={"runId": run_id})

        self.history.mark_resumed(run_id)
        try:
            # Resumed runs execute against the snapshot taken when they started.
            graph = WorkflowGraph.from_definition(suspended.snapshot)
            outcome = await self._interpreter(graph).run(
                suspended.variables,
                start_at=suspended.cursor,
                logs=suspended.logs,
                workflow_id=suspended.workflow_id,
                user_id=suspended.user_id,
                business_id=suspended.business_id,
                run_id=run_id,
            )
        except Exception as e:
            return self._abort(run_id, suspended.workflow_id, e, logs=suspended.logs)
        return self._record(
            run_id,
            suspended.workflow_id,
            suspended.user_id,
            suspended.business_id,
            graph,
            outcome,
        )

    async def _seed_variables(
        self, business_id: str | None, variables: dict[str, Any] | None
    ) -> dict[str, Any]:
        seeded: dict[str, Any] = {}
        if business_id:
            seeded["businessId"] = business_id
            if self.collaborators.business_lookup is not None:
                business = await self.collaborators.business_lookup(business_id)
                if business:
                    seeded.update(business)
                    seeded["business"] = business
        seeded.update(variables or {})
        return seeded

    def _abort(
        self,
        run_id: str,
        workflow_id: str,
        exc: Exception,
        logs: list[str] | None = None,
    ) -> ExecutorResult:
        logger.exception("Run %s of workflow %s raised", run_id, workflow_id)
        error = str(exc) or type(exc).__name__
        self.history.record_run_complete(
            run_id,
            RunState.FAILED,
            error=error,
            logs=list(logs or []) + [f"Workflow failed: {error}"],
        )
        return ExecutorResult(success=False, error=error, output={"runId": run_id})

    def _record(
        self,
        run_id: str,
        workflow_id: str,
        user_id: str,
        business_id: str | None,
        graph: WorkflowGraph,
        outcome: RunOutcome,
    ) -> ExecutorResult:
        if outcome.status == RunState.SUSPENDED:
            self.history.save_suspended_run(
                run_id,
                workflow_id,
                user_id,
                business_id,
                graph.to_definition(),
                outcome.cursor,
                outcome.variables,
                outcome.logs,
                outcome.resume_at,
            )
            logger.info("Run %s of workflow %s suspended until %s", run_id, workflow_id, outcome.resume_at)
            return ExecutorResult(success=True, output={"runId": run_id, "status": "suspended"})

        self.history.record_run_complete(run_id, outcome.status, outcome.error, outcome.logs)
        if outcome.success:
            logger.info("Run %s of workflow %s succeeded", run_id, workflow_id)
            return ExecutorResult(success=True, output={"runId": run_id, "status": "success"})

        logger.warning("Run %s of workflow %s failed: %s", run_id, workflow_id, outcome.error)
        return ExecutorResult(success=False, error=outcome.error, output={"runId": run_id})
