from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from leadflow.api.auth import verify_api_key
from leadflow.api.schemas import (
    EnqueueResponse,
    ExecutionResponse,
    ExecutionStatsResponse,
    QueueStatsResponse,
    TaskCreate,
    TaskResponse,
    TriggerCreate,
    TriggerExecutionResponse,
    TriggerResponse,
    WorkflowCreate,
    WorkflowExecuteRequest,
    WorkflowResponse,
    WorkflowUpdate,
)
from leadflow.core.engine import Engine
from leadflow.core.graph import WorkflowGraph, validate_workflow
from leadflow.core.models import TaskType, TriggerType
from leadflow.core.task_queue import QueueFullError, Task
from leadflow.core.triggers import next_run_time
from leadflow.db import repository
from leadflow.db.database import get_db

router = APIRouter()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        type=task.type,
        status=task.status,
        priority=task.priority,
        data=task.data,
        created_at=task.created_at.isoformat(),
        started_at=_iso(task.started_at),
        completed_at=_iso(task.completed_at),
        error=task.error,
        retry_count=task.retry_count,
        max_retries=task.max_retries,
    )


def _workflow_response(wf, warnings: list[str] | None = None) -> WorkflowResponse:
    return WorkflowResponse(
        id=wf.id,
        user_id=wf.user_id,
        name=wf.name,
        nodes=wf.nodes,
        edges=wf.edges,
        is_active=wf.is_active,
        priority=wf.priority,
        created_at=wf.created_at,
        updated_at=wf.updated_at,
        warnings=warnings or [],
    )


def _trigger_response(trigger) -> TriggerResponse:
    return TriggerResponse(
        id=trigger.id,
        workflow_id=trigger.workflow_id,
        trigger_type=trigger.trigger_type,
        config=trigger.config,
        is_active=trigger.is_active,
        last_run_at=trigger.last_run_at,
        next_run_at=trigger.next_run_at,
    )


def _enqueue(engine: Engine, task_type: TaskType, data: dict, priority, max_retries=None) -> str:
    try:
        return engine.queue.add_task(task_type, data, priority, max_retries)
    except QueueFullError as e:
        raise HTTPException(status_code=429, detail=str(e))


def _require_workflow(db: Session, workflow_id: str):
    wf = repository.get_workflow(db, workflow_id)
    if not wf:
        raise HTTPException(
            status_code=404, detail=f"Workflow '{workflow_id}' not found"
        )
    return wf


@router.get("/health")
def health(request: Request):
    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "ok",
        "processor_running": bool(engine and engine.processor.is_running),
    }


# ── Workflows ───────────────────────────────────────────────────────────────


@router.post(
    "/workflows",
    response_model=WorkflowResponse,
    dependencies=[Depends(verify_api_key)],
)
def create_workflow(workflow: WorkflowCreate, db: Session = Depends(get_db)):
    if repository.get_workflow(db, workflow.id):
        raise HTTPException(
            status_code=409, detail=f"Workflow '{workflow.id}' already exists"
        )

    definition = workflow.model_dump(include={"nodes", "edges"}, exclude_none=True)
    errors = validate_workflow(definition)
    if errors:
        raise HTTPException(status_code=400, detail={"errors": errors})

    unreachable = WorkflowGraph.from_definition(definition).unreachable_nodes()
    warnings = [f"Node '{node_id}' is unreachable and will never run" for node_id in unreachable]

    wf = repository.create_workflow(
        db,
        workflow.id,
        workflow.user_id,
        workflow.name,
        definition["nodes"],
        definition.get("edges", []),
        is_active=workflow.is_active,
        priority=workflow.priority.value,
        timezone=workflow.timezone,
        cron_expression=workflow.cron_expression,
        target_business_type=workflow.target_business_type,
        keywords=workflow.keywords,
    )
    return _workflow_response(wf, warnings)


@router.get(
    "/workflows",
    response_model=list[WorkflowResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_workflows(user_id: str | None = None, db: Session = Depends(get_db)):
    return [_workflow_response(w) for w in repository.list_workflows(db, user_id)]


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    dependencies=[Depends(verify_api_key)],
)
def get_workflow(workflow_id: str, db: Session = Depends(get_db)):
    return _workflow_response(_require_workflow(db, workflow_id))


@router.patch(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    dependencies=[Depends(verify_api_key)],
)
def update_workflow(
    workflow_id: str, changes: WorkflowUpdate, db: Session = Depends(get_db)
):
    _require_workflow(db, workflow_id)
    fields = changes.model_dump(exclude_none=True)
    if "priority" in fields:
        fields["priority"] = fields["priority"].value
    return _workflow_response(repository.update_workflow(db, workflow_id, **fields))


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=EnqueueResponse,
    dependencies=[Depends(verify_api_key)],
)
def execute_workflow(
    workflow_id: str,
    request: WorkflowExecuteRequest,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    wf = _require_workflow(db, workflow_id)
    data = {
        "workflowId": wf.id,
        "userId": request.user_id or wf.user_id,
        "variables": request.variables,
    }
    if request.business_id:
        data["businessId"] = request.business_id

    task_id = _enqueue(
        engine, TaskType.WORKFLOW, data, request.priority or wf.priority
    )
    return EnqueueResponse(task_id=task_id)


@router.post(
    "/workflows/{workflow_id}/triggers",
    response_model=TriggerResponse,
    dependencies=[Depends(verify_api_key)],
)
def create_trigger(
    workflow_id: str, trigger: TriggerCreate, db: Session = Depends(get_db)
):
    wf = _require_workflow(db, workflow_id)
    config = trigger.model_dump(exclude={"trigger_type"}, exclude_none=True)

    next_run_at = None
    if trigger.trigger_type in (TriggerType.SCHEDULE, TriggerType.NEW_BUSINESS):
        cron = trigger.cron_expression or wf.cron_expression
        next_run_at = next_run_time(cron, wf.timezone).isoformat()

    created = repository.create_trigger(
        db, workflow_id, trigger.trigger_type.value, config, next_run_at
    )
    return _trigger_response(created)


@router.get(
    "/workflows/{workflow_id}/triggers",
    response_model=list[TriggerResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_triggers(workflow_id: str, db: Session = Depends(get_db)):
    _require_workflow(db, workflow_id)
    return [_trigger_response(t) for t in repository.list_triggers(db, workflow_id)]


@router.get(
    "/workflows/{workflow_id}/trigger-executions",
    response_model=list[TriggerExecutionResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_trigger_executions(
    workflow_id: str,
    limit: int = 100,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    _require_workflow(db, workflow_id)
    return [
        TriggerExecutionResponse(
            id=e.id,
            trigger_id=e.trigger_id,
            business_id=e.business_id,
            status=e.status,
            executed_at=e.executed_at,
            error=e.error,
        )
        for e in engine.history.list_trigger_executions(workflow_id, limit)
    ]


@router.post("/triggers/{trigger_id}/fire", dependencies=[Depends(verify_api_key)])
async def fire_trigger(trigger_id: str, engine: Engine = Depends(get_engine)):
    try:
        queued = await engine.triggers.fire_trigger(trigger_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Trigger '{trigger_id}' not found")
    return {"queued": queued}


# ── Execution history ───────────────────────────────────────────────────────


@router.get(
    "/executions",
    response_model=list[ExecutionResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_executions(
    workflow_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    engine: Engine = Depends(get_engine),
):
    runs = engine.history.list_runs(workflow_id, status, limit)
    return [
        ExecutionResponse(
            id=r.id,
            workflow_id=r.workflow_id,
            user_id=r.user_id,
            business_id=r.business_id,
            status=r.status,
            started_at=r.started_at,
            completed_at=r.completed_at,
            error=r.error,
            logs=r.logs or [],
        )
        for r in runs
    ]


@router.get(
    "/executions/stats",
    response_model=ExecutionStatsResponse,
    dependencies=[Depends(verify_api_key)],
)
def execution_stats(workflow_id: str | None = None, engine: Engine = Depends(get_engine)):
    return ExecutionStatsResponse(**engine.history.run_stats(workflow_id))


# ── Task queue ──────────────────────────────────────────────────────────────


@router.post(
    "/tasks",
    response_model=EnqueueResponse,
    dependencies=[Depends(verify_api_key)],
)
def enqueue_task(task: TaskCreate, engine: Engine = Depends(get_engine)):
    task_id = _enqueue(engine, task.type, task.data, task.priority, task.max_retries)
    return EnqueueResponse(task_id=task_id)


@router.get(
    "/tasks",
    response_model=list[TaskResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_tasks(type: TaskType, engine: Engine = Depends(get_engine)):
    return [_task_response(t) for t in engine.queue.get_tasks_by_type(type)]


@router.get(
    "/tasks/active",
    response_model=list[TaskResponse],
    dependencies=[Depends(verify_api_key)],
)
def list_active_tasks(engine: Engine = Depends(get_engine)):
    return [_task_response(t) for t in engine.queue.get_active_tasks()]


@router.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    dependencies=[Depends(verify_api_key)],
)
def get_task(task_id: str, engine: Engine = Depends(get_engine)):
    task = engine.queue.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task '{task_id}' not found")
    return _task_response(task)


@router.delete("/tasks/{task_id}", dependencies=[Depends(verify_api_key)])
def cancel_task(task_id: str, engine: Engine = Depends(get_engine)):
    if not engine.queue.get_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task '{task_id}' not found")
    return {"cancelled": engine.queue.cancel_task(task_id)}


@router.post("/tasks/clear", dependencies=[Depends(verify_api_key)])
def clear_tasks(type: TaskType | None = None, engine: Engine = Depends(get_engine)):
    return {"cleared": engine.queue.clear_completed(type)}


@router.get(
    "/queue/stats",
    response_model=list[QueueStatsResponse],
    dependencies=[Depends(verify_api_key)],
)
def queue_stats(engine: Engine = Depends(get_engine)):
    return [
        QueueStatsResponse(
            type=s.type,
            pending=s.pending,
            running=s.running,
            completed=s.completed,
            failed=s.failed,
            cancelled=s.cancelled,
            avg_processing_time=s.avg_processing_time,
        )
        for s in engine.queue.get_all_stats()
    ]
