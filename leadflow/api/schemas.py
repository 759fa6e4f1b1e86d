from typing import Any

from pydantic import BaseModel, Field

from leadflow.core.models import TaskPriority, TaskStatus, TaskType, TriggerType


# --- Request models ---

class NodeDefinition(BaseModel):
    id: str
    type: str
    position: dict[str, float] | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class EdgeDefinition(BaseModel):
    id: str | None = None
    source: str
    target: str
    sourceHandle: str | None = None
    label: str | None = None


class WorkflowCreate(BaseModel):
    id: str
    user_id: str
    name: str
    nodes: list[NodeDefinition]
    edges: list[EdgeDefinition] = Field(default_factory=list)
    is_active: bool = False
    priority: TaskPriority = TaskPriority.HIGH
    timezone: str = "UTC"
    cron_expression: str | None = None
    target_business_type: str | None = None
    keywords: list[str] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    is_active: bool | None = None
    name: str | None = None
    priority: TaskPriority | None = None
    cron_expression: str | None = None


class WorkflowExecuteRequest(BaseModel):
    user_id: str | None = None
    business_id: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    priority: TaskPriority | None = None


class TriggerCreate(BaseModel):
    trigger_type: TriggerType
    cron_expression: str | None = None
    target_business_types: list[str] = Field(default_factory=list)


class TaskCreate(BaseModel):
    type: TaskType
    data: dict[str, Any] = Field(default_factory=dict)
    priority: TaskPriority = TaskPriority.MEDIUM
    max_retries: int | None = Field(default=None, ge=0)


# --- Response models ---

class WorkflowResponse(BaseModel):
    id: str
    user_id: str
    name: str
    nodes: list[dict]
    edges: list[dict]
    is_active: bool
    priority: str
    created_at: str
    updated_at: str
    warnings: list[str] = Field(default_factory=list)


class TriggerResponse(BaseModel):
    id: str
    workflow_id: str
    trigger_type: str
    config: dict
    is_active: bool
    last_run_at: str | None = None
    next_run_at: str | None = None


class TriggerExecutionResponse(BaseModel):
    id: int
    trigger_id: str
    business_id: str | None = None
    status: str
    executed_at: str
    error: str | None = None


class TaskResponse(BaseModel):
    id: str
    type: TaskType
    status: TaskStatus
    priority: TaskPriority
    data: dict[str, Any]
    created_at: str
    started_at: str | None = None
    completed_at: str | None = None
    error: str | None = None
    retry_count: int
    max_retries: int | None = None


class EnqueueResponse(BaseModel):
    task_id: str


class QueueStatsResponse(BaseModel):
    type: TaskType
    pending: int
    running: int
    completed: int
    failed: int
    cancelled: int
    avg_processing_time: float


class ExecutionResponse(BaseModel):
    id: str
    workflow_id: str
    user_id: str
    business_id: str | None = None
    status: str
    started_at: str
    completed_at: str | None = None
    error: str | None = None
    logs: list[str]


class ExecutionStatsResponse(BaseModel):
    total: int
    running: int
    success: int
    failed: int
    success_rate: float
