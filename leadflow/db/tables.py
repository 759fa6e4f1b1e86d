from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, Text
from leadflow.db.database import Base


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    nodes = Column(JSON, nullable=False)
    edges = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    priority = Column(String, nullable=False, default="high")
    timezone = Column(String, nullable=False, default="UTC")
    cron_expression = Column(String, nullable=True)
    target_business_type = Column(String, nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class WorkflowExecutionLog(Base):
    __tablename__ = "workflow_execution_logs"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    user_id = Column(String, nullable=False)
    business_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="running")
    started_at = Column(String, nullable=False)
    completed_at = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    logs = Column(JSON, nullable=False, default=list)


class WorkflowTrigger(Base):
    __tablename__ = "workflow_triggers"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    trigger_type = Column(String, nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_run_at = Column(String, nullable=True)
    next_run_at = Column(String, nullable=True)
    created_at = Column(String, nullable=False)


class WorkflowTriggerExecution(Base):
    __tablename__ = "workflow_trigger_executions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String, nullable=False)
    trigger_id = Column(String, nullable=False)
    business_id = Column(String, nullable=True)
    status = Column(String, nullable=False)
    executed_at = Column(String, nullable=False)
    error = Column(Text, nullable=True)


class SuspendedRun(Base):
    __tablename__ = "suspended_runs"

    id = Column(String, ForeignKey("workflow_execution_logs.id"), primary_key=True)
    workflow_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    business_id = Column(String, nullable=True)
    snapshot = Column(JSON, nullable=False)
    cursor = Column(String, nullable=False)
    variables = Column(JSON, nullable=False, default=dict)
    logs = Column(JSON, nullable=False, default=list)
    resume_at = Column(String, nullable=False)
    resumed = Column(Boolean, nullable=False, default=False)
