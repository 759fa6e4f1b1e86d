"""Execution History Store.

Durable record of workflow runs, trigger firings and suspended runs. Each
method opens its own short-lived session, so the store can be shared by the
queue processor, the trigger loop and request handlers.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from leadflow.core.models import RunState
from leadflow.db.tables import (
    SuspendedRun,
    WorkflowExecutionLog,
    WorkflowTriggerExecution,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ExecutionHistoryStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record_run_start(
        self, workflow_id: str, user_id: str, business_id: str | None = None
    ) -> str:
        run_id = str(uuid.uuid4())
        db = self.session_factory()
        try:
            db.add(
                WorkflowExecutionLog(
                    id=run_id,
                    workflow_id=workflow_id,
                    user_id=user_id,
                    business_id=business_id,
                    status=RunState.RUNNING.value,
                    started_at=_now(),
                    logs=[],
                )
            )
            db.commit()
        finally:
            db.close()
        return run_id

    def record_run_complete(
        self,
        run_id: str,
        status: RunState,
        error: str | None = None,
        logs: list[str] | None = None,
    ) -> bool:
        """Close a run. Returns False if the run is unknown or already closed."""
        status = RunState(status)
        if status not in (RunState.SUCCESS, RunState.FAILED):
            raise ValueError(f"'{status.value}' is not a terminal run status")

        db = self.session_factory()
        try:
            run = db.get(WorkflowExecutionLog, run_id)
            if run is None or run.status != RunState.RUNNING.value:
                logger.warning("Ignoring completion of run %s (not running)", run_id)
                return False
            run.status = status.value
            run.completed_at = _now()
            run.error = error
            run.logs = list(logs or [])
            db.commit()
            return True
        finally:
            db.close()

    def record_trigger_execution(
        self,
        workflow_id: str,
        trigger_id: str,
        status: str,
        error: str | None = None,
        business_id: str | None = None,
    ) -> None:
        db = self.session_factory()
        try:
            db.add(
                WorkflowTriggerExecution(
                    workflow_id=workflow_id,
                    trigger_id=trigger_id,
                    business_id=business_id,
                    status=status,
                    executed_at=_now(),
                    error=error,
                )
            )
            db.commit()
        finally:
            db.close()

    def get_run(self, run_id: str) -> WorkflowExecutionLog | None:
        db = self.session_factory()
        try:
            return db.get(WorkflowExecutionLog, run_id)
        finally:
            db.close()

    def list_runs(
        self,
        workflow_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowExecutionLog]:
        db = self.session_factory()
        try:
            query = db.query(WorkflowExecutionLog)
            if workflow_id is not None:
                query = query.filter(WorkflowExecutionLog.workflow_id == workflow_id)
            if status is not None:
                query = query.filter(WorkflowExecutionLog.status == status)
            return (
                query.order_by(WorkflowExecutionLog.started_at.desc()).limit(limit).all()
            )
        finally:
            db.close()

    def list_trigger_executions(
        self, workflow_id: str, limit: int = 100
    ) -> list[WorkflowTriggerExecution]:
        db = self.session_factory()
        try:
            return (
                db.query(WorkflowTriggerExecution)
                .filter(WorkflowTriggerExecution.workflow_id == workflow_id)
                .order_by(WorkflowTriggerExecution.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()

    def run_stats(self, workflow_id: str | None = None) -> dict[str, Any]:
        db = self.session_factory()
        try:
            query = db.query(WorkflowExecutionLog.status, func.count())
            if workflow_id is not None:
                query = query.filter(WorkflowExecutionLog.workflow_id == workflow_id)
            counts = dict(query.group_by(WorkflowExecutionLog.status).all())
        finally:
            db.close()

        total = sum(counts.values())
        finished = counts.get("success", 0) + counts.get("failed", 0)
        return {
            "total": total,
            "running": counts.get("running", 0),
            "success": counts.get("success", 0),
            "failed": counts.get("failed", 0),
            "success_rate": counts.get("success", 0) / finished if finished else 0.0,
        }

    def save_suspended_run(
        self,
        run_id: str,
        workflow_id: str,
        user_id: str,
        business_id: str | None,
        snapshot: dict,
        cursor: str,
        variables: dict[str, Any],
        logs: list[str],
        resume_at: datetime,
    ) -> None:
        db = self.session_factory()
        try:
            row = db.get(SuspendedRun, run_id)
            if row is None:
                row = SuspendedRun(id=run_id)
                db.add(row)
            row.workflow_id = workflow_id
            row.user_id = user_id
            row.business_id = business_id
            row.snapshot = snapshot
            row.cursor = cursor
            row.variables = variables
            row.logs = logs
            row.resume_at = resume_at.isoformat()
            row.resumed = False
            db.commit()
        finally:
            db.close()

    def get_suspended_run(self, run_id: str) -> SuspendedRun | None:
        db = self.session_factory()
        try:
            return db.get(SuspendedRun, run_id)
        finally:
            db.close()

    def due_suspended_runs(self, now: datetime | None = None) -> list[SuspendedRun]:
        now = now or datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            waiting = db.query(SuspendedRun).filter(SuspendedRun.resumed.is_(False)).all()
        finally:
            db.close()
        return [row for row in waiting if datetime.fromisoformat(row.resume_at) <= now]

    def mark_resumed(self, run_id: str) -> None:
        db = self.session_factory()
        try:
            row = db.get(SuspendedRun, run_id)
            if row:
                row.resumed = True
                db.commit()
        finally:
            db.close()
