import asyncio
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from leadflow.core.collaborators import Collaborators
from leadflow.core.models import TaskPriority, TaskType, TriggerType
from leadflow.core.task_queue import QueueFullError, TaskQueue
from leadflow.db import repository
from leadflow.db.history import ExecutionHistoryStore

logger = logging.getLogger(__name__)

DEFAULT_RERUN = timedelta(hours=24)


def next_run_time(
    cron_expression: str | None, tz: str = "UTC", now: datetime | None = None
) -> datetime:
    """Next fire time for a 5-field cron expression, or now + 24h when there is none."""
    now = now or datetime.now(timezone.utc)
    if cron_expression:
        try:
            trigger = CronTrigger.from_crontab(cron_expression, timezone=tz)
            fire_time = trigger.get_next_fire_time(None, now)
            if fire_time is not None:
                return fire_time.astimezone(timezone.utc)
        except (ValueError, LookupError) as e:
            logger.error("Invalid cron expression %r: %s", cron_expression, e)
    return now + DEFAULT_RERUN


class WorkflowTriggerService:
    """Turns due triggers and expired delays into queued workflow tasks."""

    def __init__(
        self,
        queue: TaskQueue,
        history: ExecutionHistoryStore,
        session_factory: sessionmaker,
        collaborators: Collaborators | None = None,
    ):
        self.queue = queue
        self.history = history
        self.session_factory = session_factory
        self.collaborators = collaborators or Collaborators()
        self._queued_resumptions: set[str] = set()

    async def run_forever(self, interval: float):
        logger.info("Workflow trigger processor started (interval: %ss)", interval)
        while True:
            try:
                await self.process_due_triggers()
                self.process_due_resumptions()
            except Exception as e:
                logger.error("Trigger tick error: %s", e)
            await asyncio.sleep(interval)

    async def process_due_triggers(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            due = [
                t
                for t in repository.get_active_triggers(db)
                if t.trigger_type in (TriggerType.SCHEDULE, TriggerType.NEW_BUSINESS)
                and t.next_run_at is not None
                and datetime.fromisoformat(t.next_run_at) <= now
            ]
        finally:
            db.close()

        fired = 0
        for trigger in due:
            fired += await self.fire_trigger(trigger.id, now=now)
        return fired

    async def fire_trigger(self, trigger_id: str, now: datetime | None = None) -> int:
        """Enqueue workflow tasks for one trigger. Returns how many were queued."""
        now = now or datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            trigger = repository.get_trigger(db, trigger_id)
            if trigger is None:
                raise KeyError(f"Trigger '{trigger_id}' not found")
            workflow = repository.get_workflow(db, trigger.workflow_id)
            config = dict(trigger.config or {})

            queued = 0
            if workflow is None or not workflow.is_active:
                error = "Workflow not found" if workflow is None else "Workflow is not active"
                self.history.record_trigger_execution(
                    trigger.workflow_id, trigger.id, "failed", error=error
                )
                logger.warning("Trigger %s skipped: %s", trigger.id, error)
            else:
                for business_id in await self._targets(trigger.trigger_type, workflow, config):
                    queued += self._enqueue(trigger, workflow, business_id)

            cron = config.get("cron_expression") or (workflow.cron_expression if workflow else None)
            tz = workflow.timezone if workflow else "UTC"
            next_run = (
                next_run_time(cron, tz, now).isoformat()
                if trigger.trigger_type in (TriggerType.SCHEDULE, TriggerType.NEW_BUSINESS)
                else None
            )
            repository.update_trigger_schedule(db, trigger.id, now.isoformat(), next_run)
        finally:
            db.close()

        return queued

    async def _targets(self, trigger_type: str, workflow, config: dict) -> list[str | None]:
        """Businesses a trigger runs against. [None] means one run with no business."""
        if self.collaborators.business_finder is None:
            return [None]

        types = config.get("target_business_types") or (
            [workflow.target_business_type] if workflow.target_business_type else []
        )
        businesses = await self.collaborators.business_finder(workflow.user_id, types)
        if trigger_type == TriggerType.NEW_BUSINESS or businesses:
            return [b["id"] for b in businesses]
        return [None]

    def _enqueue(self, trigger, workflow, business_id: str | None) -> int:
        data = {"workflowId": workflow.id, "userId": workflow.user_id}
        if business_id:
            data["businessId"] = business_id
        try:
            self.queue.add_task(TaskType.WORKFLOW, data, TaskPriority(workflow.priority))
        except QueueFullError as e:
            self.history.record_trigger_execution(
                workflow.id, trigger.id, "failed", error=str(e), business_id=business_id
            )
            return 0
        self.history.record_trigger_execution(
            workflow.id, trigger.id, "success", business_id=business_id
        )
        return 1

    def process_due_resumptions(self, now: datetime | None = None) -> int:
        queued = 0
        due = self.history.due_suspended_runs(now)
        # Runs that left the due list were picked up by the runner.
        self._queued_resumptions &= {row.id for row in due}
        for row in due:
            if row.id in self._queued_resumptions:
                continue
            try:
                self.queue.add_task(TaskType.WORKFLOW, {"resumeRunId": row.id}, TaskPriority.HIGH)
            except QueueFullError as e:
                logger.warning("Could not resume run %s yet: %s", row.id, e)
                continue
            self._queued_resumptions.add(row.id)
            queued += 1
            logger.info("Queued resumption of run %s", row.id)
        return queued
