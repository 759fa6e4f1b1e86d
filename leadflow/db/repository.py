import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from leadflow.db.tables import Workflow, WorkflowTrigger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_workflow(
    db: Session,
    workflow_id: str,
    user_id: str,
    name: str,
    nodes: list[dict],
    edges: list[dict],
    **fields,
) -> Workflow:
    now = _now()
    workflow = Workflow(
        id=workflow_id,
        user_id=user_id,
        name=name,
        nodes=nodes,
        edges=edges,
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(workflow)
    db.commit()
    db.refresh(workflow)
    return workflow


def get_workflow(db: Session, workflow_id: str) -> Workflow | None:
    return db.query(Workflow).filter(Workflow.id == workflow_id).first()


def list_workflows(db: Session, user_id: str | None = None) -> list[Workflow]:
    query = db.query(Workflow)
    if user_id is not None:
        query = query.filter(Workflow.user_id == user_id)
    return query.order_by(Workflow.created_at).all()


def update_workflow(db: Session, workflow_id: str, **fields) -> Workflow | None:
    workflow = get_workflow(db, workflow_id)
    if workflow:
        for key, value in fields.items():
            setattr(workflow, key, value)
        workflow.updated_at = _now()
        db.commit()
        db.refresh(workflow)
    return workflow


def create_trigger(
    db: Session,
    workflow_id: str,
    trigger_type: str,
    config: dict,
    next_run_at: str | None = None,
) -> WorkflowTrigger:
    trigger = WorkflowTrigger(
        id=str(uuid.uuid4()),
        workflow_id=workflow_id,
        trigger_type=trigger_type,
        config=config,
        is_active=True,
        next_run_at=next_run_at,
        created_at=_now(),
    )
    db.add(trigger)
    db.commit()
    db.refresh(trigger)
    return trigger


def get_trigger(db: Session, trigger_id: str) -> WorkflowTrigger | None:
    return db.query(WorkflowTrigger).filter(WorkflowTrigger.id == trigger_id).first()


def list_triggers(db: Session, workflow_id: str) -> list[WorkflowTrigger]:
    return (
        db.query(WorkflowTrigger)
        .filter(WorkflowTrigger.workflow_id == workflow_id)
        .order_by(WorkflowTrigger.created_at)
        .all()
    )


def get_active_triggers(db: Session) -> list[WorkflowTrigger]:
    return db.query(WorkflowTrigger).filter(WorkflowTrigger.is_active.is_(True)).all()


def update_trigger_schedule(
    db: Session, trigger_id: str, last_run_at: str, next_run_at: str | None
):
    trigger = get_trigger(db, trigger_id)
    if trigger:
        trigger.last_run_at = last_run_at
        trigger.next_run_at = next_run_at
        db.commit()
