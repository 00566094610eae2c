from typing import Optional

from fastapi import APIRouter, Body
from pydantic import BaseModel

from app.errors import ValidationError
from app.models.task import TaskAction
from app.workflow.orchestrator import workflow_orchestrator

router = APIRouter(prefix="/tasks", tags=["Tasks"])

class TaskDecision(BaseModel):
    action: Optional[str] = None
    reason: Optional[str] = None

@router.get("")
async def list_pending_tasks():
    tasks = await workflow_orchestrator.get_pending_tasks()
    return {"tasks": tasks, "count": len(tasks)}

@router.post("/{task_id}/complete")
async def complete_task(task_id: str, decision: Optional[TaskDecision] = Body(None)):
    decision = decision or TaskDecision()
    if not decision.action:
        raise ValidationError("Missing action field (approve/reject)")

    action = decision.action.strip().lower()
    if action not in [a.value for a in TaskAction]:
        raise ValidationError('Action must be either "approve" or "reject"')

    return await workflow_orchestrator.complete_task(task_id, action, decision.reason or "")
