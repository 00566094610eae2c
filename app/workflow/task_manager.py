import uuid
import logging
from typing import Dict, Any, List

from app.database import db
from app.errors import NotFoundError, PersistenceError
from app.models.document import DocumentStatus
from app.models.task import Task, TaskType, TaskAction, TaskResolution

logger = logging.getLogger(__name__)

class TaskManager:
    """
    Owns task records. Document consequences of a completed task are applied
    by the orchestrator.
    """

    async def create_manual_approval_task(self, document_id: str, extracted_data: Dict[str, Any],
                                          process_instance_id: str, amount: float) -> str:
        task_id = f"TASK-{uuid.uuid4().hex[:8].upper()}"
        task = Task(
            task_id=task_id,
            document_id=document_id,
            task_type=TaskType.MANUAL_APPROVAL,
            payload={
                "extracted_data": extracted_data,
                "process_instance_id": process_instance_id,
                "requires_approval": True,
                "amount": amount,
            }
        )
        await db.tasks.create(task)

        moved = await db.documents.transition(document_id, DocumentStatus.AWAITING_APPROVAL)
        if not moved:
            # A task for a document that never awaits approval must not show up as pending
            await db.tasks.withdraw(task_id)
            raise PersistenceError(f"Document {document_id} could not move to awaiting_approval")

        logger.info(f"Manual approval task created: {task_id} ({document_id}, amount {amount})")
        return task_id

    async def complete_task(self, task_id: str, action: str, reason: str = "", actor: str = "user") -> Task:
        """
        Resolve a pending task. A missing or already completed task raises
        NotFoundError; the pending check and the write are one atomic update.
        """
        resolution = TaskResolution(action=TaskAction(action), actor=actor, reason=reason or "")
        task = await db.tasks.complete_if_pending(task_id, resolution)
        if not task:
            raise NotFoundError("Task not found or already completed")

        logger.info(f"Task {task_id} completed by {actor}: {resolution.action}")
        return task

    async def get_pending_for_document(self, document_id: str) -> List[Task]:
        return await db.tasks.get_pending_for_document(document_id)

task_manager = TaskManager()
