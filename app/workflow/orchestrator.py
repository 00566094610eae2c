import asyncio
import uuid
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from app.config import settings
from app.database import db
from app.errors import (
    WorkflowError,
    ValidationError,
    NotFoundError,
    RemoteEngineError,
    PersistenceError,
)
from app.models.document import Document, DocumentStatus
from app.models.task import TaskAction
from app.models.workflow import WorkflowCorrelation, CorrelationStatus
from app.models.notification import NotificationKind
from app.tools.document_processor import document_processor, DocumentProcessor
from app.tools.flowable_client import flowable_client, FlowableClient
from app.workflow.notifier import engine_notifier, EngineNotifier
from app.workflow.policy import resolve_amount, requires_manual_approval, automatic_approval_result
from app.workflow.task_manager import task_manager, TaskManager

logger = logging.getLogger(__name__)

class WorkflowOrchestrator:
    """
    Drives a document through its lifecycle and keeps one process engine
    instance in step with local decisions.

    Local state is the source of truth: status transitions and task resolutions
    are committed first, and engine signaling follows as best-effort notifications
    that are never allowed to undo them.
    """
    def __init__(
        self,
        processor: Optional[DocumentProcessor] = None,
        engine: Optional[FlowableClient] = None,
        tasks: Optional[TaskManager] = None,
        notifier: Optional[EngineNotifier] = None,
        threshold: Optional[float] = None,
    ):
        self.processor = processor or document_processor
        self.engine = engine or flowable_client
        self.tasks = tasks or task_manager
        self.notifier = notifier or engine_notifier
        self.threshold = settings.APPROVAL_THRESHOLD if threshold is None else threshold

    async def start_workflow(self, document_id: str, file_path: str, original_name: str) -> Dict[str, Any]:
        logger.info(f"Starting workflow for {document_id} ({original_name})")

        try:
            await db.documents.create(Document(document_id=document_id, filename=original_name, file_path=file_path))
        except DuplicateKeyError as e:
            raise ValidationError(f"Document id already in use: {document_id}") from e
        except PyMongoError as e:
            raise PersistenceError(f"Failed to create document record: {e}") from e

        process_instance_id: Optional[str] = None
        try:
            # 1. Extraction
            extracted_data = await self._extract(file_path)
            if not await db.documents.record_extraction(document_id, extracted_data):
                raise PersistenceError(f"Document {document_id} could not move to data_extracted")
            amount = resolve_amount(extracted_data)

            # 2. Remote instance; the correlation is written before anything references it
            process_instance_id = await self.engine.start_process_instance({
                "documentId": document_id,
                "filePath": file_path,
                "originalFilename": original_name,
                "amount": amount,
                "startTime": datetime.utcnow().isoformat(),
            })
            await self._correlate(document_id, process_instance_id, amount)
            logger.info(f"Started process {process_instance_id} for {document_id} (amount: {amount})")

            # Upload already happened locally, so the engine's upload step is acknowledged here
            await self.notifier.deliver(NotificationKind.UPLOAD_ACK, document_id, process_instance_id, max_attempts=1)

            # 3. Policy
            if requires_manual_approval(amount, self.threshold):
                task_id = await self.tasks.create_manual_approval_task(
                    document_id, extracted_data, process_instance_id, amount
                )
                await db.workflows.mark(document_id, CorrelationStatus.RUNNING, "manual_approval")
                return {
                    "document_id": document_id,
                    "process_instance_id": process_instance_id,
                    "task_id": task_id,
                    "status": DocumentStatus.AWAITING_APPROVAL.value,
                    "extracted": extracted_data,
                    "message": f"Document requires manual approval due to amount >= {self.threshold:g}",
                }

            await self.execute_auto_approval(document_id, process_instance_id)
            return {
                "document_id": document_id,
                "process_instance_id": process_instance_id,
                "status": DocumentStatus.APPROVED.value,
                "extracted": extracted_data,
                "message": "Document automatically approved",
            }

        except Exception as e:
            await self._fail(document_id, process_instance_id, e)
            if isinstance(e, WorkflowError):
                raise
            raise WorkflowError(f"Failed to start workflow: {e}") from e

    async def execute_auto_approval(self, document_id: str, process_instance_id: str) -> Dict[str, Any]:
        approval_result = automatic_approval_result(self.threshold)
        if not await db.documents.record_result(document_id, DocumentStatus.APPROVED, approval_result):
            raise PersistenceError(f"Document {document_id} could not move to approved")
        await db.workflows.mark(document_id, CorrelationStatus.COMPLETED, "auto_approved")

        self.notifier.dispatch(NotificationKind.COMPLETION, document_id, process_instance_id, approval_result)
        logger.info(f"Document auto-approved: {document_id}")
        return approval_result

    async def complete_task(self, task_id: str, action: str, reason: str = "", actor: str = "user") -> Dict[str, Any]:
        try:
            action = TaskAction((action or "").strip().lower())
        except ValueError as e:
            raise ValidationError('Action must be either "approve" or "reject"') from e

        task = await self.tasks.complete_task(task_id, action.value, reason, actor)
        resolution = task.resolution.to_mongo()
        resolution["completed_at"] = task.resolution.completed_at.isoformat()

        target = DocumentStatus.APPROVED if action == TaskAction.APPROVE else DocumentStatus.REJECTED
        workflow_result = {"status": target.value, "approval_type": "manual", **resolution}

        if not await db.documents.record_result(task.document_id, target, workflow_result):
            # The task is already resolved; the document no longer accepts this outcome
            logger.error(f"Document {task.document_id} did not accept {target.value} after task {task_id}")
            raise PersistenceError(f"Document {task.document_id} could not move to {target.value}")

        correlation = await db.workflows.get_for_document(task.document_id)
        process_instance_id = correlation.process_instance_id if correlation else task.payload.get("process_instance_id")
        await db.workflows.mark(task.document_id, CorrelationStatus.COMPLETED, f"manual_{target.value}")
        if process_instance_id:
            self.notifier.dispatch(NotificationKind.COMPLETION, task.document_id, process_instance_id, workflow_result)

        return {
            "document_id": task.document_id,
            "task_id": task_id,
            "status": target.value,
            "task_result": resolution,
            "message": f"Document {target.value} via process workflow",
        }

    async def get_document_status(self, document_id: str) -> Dict[str, Any]:
        document = await db.documents.get(document_id)
        if not document:
            raise NotFoundError("Document not found")

        result: Dict[str, Any] = {
            "document_id": document.document_id,
            "filename": document.filename,
            "status": document.status,
            "created_at": document.created_at,
            "updated_at": document.updated_at,
        }
        if document.extracted_data:
            result["extracted"] = document.extracted_data
        if document.workflow_result:
            result["workflow_result"] = document.workflow_result
        if document.error_message:
            result["error"] = document.error_message

        correlation = await db.workflows.get_for_document(document_id)
        if correlation:
            result["process_instance_id"] = correlation.process_instance_id

        pending = await self.tasks.get_pending_for_document(document_id)
        if pending:
            result["pending_tasks"] = [
                {"task_id": t.task_id, "task_type": t.task_type, "created_at": t.created_at}
                for t in pending
            ]
        return result

    async def get_pending_tasks(self) -> List[Dict[str, Any]]:
        rows = await db.tasks.list_pending_with_documents()
        return [
            {
                "task_id": row["task_id"],
                "document_id": row["document_id"],
                "filename": row.get("filename"),
                "task_type": row.get("task_type"),
                "created_at": row.get("created_at"),
                "extracted_data": row.get("extracted_data"),
                "requires_approval": (row.get("payload") or {}).get("requires_approval", False),
                "amount": (row.get("payload") or {}).get("amount", 0),
            }
            for row in rows
        ]

    async def get_all_workflows(self) -> List[Dict[str, Any]]:
        try:
            instances = await self.engine.list_process_instances()
        except RemoteEngineError as e:
            logger.warning(f"Failed to get workflows from process engine: {e.message}")
            return []

        return [
            {
                "instance_id": instance.get("id"),
                "process_definition_key": instance.get("processDefinitionKey"),
                "status": "completed" if instance.get("ended") else "active",
                "started": instance.get("startTime"),
                "ended": instance.get("endTime"),
            }
            for instance in instances
        ]

    async def _extract(self, file_path: str) -> Dict[str, Any]:
        # CPU-bound parsing runs off the event loop
        await asyncio.to_thread(self.processor.validate_file, file_path)
        text = await asyncio.to_thread(self.processor.extract_text, file_path)
        return self.processor.parse_document_data(text)

    async def _correlate(self, document_id: str, process_instance_id: str, amount: float) -> None:
        correlation = WorkflowCorrelation(
            workflow_id=f"WF-{uuid.uuid4().hex[:8].upper()}",
            document_id=document_id,
            process_instance_id=process_instance_id,
            variables={"amount": amount},
        )
        await db.workflows.create(correlation)

    async def _fail(self, document_id: str, process_instance_id: Optional[str], error: Exception) -> None:
        """Best effort: park the document in ``error`` and tell the engine."""
        message = getattr(error, "message", None) or str(error)
        logger.error(f"Workflow for {document_id} failed: {message}", exc_info=not isinstance(error, WorkflowError))

        try:
            await db.documents.transition(document_id, DocumentStatus.ERROR, {"error_message": message})
            await db.workflows.mark(document_id, CorrelationStatus.FAILED, "error", message)
        except PyMongoError as db_error:
            logger.error(f"Failed to update document status for {document_id}: {db_error}")

        if process_instance_id:
            self.notifier.dispatch(
                NotificationKind.ERROR, document_id, process_instance_id, {"error_message": message}
            )

workflow_orchestrator = WorkflowOrchestrator()
