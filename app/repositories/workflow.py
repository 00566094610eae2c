from datetime import datetime
from typing import Optional
from pymongo import ReturnDocument
from app.repositories.base import BaseRepository
from app.models.workflow import WorkflowCorrelation, CorrelationStatus

class WorkflowRepository(BaseRepository[WorkflowCorrelation]):
    id_field = "workflow_id"

    async def get_for_document(self, document_id: str) -> Optional[WorkflowCorrelation]:
        return await self.get_by_field("document_id", document_id)

    async def mark(self, document_id: str, status: CorrelationStatus, current_step: str,
                   error_message: Optional[str] = None) -> Optional[WorkflowCorrelation]:
        """Mirror a locally known step onto the correlation record."""
        update = {
            "status": CorrelationStatus(status).value,
            "current_step": current_step,
            "updated_at": datetime.utcnow()
        }
        if error_message:
            update["error_message"] = error_message
        doc = await self.collection.find_one_and_update(
            {"document_id": document_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )
        return self.model_cls.from_mongo(doc) if doc else None
