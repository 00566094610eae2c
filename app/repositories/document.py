from datetime import datetime
from typing import Any, Dict, Optional
from app.repositories.base import BaseRepository
from app.models.document import Document, DocumentStatus
from app.workflow.state import allowed_sources

class DocumentRepository(BaseRepository[Document]):
    id_field = "document_id"

    async def transition(self, document_id: str, target: DocumentStatus,
                         extra: Optional[Dict[str, Any]] = None) -> Optional[Document]:
        """
        Move a document to ``target`` only if its current status is a legal
        predecessor. Returns None when the document is missing or the move is illegal.
        """
        update = {"status": DocumentStatus(target).value, "updated_at": datetime.utcnow()}
        if extra:
            update.update(extra)
        return await self.update_where(
            document_id,
            {"status": {"$in": allowed_sources(target)}},
            update
        )

    async def record_extraction(self, document_id: str, extracted_data: Dict[str, Any]) -> Optional[Document]:
        """Store extracted data once and move processing -> data_extracted."""
        return await self.update_where(
            document_id,
            {"status": {"$in": allowed_sources(DocumentStatus.DATA_EXTRACTED)}, "extracted_data": None},
            {
                "status": DocumentStatus.DATA_EXTRACTED.value,
                "extracted_data": extracted_data,
                "updated_at": datetime.utcnow()
            }
        )

    async def record_result(self, document_id: str, target: DocumentStatus,
                            workflow_result: Dict[str, Any]) -> Optional[Document]:
        """Terminal approved/rejected write; ``workflow_result`` is set once."""
        return await self.update_where(
            document_id,
            {"status": {"$in": allowed_sources(target)}, "workflow_result": None},
            {
                "status": DocumentStatus(target).value,
                "workflow_result": workflow_result,
                "updated_at": datetime.utcnow()
            }
        )
