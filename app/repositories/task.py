from typing import Any, Dict, List, Optional
from pymongo import ASCENDING
from app.repositories.base import BaseRepository
from app.models.task import Task, TaskStatus, TaskResolution

class TaskRepository(BaseRepository[Task]):
    id_field = "task_id"

    async def complete_if_pending(self, task_id: str, resolution: TaskResolution) -> Optional[Task]:
        """
        Single atomic pending -> completed transition.
        Exactly one concurrent caller gets the task back; everyone else gets None.
        """
        return await self.update_where(
            task_id,
            {"status": TaskStatus.PENDING.value},
            {
                "status": TaskStatus.COMPLETED.value,
                "resolution": resolution.to_mongo(),
                "completed_at": resolution.completed_at
            }
        )

    async def withdraw(self, task_id: str) -> bool:
        """Remove a task that is still pending. Completed tasks are never removed."""
        result = await self.collection.delete_one({self.id_field: task_id, "status": TaskStatus.PENDING.value})
        return result.deleted_count == 1

    async def get_pending_for_document(self, document_id: str) -> List[Task]:
        return await self.list(
            {"document_id": document_id, "status": TaskStatus.PENDING.value},
            sort=[("created_at", ASCENDING)]
        )

    async def list_pending_with_documents(self, limit: int = 500) -> List[Dict[str, Any]]:
        """Pending tasks joined with their document's filename and extracted data, oldest first."""
        pipeline = [
            {"$match": {"status": TaskStatus.PENDING.value}},
            {"$lookup": {
                "from": "documents",
                "localField": "document_id",
                "foreignField": "document_id",
                "as": "document"
            }},
            {"$unwind": "$document"},
            {"$sort": {"created_at": 1}},
            {"$limit": limit},
            {"$project": {
                "_id": 0,
                "task_id": 1,
                "document_id": 1,
                "task_type": 1,
                "status": 1,
                "payload": 1,
                "created_at": 1,
                "filename": "$document.filename",
                "extracted_data": "$document.extracted_data"
            }}
        ]
        return await self.collection.aggregate(pipeline).to_list(length=limit)
