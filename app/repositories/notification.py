from datetime import datetime
from typing import List, Optional
from pymongo import DESCENDING
from app.repositories.base import BaseRepository
from app.models.notification import EngineNotification, NotificationStatus

class NotificationRepository(BaseRepository[EngineNotification]):
    id_field = "notification_id"

    async def finish(self, notification_id: str, status: NotificationStatus, attempts: int,
                     last_error: Optional[str] = None) -> Optional[EngineNotification]:
        return await self.update(notification_id, {
            "status": NotificationStatus(status).value,
            "attempts": attempts,
            "last_error": last_error,
            "finished_at": datetime.utcnow()
        })

    async def recent(self, status: Optional[NotificationStatus] = None, limit: int = 100) -> List[EngineNotification]:
        filter = {"status": NotificationStatus(status).value} if status else {}
        return await self.list(filter, limit=limit, sort=[("created_at", DESCENDING)])
