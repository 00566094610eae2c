from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field
from app.models.base import MongoModel

class NotificationKind(str, Enum):
    UPLOAD_ACK = "upload_ack"
    COMPLETION = "completion"
    ERROR = "error"

class NotificationStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"

class EngineNotification(MongoModel):
    """Outcome of one best-effort signal pushed to the process engine."""
    notification_id: str
    document_id: str
    process_instance_id: str
    kind: NotificationKind
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
