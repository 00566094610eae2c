from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import Field
from app.models.base import MongoModel

class TaskType(str, Enum):
    MANUAL_APPROVAL = "manual_approval"

class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"

class TaskAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

class TaskResolution(MongoModel):
    action: TaskAction
    actor: str = "user"
    reason: str = ""
    completed_at: datetime = Field(default_factory=datetime.utcnow)

class Task(MongoModel):
    """A human decision required on a document. Completion is one-way."""
    task_id: str = Field(..., description="Opaque id (TASK-XXXXXXXX)")
    document_id: str
    task_type: TaskType = TaskType.MANUAL_APPROVAL
    status: TaskStatus = TaskStatus.PENDING

    # Snapshot: extracted_data, process_instance_id, requires_approval, amount
    payload: Dict[str, Any] = Field(default_factory=dict)
    resolution: Optional[TaskResolution] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
