from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import Field
from app.models.base import MongoModel

class CorrelationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

class WorkflowCorrelation(MongoModel):
    """
    Maps a document to its process engine instance.

    Only start and terminal signaling are known locally; intermediate engine
    steps are not mirrored.
    """
    workflow_id: str
    document_id: str
    process_instance_id: str
    current_step: str = "started"
    status: CorrelationStatus = CorrelationStatus.RUNNING
    variables: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
