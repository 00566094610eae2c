from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import ConfigDict, Field
from app.models.base import MongoModel

class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    DATA_EXTRACTED = "data_extracted"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"

class Document(MongoModel):
    """
    One uploaded file and everything derived from it.

    ``extracted_data`` is written once, on successful extraction.
    ``workflow_result`` is written once, when the document reaches approved/rejected.
    """
    document_id: str = Field(..., description="Opaque id assigned at upload (DOC-XXXXXXXX)")
    filename: str = Field(..., description="Original display name of the upload")
    file_path: str = Field(..., description="Location the content extractor can read")

    status: DocumentStatus = Field(default=DocumentStatus.PROCESSING)

    extracted_data: Optional[Dict[str, Any]] = None
    workflow_result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "document_id": "DOC-1A2B3C4D",
            "filename": "invoice_march.pdf",
            "file_path": "uploads/DOC-1A2B3C4D.pdf",
            "status": "awaiting_approval",
            "extracted_data": {"amount": 1500.0, "invoice_number": "INV-2024-001"}
        }
    })
