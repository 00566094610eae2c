import asyncio
import os
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, UploadFile, File, Depends

from app.config import settings
from app.api.auth import get_current_user, User
from app.errors import ValidationError
from app.workflow.orchestrator import workflow_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

CHUNK_SIZE = 1024 * 1024

def new_document_id() -> str:
    return f"DOC-{uuid.uuid4().hex[:8].upper()}"

def validate_extension(filename: Optional[str]) -> str:
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in [e.lower() for e in settings.ALLOWED_EXTENSIONS]:
        raise ValidationError("Invalid file type. Only PDF and DOCX files are allowed")
    return extension

async def save_upload(file: UploadFile, destination: str) -> int:
    """Stream the upload to disk, enforcing the size limit. Removes partial files."""
    await asyncio.to_thread(os.makedirs, os.path.dirname(destination) or ".", exist_ok=True)
    written = 0
    # Disk writes run off the event loop
    out = await asyncio.to_thread(open, destination, "wb")
    try:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > settings.MAX_UPLOAD_BYTES:
                raise ValidationError(
                    f"File too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
                )
            await asyncio.to_thread(out.write, chunk)
        if written == 0:
            raise ValidationError("Uploaded file is empty")
    except ValidationError:
        await asyncio.to_thread(out.close)
        await asyncio.to_thread(os.remove, destination)
        raise
    finally:
        if not out.closed:
            await asyncio.to_thread(out.close)
    return written

@router.post("/upload", status_code=201)
async def upload_document(
    file: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    extension = validate_extension(file.filename)
    document_id = new_document_id()
    file_path = os.path.join(settings.UPLOAD_DIR, f"{document_id}{extension}")
    size = await save_upload(file, file_path)

    logger.info(f"Upload by {current_user.username}: {file.filename} -> {document_id} ({size} bytes)")
    return await workflow_orchestrator.start_workflow(document_id, file_path, file.filename)

@router.get("/{document_id}")
async def get_document(document_id: str):
    return await workflow_orchestrator.get_document_status(document_id)
