from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from app.config import settings
from app.database import db
from app.models.notification import NotificationStatus
from app.workflow.orchestrator import workflow_orchestrator

router = APIRouter(tags=["Workflows"])

@router.get("/workflows")
async def list_workflows():
    workflows = await workflow_orchestrator.get_all_workflows()
    return {"workflows": workflows, "count": len(workflows)}

@router.get("/workflows/notifications")
async def list_notifications(status: Optional[NotificationStatus] = None, limit: int = 100):
    """Outcomes of engine signaling, newest first. ``?status=failed`` lists what never arrived."""
    notifications = await db.notifications.recent(status, limit=min(limit, 500))
    return {"notifications": [n.model_dump() for n in notifications], "count": len(notifications)}

@router.get("/bpmn/definition")
async def get_bpmn_definition():
    bpmn_path = Path(settings.BPMN_PATH)
    if not bpmn_path.is_file():
        raise HTTPException(status_code=500, detail="Failed to retrieve BPMN definition")
    return Response(content=bpmn_path.read_text(encoding="utf-8"), media_type="application/xml")
