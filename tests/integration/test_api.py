import base64
import os
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from pydantic import SecretStr
from unittest.mock import AsyncMock, MagicMock

from app.config import settings
from app.errors import NotFoundError
from app.main import app
from app.models.notification import EngineNotification, NotificationKind, NotificationStatus

def basic(username: str, password: str) -> dict:
    raw = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {raw}"}

@pytest.fixture
def configured_auth(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", SecretStr("unit-test-signing-key-0123456789abcdef"))
    monkeypatch.setattr(settings, "API_USERNAME", "operator")
    monkeypatch.setattr(settings, "API_PASSWORD", SecretStr("s3cret"))

@pytest.fixture
def api_orchestrator(monkeypatch):
    orchestrator = MagicMock()
    orchestrator.start_workflow = AsyncMock(return_value={
        "document_id": "DOC-1", "status": "approved", "process_instance_id": "PI-1"
    })
    orchestrator.get_document_status = AsyncMock(side_effect=NotFoundError("Document not found"))
    orchestrator.get_pending_tasks = AsyncMock(return_value=[])
    orchestrator.complete_task = AsyncMock()
    orchestrator.get_all_workflows = AsyncMock(return_value=[])
    for module in ("documents", "tasks", "workflows"):
        monkeypatch.setattr(f"app.api.{module}.workflow_orchestrator", orchestrator)
    return orchestrator

@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

@pytest_asyncio.fixture
async def token(client, configured_auth):
    response = await client.get("/getToken", headers=basic("operator", "s3cret"))
    return response.json()["token"]

@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["engine"] in ("starting", "ready", "unavailable")

@pytest.mark.asyncio
async def test_get_token_with_valid_credentials(client, configured_auth):
    response = await client.get("/getToken", headers=basic("operator", "s3cret"))
    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

@pytest.mark.asyncio
async def test_get_token_rejects_bad_credentials(client, configured_auth):
    response = await client.get("/getToken", headers=basic("operator", "guess"))
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Basic"

    response = await client.get("/getToken")
    assert response.status_code == 401

@pytest.mark.asyncio
async def test_get_token_fails_closed_without_secret(client, configured_auth, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", None)
    response = await client.get("/getToken", headers=basic("operator", "s3cret"))
    assert response.status_code == 503

@pytest.mark.asyncio
async def test_upload_requires_token(client, configured_auth, api_orchestrator):
    files = {"file": ("invoice.pdf", b"%PDF-1.4 fake", "application/pdf")}
    response = await client.post("/documents/upload", files=files)
    assert response.status_code == 401

    response = await client.post("/documents/upload", files=files, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    api_orchestrator.start_workflow.assert_not_awaited()

@pytest.mark.asyncio
async def test_upload_rejects_unsupported_type(client, token, api_orchestrator, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    files = {"file": ("notes.txt", b"Total: 10", "text/plain")}

    response = await client.post("/documents/upload", files=files, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid file type. Only PDF and DOCX files are allowed"}
    api_orchestrator.start_workflow.assert_not_awaited()
    assert os.listdir(tmp_path) == []

@pytest.mark.asyncio
async def test_upload_without_file(client, token, api_orchestrator):
    response = await client.post("/documents/upload", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 400
    assert response.json() == {"error": "No file uploaded"}

@pytest.mark.asyncio
async def test_upload_starts_workflow(client, token, api_orchestrator, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    files = {"file": ("invoice.pdf", b"%PDF-1.4 fake", "application/pdf")}

    response = await client.post(f"/documents/upload?token={token}", files=files)

    assert response.status_code == 201
    assert response.json()["status"] == "approved"
    document_id, file_path, filename = api_orchestrator.start_workflow.call_args.args
    assert document_id.startswith("DOC-") and len(document_id) == 12
    assert filename == "invoice.pdf"
    with open(file_path, "rb") as f:
        assert f.read() == b"%PDF-1.4 fake"

@pytest.mark.asyncio
async def test_unknown_document_is_404(client, api_orchestrator):
    response = await client.get("/documents/DOC-NOPE")
    assert response.status_code == 404
    assert response.json() == {"error": "Document not found"}

@pytest.mark.asyncio
async def test_complete_task_validates_action(client, api_orchestrator):
    response = await client.post("/tasks/TASK-1/complete")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing action field (approve/reject)"}

    response = await client.post("/tasks/TASK-1/complete", json={"action": "maybe"})
    assert response.status_code == 400
    api_orchestrator.complete_task.assert_not_awaited()

@pytest.mark.asyncio
async def test_complete_task(client, api_orchestrator):
    api_orchestrator.complete_task.return_value = {"task_id": "TASK-1", "status": "approved"}

    response = await client.post("/tasks/TASK-1/complete", json={"action": "APPROVE", "reason": "looks fine"})

    assert response.status_code == 200
    api_orchestrator.complete_task.assert_awaited_once_with("TASK-1", "approve", "looks fine")

@pytest.mark.asyncio
async def test_complete_missing_task_is_404(client, api_orchestrator):
    api_orchestrator.complete_task.side_effect = NotFoundError("Task not found or already completed")
    response = await client.post("/tasks/TASK-X/complete", json={"action": "reject"})
    assert response.status_code == 404
    assert response.json() == {"error": "Task not found or already completed"}

@pytest.mark.asyncio
async def test_list_tasks_and_workflows(client, api_orchestrator):
    api_orchestrator.get_pending_tasks.return_value = [{"task_id": "TASK-1"}]

    tasks = await client.get("/tasks")
    workflows = await client.get("/workflows")

    assert tasks.json() == {"tasks": [{"task_id": "TASK-1"}], "count": 1}
    assert workflows.json() == {"workflows": [], "count": 0}

@pytest.mark.asyncio
async def test_failed_notifications_listed(client, fake_db):
    await fake_db.notifications.create(EngineNotification(
        notification_id="NTF-1", document_id="DOC-1", process_instance_id="PI-1",
        kind=NotificationKind.COMPLETION, status=NotificationStatus.FAILED, attempts=3,
    ))

    response = await client.get("/workflows/notifications?status=failed")

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["notifications"][0]["kind"] == "completion"

@pytest.mark.asyncio
async def test_bpmn_definition_served_as_xml(client):
    response = await client.get("/bpmn/definition")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "Upload Document" in response.text

@pytest.mark.asyncio
async def test_unknown_route(client):
    response = await client.get("/nowhere")
    assert response.status_code == 404
    assert response.json() == {"error": "Endpoint not found"}

@pytest.mark.asyncio
async def test_upload_over_size_limit(client, token, api_orchestrator, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 8)
    files = {"file": ("invoice.pdf", b"%PDF-1.4 much longer than eight bytes", "application/pdf")}

    response = await client.post("/documents/upload", files=files, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 400
    assert "File too large" in response.json()["error"]
    api_orchestrator.start_workflow.assert_not_awaited()
    assert os.listdir(tmp_path) == []

@pytest.mark.asyncio
async def test_upload_empty_file(client, token, api_orchestrator, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    files = {"file": ("invoice.pdf", b"", "application/pdf")}

    response = await client.post("/documents/upload", files=files, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 400
    assert response.json() == {"error": "Uploaded file is empty"}
    api_orchestrator.start_workflow.assert_not_awaited()
    assert os.listdir(tmp_path) == []
