import copy
from datetime import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.database import db
from app.models.document import Document
from app.models.task import Task
from app.models.workflow import WorkflowCorrelation
from app.models.notification import EngineNotification
from app.repositories.document import DocumentRepository
from app.repositories.task import TaskRepository
from app.repositories.workflow import WorkflowRepository
from app.repositories.notification import NotificationRepository
from app.workflow.notifier import EngineNotifier
from app.workflow.orchestrator import WorkflowOrchestrator
from app.workflow.task_manager import TaskManager


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        value = _get_path(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif isinstance(expected, dict) and "$ne" in expected:
            if value == expected["$ne"]:
                return False
        elif value != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self.docs = docs

    def sort(self, spec):
        for key, direction in reversed(list(spec)):
            self.docs.sort(key=lambda d: _get_path(d, key), reverse=direction < 0)
        return self

    def skip(self, n: int):
        self.docs = self.docs[n:]
        return self

    def limit(self, n: int):
        if n:
            self.docs = self.docs[:n]
        return self

    async def to_list(self, length: Optional[int] = None):
        return copy.deepcopy(self.docs[:length] if length else self.docs)


class FakeCollection:
    """
    Just enough of a motor collection for the repositories: single-document
    operations are atomic because they never yield to the event loop.
    """
    def __init__(self, name: str, unique: tuple = (), registry: Optional[Dict[str, "FakeCollection"]] = None):
        self.name = name
        self.unique = unique
        self.docs: List[Dict[str, Any]] = []
        self.registry = registry if registry is not None else {}
        self.registry[name] = self
        self.status_history: Dict[str, List[str]] = {}

    def _track(self, doc: Dict[str, Any]) -> None:
        if self.unique and "status" in doc:
            history = self.status_history.setdefault(doc[self.unique[0]], [])
            if not history or history[-1] != doc["status"]:
                history.append(doc["status"])

    async def insert_one(self, data: Dict[str, Any]):
        for field in self.unique:
            if any(d.get(field) == data.get(field) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key: {field}")
        doc = copy.deepcopy(data)
        doc["_id"] = ObjectId()
        self.docs.append(doc)
        self._track(doc)
        return MagicMock(inserted_id=doc["_id"])

    async def find_one(self, query: Dict[str, Any]):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find_one_and_update(self, query: Dict[str, Any], update: Dict[str, Any], return_document=None):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                self._track(doc)
                return copy.deepcopy(doc)
        return None

    async def delete_one(self, query: Dict[str, Any]):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return MagicMock(deleted_count=1)
        return MagicMock(deleted_count=0)

    def find(self, query: Optional[Dict[str, Any]] = None):
        return FakeCursor([d for d in self.docs if _matches(d, query or {})])

    def aggregate(self, pipeline: List[Dict[str, Any]]):
        rows = copy.deepcopy(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                rows = [r for r in rows if _matches(r, stage["$match"])]
            elif "$lookup" in stage:
                spec = stage["$lookup"]
                foreign = self.registry[spec["from"]].docs
                for r in rows:
                    r[spec["as"]] = [
                        copy.deepcopy(f) for f in foreign
                        if f.get(spec["foreignField"]) == r.get(spec["localField"])
                    ]
            elif "$unwind" in stage:
                field = stage["$unwind"].lstrip("$")
                rows = [dict(r, **{field: item}) for r in rows for item in r.get(field, [])]
            elif "$sort" in stage:
                rows = FakeCursor(rows).sort(list(stage["$sort"].items())).docs
            elif "$limit" in stage:
                rows = rows[:stage["$limit"]]
            elif "$project" in stage:
                projected = []
                for r in rows:
                    out = {}
                    for key, rule in stage["$project"].items():
                        if rule == 1:
                            out[key] = r.get(key)
                        elif isinstance(rule, str) and rule.startswith("$"):
                            out[key] = _get_path(r, rule[1:])
                    projected.append(out)
                rows = projected
        return FakeCursor(rows)


@pytest.fixture
def fake_db(monkeypatch):
    """Swaps the shared ``db`` repositories for ones backed by in-memory collections."""
    registry: Dict[str, FakeCollection] = {}
    collections = {
        "documents": FakeCollection("documents", ("document_id",), registry),
        "tasks": FakeCollection("tasks", ("task_id",), registry),
        "workflows": FakeCollection("workflows", ("workflow_id", "document_id"), registry),
        "engine_notifications": FakeCollection("engine_notifications", ("notification_id",), registry),
    }
    monkeypatch.setattr(db, "documents", DocumentRepository(collections["documents"], Document))
    monkeypatch.setattr(db, "tasks", TaskRepository(collections["tasks"], Task))
    monkeypatch.setattr(db, "workflows", WorkflowRepository(collections["workflows"], WorkflowCorrelation))
    monkeypatch.setattr(db, "notifications", NotificationRepository(collections["engine_notifications"], EngineNotification))
    db.collections = collections
    yield db
    del db.collections


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    engine.start_process_instance = AsyncMock(return_value="PI-1001")
    engine.complete_initial_task = AsyncMock(return_value=True)
    engine.signal_completion = AsyncMock()
    engine.signal_error = AsyncMock()
    engine.list_process_instances = AsyncMock(return_value=[])
    return engine


@pytest.fixture
def mock_processor():
    processor = MagicMock()
    processor.validate_file = MagicMock()
    processor.extract_text = MagicMock(return_value="Invoice Number: INV-1\nTotal: 500.00")
    processor.parse_document_data = MagicMock(return_value={"amount": 500.0, "invoice_number": "INV-1"})
    return processor


@pytest.fixture
def notifier(mock_engine):
    return EngineNotifier(client=mock_engine, max_attempts=2, backoff_max=0)


@pytest.fixture
def orchestrator(fake_db, mock_engine, mock_processor, notifier):
    return WorkflowOrchestrator(
        processor=mock_processor,
        engine=mock_engine,
        tasks=TaskManager(),
        notifier=notifier,
        threshold=1000,
    )


@pytest.fixture
def sample_document():
    return Document(
        document_id="DOC-TEST0001",
        filename="invoice.pdf",
        file_path="uploads/DOC-TEST0001.pdf",
        created_at=datetime(2024, 1, 1),
    )
