from app.models.base import MongoModel
from app.models.document import Document, DocumentStatus
from app.models.task import Task, TaskType, TaskStatus, TaskAction, TaskResolution
from app.models.workflow import WorkflowCorrelation, CorrelationStatus
from app.models.notification import EngineNotification, NotificationKind, NotificationStatus
