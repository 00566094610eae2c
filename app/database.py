import logging
from motor.motor_asyncio import AsyncIOMotorClient
from app.config import settings
from app.repositories.document import DocumentRepository
from app.repositories.task import TaskRepository
from app.repositories.workflow import WorkflowRepository
from app.repositories.notification import NotificationRepository
from app.models.document import Document
from app.models.task import Task
from app.models.workflow import WorkflowCorrelation
from app.models.notification import EngineNotification

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None

    # Repositories
    documents: DocumentRepository = None
    tasks: TaskRepository = None
    workflows: WorkflowRepository = None
    notifications: NotificationRepository = None

    def connect(self):
        """Initialize database connection and repositories."""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        db = self.client[settings.DB_NAME]

        # Initialize repositories with their respective collections and models
        self.documents = DocumentRepository(db.documents, Document)
        self.tasks = TaskRepository(db.tasks, Task)
        self.workflows = WorkflowRepository(db.workflows, WorkflowCorrelation)
        self.notifications = NotificationRepository(db.engine_notifications, EngineNotification)

        logger.info("Connected to MongoDB")

    def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

db = Database()
