import asyncio
import uuid
import logging
from datetime import datetime
from typing import Dict, Any, Optional, Set

from pymongo.errors import PyMongoError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.database import db
from app.errors import RemoteEngineError
from app.models.notification import EngineNotification, NotificationKind, NotificationStatus
from app.tools.flowable_client import flowable_client, FlowableClient

logger = logging.getLogger(__name__)

class EngineNotifier:
    """
    Pushes locally committed decisions to the process engine.

    Delivery never raises into the caller: each notification is retried a bounded
    number of times and its outcome (delivered / failed) is persisted for operators.
    """
    def __init__(self, client: Optional[FlowableClient] = None, max_attempts: Optional[int] = None,
                 backoff_max: Optional[float] = None):
        self.client = client or flowable_client
        self.max_attempts = max_attempts or settings.SIGNAL_MAX_ATTEMPTS
        self.backoff_max = settings.SIGNAL_BACKOFF_MAX if backoff_max is None else backoff_max
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, kind: NotificationKind, document_id: str, process_instance_id: str,
                 payload: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        """Schedule delivery in the background and return immediately."""
        task = asyncio.create_task(self.deliver(kind, document_id, process_instance_id, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding notification to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def deliver(self, kind: NotificationKind, document_id: str, process_instance_id: str,
                      payload: Optional[Dict[str, Any]] = None,
                      max_attempts: Optional[int] = None) -> EngineNotification:
        kind = NotificationKind(kind)
        notification = EngineNotification(
            notification_id=f"NTF-{uuid.uuid4().hex[:12].upper()}",
            document_id=document_id,
            process_instance_id=process_instance_id,
            kind=kind,
        )
        await self._record(notification, created=True)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts or self.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.backoff_max),
            retry=retry_if_exception_type(RemoteEngineError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    notification.attempts = attempt.retry_state.attempt_number
                    note = await self._send(kind, process_instance_id, payload or {})
            notification.status = NotificationStatus.DELIVERED
            notification.last_error = note
        except RemoteEngineError as e:
            notification.status = NotificationStatus.FAILED
            notification.last_error = e.message
            logger.error(
                f"{kind.value} signal for {document_id} ({process_instance_id}) "
                f"failed after {notification.attempts} attempts: {e.message}"
            )
        except Exception as e:
            # Unexpected client failures are not retried but still end in a recorded outcome
            notification.status = NotificationStatus.FAILED
            notification.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"{kind.value} signal for {document_id} ({process_instance_id}) failed unexpectedly")

        notification.finished_at = datetime.utcnow()
        await self._record(notification)
        return notification

    async def _send(self, kind: NotificationKind, process_instance_id: str, payload: Dict[str, Any]) -> Optional[str]:
        if kind == NotificationKind.UPLOAD_ACK:
            found = await self.client.complete_initial_task(process_instance_id)
            return None if found else "upload task not found"
        if kind == NotificationKind.COMPLETION:
            await self.client.signal_completion(process_instance_id, payload)
            return None
        await self.client.signal_error(process_instance_id, payload.get("error_message", ""))
        return None

    async def _record(self, notification: EngineNotification, created: bool = False) -> None:
        try:
            if created:
                await db.notifications.create(notification)
            else:
                await db.notifications.finish(
                    notification.notification_id,
                    notification.status,
                    notification.attempts,
                    notification.last_error
                )
        except PyMongoError as e:
            logger.warning(f"Could not persist notification {notification.notification_id}: {e}")

engine_notifier = EngineNotifier()
