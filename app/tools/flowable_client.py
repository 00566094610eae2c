import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.errors import RemoteEngineError

logger = logging.getLogger(__name__)

class EngineState(str, Enum):
    STARTING = "starting"
    READY = "ready"
    UNAVAILABLE = "unavailable"

class FlowableClient:
    """
    Typed adapter over the Flowable REST API.

    Every call opens a short-lived ``httpx.AsyncClient`` with basic auth and a
    bounded timeout; nothing is retried here. Callers decide what a failure means.
    """
    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        process_definition_key: Optional[str] = None,
        bpmn_path: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.flowable_url = (base_url or settings.FLOWABLE_URL).rstrip("/")
        self.rest_endpoint = f"{self.flowable_url}{settings.FLOWABLE_REST_PATH}"
        if password is None and settings.FLOWABLE_PASSWORD is not None:
            password = settings.FLOWABLE_PASSWORD.get_secret_value()
        # No configured password means unauthenticated calls; the engine answers 401
        self.auth = (username or settings.FLOWABLE_USERNAME, password) if password else None
        self.process_definition_key = process_definition_key or settings.PROCESS_DEFINITION_KEY
        self.bpmn_path = Path(bpmn_path or settings.BPMN_PATH)
        self.timeout = timeout or settings.ENGINE_TIMEOUT_SECONDS
        self.transport = transport
        self.state = EngineState.STARTING

    @property
    def is_ready(self) -> bool:
        return self.state == EngineState.READY

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(auth=self.auth, timeout=self.timeout, transport=self.transport)

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> Any:
        url = f"{self.rest_endpoint}{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteEngineError(
                f"{operation} failed: HTTP {e.response.status_code}",
                operation=operation,
                details={"body": e.response.text[:500]}
            ) from e
        except httpx.HTTPError as e:
            raise RemoteEngineError(f"{operation} failed: {e!r}", operation=operation) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _request_dict(self, method: str, path: str, operation: str, **kwargs) -> Dict[str, Any]:
        """Like ``_request`` but the engine must answer with a JSON object."""
        body = await self._request(method, path, operation, **kwargs)
        if not isinstance(body, dict):
            raise RemoteEngineError(f"{operation} returned an unexpected body", operation=operation)
        return body

    # --- Bootstrap ---

    async def ping(self) -> None:
        """One readiness probe; raises RemoteEngineError if the engine is not serving."""
        await self._request("GET", "/management/engine", "readiness probe")

    async def wait_until_ready(
        self,
        max_attempts: Optional[int] = None,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ) -> bool:
        """
        Poll the engine with exponential backoff until it answers or attempts run out.
        Returns True when ready; leaves ``state`` as READY or UNAVAILABLE.
        """
        attempts = max_attempts or settings.ENGINE_READY_MAX_ATTEMPTS
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=1,
                min=settings.ENGINE_READY_BACKOFF_MIN if backoff_min is None else backoff_min,
                max=settings.ENGINE_READY_BACKOFF_MAX if backoff_max is None else backoff_max,
            ),
            retry=retry_if_exception_type(RemoteEngineError),
            before_sleep=before_sleep_log(logger, logging.INFO),
        )
        self.state = EngineState.STARTING
        try:
            async for attempt in retrying:
                with attempt:
                    await self.ping()
        except RetryError:
            self.state = EngineState.UNAVAILABLE
            logger.error(f"Process engine not ready after {attempts} attempts")
            return False

        self.state = EngineState.READY
        logger.info("Process engine is ready")
        return True

    async def deploy_process(self) -> Optional[str]:
        """
        Deploy the BPMN definition unless one with our key already exists.
        Returns the new deployment id, or None when deployment was skipped.
        """
        existing = await self._request_dict(
            "GET",
            "/repository/process-definitions",
            "definition lookup",
            params={"key": self.process_definition_key},
        )
        if existing.get("data"):
            logger.info(f"Already deployed: {self.process_definition_key}")
            return None

        bpmn_content = self.bpmn_path.read_text(encoding="utf-8")
        deployment = await self._request(
            "POST",
            "/repository/deployments",
            "deployment",
            files={"file": (self.bpmn_path.name, bpmn_content, "text/xml")},
        )
        deployment_id = deployment.get("id") if isinstance(deployment, dict) else None
        logger.info(f"Process deployed successfully: {deployment_id}")

        if settings.FLOWABLE_DEPLOY_TO_MODELER:
            await self.deploy_to_modeler(bpmn_content)
        return deployment_id

    async def deploy_to_modeler(self, bpmn_content: str) -> None:
        """Mirror the definition into the Flowable Modeler for visualization. Best effort."""
        modeler_url = f"{self.flowable_url}/flowable-modeler/api/models"
        model_data = {
            "name": "Document Processing Workflow",
            "key": self.process_definition_key,
            "description": "Automated invoice approval workflow with amount-based routing",
            "modelType": 0,
        }
        try:
            async with self._client() as client:
                created = await client.post(modeler_url, json=model_data)
                created.raise_for_status()
                model_id = created.json()["id"]
                uploaded = await client.put(f"{modeler_url}/{model_id}/editor/json", json={"xml": bpmn_content})
                uploaded.raise_for_status()
            logger.info(f"BPMN model uploaded to modeler: {model_id}")
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Model may already exist in modeler: {e!r}")

    async def bootstrap(self) -> EngineState:
        """Wait for readiness, then make sure the definition is deployed."""
        if not await self.wait_until_ready():
            return self.state
        try:
            await self.deploy_process()
        except (RemoteEngineError, OSError) as e:
            logger.error(f"Process deployment failed: {e}")
        return self.state

    # --- Runtime ---

    async def start_process_instance(self, variables: Dict[str, Any]) -> str:
        """Start an instance and return its id. Failures propagate to the caller."""
        body = {
            "processDefinitionKey": self.process_definition_key,
            "variables": to_variable_list(variables),
        }
        instance = await self._request("POST", "/runtime/process-instances", "start instance", json=body)
        if not isinstance(instance, dict) or not instance.get("id"):
            raise RemoteEngineError("start instance returned no instance id", operation="start instance")
        return instance["id"]

    async def complete_initial_task(self, process_instance_id: str, task_name: Optional[str] = None) -> bool:
        """
        Complete the engine's own upload step, which is redundant here because the
        file is already uploaded. Returns False when no such task is open.
        """
        task_name = task_name or settings.UPLOAD_TASK_NAME
        tasks = await self._request_dict(
            "GET",
            "/runtime/tasks",
            "task lookup",
            params={"processInstanceId": process_instance_id},
        )
        upload_task = next(
            (t for t in tasks.get("data") or [] if isinstance(t, dict) and t.get("name") == task_name),
            None
        )
        if not upload_task:
            logger.info(f"'{task_name}' task not found for {process_instance_id}; process may have already progressed")
            return False

        await self._request("POST", f"/runtime/tasks/{upload_task['id']}", "complete task", json={"action": "complete"})
        logger.info(f"Completed '{task_name}' task {upload_task['id']}")
        return True

    async def signal_completion(self, process_instance_id: str, result: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            f"/runtime/process-instances/{process_instance_id}/variables",
            "signal completion",
            json=to_variable_list({"completed": True, "result": json.dumps(result, default=str)}),
        )

    async def signal_error(self, process_instance_id: str, error_message: str) -> None:
        await self._request(
            "POST",
            f"/runtime/process-instances/{process_instance_id}/variables",
            "signal error",
            json=to_variable_list({"error": True, "errorMessage": error_message}),
        )

    async def list_process_instances(self) -> List[Dict[str, Any]]:
        response = await self._request_dict(
            "GET",
            "/runtime/process-instances",
            "list instances",
            params={"processDefinitionKey": self.process_definition_key},
        )
        return [i for i in response.get("data") or [] if isinstance(i, dict)]

def to_variable_list(variables: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flowable expects variables as a list of {name, value} pairs."""
    return [{"name": name, "value": value} for name, value in variables.items()]

flowable_client = FlowableClient()
