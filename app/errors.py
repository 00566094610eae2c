"""
Exception taxonomy for the document workflow service.

Each error carries the HTTP status it maps to at the API edge, so routers and the
global exception handler never have to guess.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base exception for workflow orchestration errors."""
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(WorkflowError):
    """Bad upload, missing or invalid action. Never retried."""
    status_code = 400


class AuthenticationError(WorkflowError):
    status_code = 401


class NotFoundError(WorkflowError):
    """Unknown document or task, or a task that was already resolved."""
    status_code = 404


class ExtractionError(WorkflowError):
    """The content extractor could not read or parse the file."""
    status_code = 500


class RemoteEngineError(WorkflowError):
    """The process engine rejected a call or could not be reached."""
    status_code = 502

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.operation = operation


class PersistenceError(WorkflowError):
    status_code = 500


class ConfigurationError(WorkflowError):
    """A required setting (signing secret, credentials) is missing."""
    status_code = 503
