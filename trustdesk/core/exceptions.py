"""Custom exception hierarchy."""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class ValidationError(AppError):
    """Raised when input validation or a transition precondition fails."""
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error=original_error)
        self.details = details or {}


class InvalidTransitionError(ValidationError):
    """Raised when a task is asked to move along an edge that does not exist."""
    def __init__(self, task_id: str, current: str, attempted: str):
        super().__init__(
            f"Task {task_id} cannot {attempted} from status '{current}'",
            details={"task_id": task_id, "current_status": current, "attempted": attempted},
        )
        self.task_id = task_id
        self.current = current
        self.attempted = attempted


class NotFoundError(AppError):
    """Raised when a record is not found."""
    pass


class TaskNotFoundError(NotFoundError):
    """Raised when a task is not found."""
    pass


class TemplateNotFoundError(NotFoundError):
    """Raised when a template is not found."""
    pass


class ClientNotFoundError(NotFoundError):
    """Raised when a client is not found."""
    pass


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class StorageError(APIClientError):
    """Raised when an object storage operation fails."""
    pass


class ConversionError(APIClientError):
    """Raised when the document conversion service fails."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass
