"""Task lifecycle, completion gate and workflow reporting."""

from trustdesk.services.task.completion_validator import CompletionValidator
from trustdesk.services.task.lifecycle_manager import TaskLifecycleManager
from trustdesk.services.task.workflow import describe_workflow, task_progress

__all__ = [
    "CompletionValidator",
    "TaskLifecycleManager",
    "describe_workflow",
    "task_progress",
]
