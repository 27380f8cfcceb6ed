"""Repository layer modules."""

from trustdesk.repositories.client_repository import ClientRepository
from trustdesk.repositories.record_store import SqlRecordStore
from trustdesk.repositories.task_repository import TaskRepository
from trustdesk.repositories.template_repository import TemplateRepository

__all__ = [
    "ClientRepository",
    "SqlRecordStore",
    "TaskRepository",
    "TemplateRepository",
]
