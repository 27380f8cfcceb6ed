"""Database module for SQLAlchemy models."""

from trustdesk.database.models import ClientRow, TaskRow, TemplateRow

__all__ = [
    "ClientRow",
    "TaskRow",
    "TemplateRow",
]
