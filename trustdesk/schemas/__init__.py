"""Pydantic records and result objects."""

from trustdesk.schemas.records import (
    AdditionalFile,
    Client,
    CustomFieldDefinition,
    DocumentStatus,
    GeneratedDocument,
    Task,
    TaskStatus,
    Template,
    TemplateStatus,
)
from trustdesk.schemas.tasks import (
    CompletionCheck,
    CompletionResult,
    DeletionReport,
    DocumentFailure,
    GenerationOutcome,
    GenerationResult,
    SignedDocumentStatus,
    StoredFile,
    TaskProgress,
    TaskStatistics,
    WorkflowStatus,
)

__all__ = [
    "AdditionalFile",
    "Client",
    "CustomFieldDefinition",
    "DocumentStatus",
    "GeneratedDocument",
    "Task",
    "TaskStatus",
    "Template",
    "TemplateStatus",
    "CompletionCheck",
    "CompletionResult",
    "DeletionReport",
    "DocumentFailure",
    "GenerationOutcome",
    "GenerationResult",
    "SignedDocumentStatus",
    "StoredFile",
    "TaskProgress",
    "TaskStatistics",
    "WorkflowStatus",
]
