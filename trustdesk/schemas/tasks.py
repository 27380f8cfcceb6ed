"""Result objects returned by the task lifecycle operations."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from trustdesk.schemas.records import Task, TaskStatus


class GenerationOutcome(str, Enum):
    """Aggregate outcome of one generation pass."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOOP = "noop"


class DocumentFailure(BaseModel):
    """A template that could not be generated, with the reason."""

    template_id: str
    template_name: Optional[str] = None
    error: str


class GenerationResult(BaseModel):
    """What a generation pass (initial or retry) did to a task."""

    task: Task
    outcome: GenerationOutcome
    generated: List[str] = Field(default_factory=list)
    failed: List[DocumentFailure] = Field(default_factory=list)
    attempted: List[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        if self.outcome == GenerationOutcome.NOOP:
            return "No failed documents to regenerate"
        if self.outcome == GenerationOutcome.SUCCESS:
            return f"Generated {len(self.generated)} document(s)"
        details = "; ".join(
            f"{failure.template_name or failure.template_id}: {failure.error}" for failure in self.failed
        )
        if self.outcome == GenerationOutcome.PARTIAL:
            return (
                f"Generated {len(self.generated)} of {len(self.attempted)} document(s). "
                f"Failed: {details}"
            )
        return f"All {len(self.attempted)} document(s) failed to generate: {details}"


class CompletionCheck(BaseModel):
    """Verdict of the completion gate."""

    valid: bool
    reason: Optional[str] = None
    missing_signed_docs: List[str] = Field(default_factory=list)


class CompletionResult(BaseModel):
    """Completed task plus the outcome of the client write-back."""

    task: Task
    client_updated: bool = False
    updated_client_fields: List[str] = Field(default_factory=list)
    client_update_warnings: List[str] = Field(default_factory=list)


class StoredFile(BaseModel):
    """An object listed from storage."""

    name: str
    path: str
    size: Optional[int] = None
    content_type: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class SignedDocumentStatus(BaseModel):
    """Signed upload state for one generated template."""

    template_id: str
    template_name: Optional[str] = None
    exists: bool = False
    file_name: Optional[str] = None
    url: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    error: Optional[str] = None


class DeletionReport(BaseModel):
    """Per-category counts from a task deletion cascade."""

    task_id: str
    record_deleted: bool = False
    generated_deleted: int = 0
    generated_failed: int = 0
    signed_deleted: int = 0
    signed_failed: int = 0
    additional_deleted: int = 0
    additional_failed: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.record_deleted and not self.errors


class WorkflowAction(BaseModel):
    action: str
    label: str
    description: str


class WorkflowStatus(BaseModel):
    """Actions available to the operator for a task in its current state."""

    current_status: TaskStatus
    can_finalize: bool = False
    can_generate: bool = False
    can_upload_signed: bool = False
    can_complete: bool = False
    can_retry: bool = False
    required_actions: List[str] = Field(default_factory=list)
    available_actions: List[WorkflowAction] = Field(default_factory=list)


class ProgressStep(BaseModel):
    name: str
    completed: bool = False
    current: bool = False


class TaskProgress(BaseModel):
    current_step: int
    total_steps: int
    completed_steps: int
    percentage: int
    steps: List[ProgressStep]


class TaskStatistics(BaseModel):
    """Task counts across the record store."""

    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    with_generation_errors: int = 0
    documents_generated: int = 0
    documents_failed: int = 0
