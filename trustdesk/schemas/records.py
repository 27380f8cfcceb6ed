"""Domain records for clients, templates and tasks.

These are the shapes exchanged with the record store. The pipeline treats
clients and templates as read-only and only ever writes tasks (and, on
completion, the client write-back).
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid4())


class TemplateStatus(str, Enum):
    """Template publication state."""

    DRAFT = "draft"
    ACTIVE = "active"


class TaskStatus(str, Enum):
    """Task lifecycle state."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    AWAITING = "awaiting"
    COMPLETED = "completed"


class DocumentStatus(str, Enum):
    """Outcome of one template's generation attempt."""

    GENERATED = "generated"
    FAILED = "failed"


class CustomFieldDefinition(BaseModel):
    """A named, typed value a template needs beyond the client attributes."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    label: Optional[str] = None
    type: str = "text"
    required: bool = False
    default_value: Optional[str] = Field(default=None, alias="defaultValue")
    validation: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    @property
    def display_label(self) -> str:
        return self.label or self.name


class Template(BaseModel):
    """HTML document template with placeholder markup."""

    id: str = Field(default_factory=new_id)
    name: str
    status: TemplateStatus = TemplateStatus.DRAFT
    html_content: str = ""
    custom_fields: List[CustomFieldDefinition] = Field(default_factory=list)
    placeholders: List[str] = Field(default_factory=list)
    template_type: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE


class Client(BaseModel):
    """Client record used as a read-only value source during generation."""

    id: str = Field(default_factory=new_id)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    date_of_birth: Optional[date] = None
    occupation: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    client_type: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class GeneratedDocument(BaseModel):
    """One entry of ``Task.generated_documents``, unique per template id."""

    template_id: str
    template_name: str
    status: DocumentStatus
    file_name: Optional[str] = None
    storage_path: Optional[str] = None
    generated_at: Optional[datetime] = None
    error: Optional[str] = None
    unresolved_placeholders: List[str] = Field(default_factory=list)


class AdditionalFile(BaseModel):
    """Supplementary upload attached to a task, outside the generation contract."""

    file_name: str
    file_path: str
    original_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    description: Optional[str] = None


class Task(BaseModel):
    """A client bound to a bundle of templates, driven through the lifecycle."""

    id: str = Field(default_factory=new_id)
    client_id: str
    client_name: Optional[str] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    template_ids: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.DRAFT
    custom_field_values: Dict[str, Any] = Field(default_factory=dict)
    generated_documents: List[GeneratedDocument] = Field(default_factory=list)
    additional_files: List[AdditionalFile] = Field(default_factory=list)
    generation_error: Optional[str] = None
    generation_completed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    completion_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def document_for(self, template_id: str) -> Optional[GeneratedDocument]:
        for document in self.generated_documents:
            if document.template_id == template_id:
                return document
        return None

    @property
    def successful_documents(self) -> List[GeneratedDocument]:
        return [d for d in self.generated_documents if d.status == DocumentStatus.GENERATED]

    @property
    def failed_documents(self) -> List[GeneratedDocument]:
        return [d for d in self.generated_documents if d.status == DocumentStatus.FAILED]
