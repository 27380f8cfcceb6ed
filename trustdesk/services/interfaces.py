"""Collaborator seams consumed by the task pipeline.

Concrete adapters live in ``trustdesk.repositories.record_store`` (SQL),
``trustdesk.services.storage_service`` (Supabase Storage) and
``trustdesk.services.conversion_service`` (HTTP converter). Tests supply
in-memory fakes with the same shape.
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from trustdesk.schemas.records import Client, Task, TaskStatus, Template
from trustdesk.schemas.tasks import StoredFile


@runtime_checkable
class RecordStore(Protocol):
    """Persistent store for templates, clients and tasks.

    Lookups return None for missing records instead of raising.
    """

    async def get_template(self, template_id: str) -> Optional[Template]: ...

    async def get_templates(self, template_ids: Sequence[str]) -> List[Template]: ...

    async def get_client(self, client_id: str) -> Optional[Client]: ...

    async def upsert_client(self, client: Client) -> Client: ...

    async def get_task(self, task_id: str) -> Optional[Task]: ...

    async def upsert_task(self, task: Task) -> Task: ...

    async def delete_task(self, task_id: str) -> bool: ...

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]: ...


@runtime_checkable
class ObjectStorage(Protocol):
    """Path-addressed blob storage bound to one bucket."""

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    async def get(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def list(self, prefix: str) -> List[StoredFile]: ...


@runtime_checkable
class SignedDocumentStorage(Protocol):
    """Signed uploads keyed by (task id, template id)."""

    async def list_signed(self, task_id: str, template_id: str) -> List[StoredFile]: ...

    async def url_for(self, task_id: str, template_id: str, file_name: str) -> str: ...

    async def upload_signed(
        self,
        task_id: str,
        template_id: str,
        data: bytes,
        extension: str,
        content_type: str = "application/pdf",
    ) -> str: ...

    async def ensure_folder(self, task_id: str, template_id: str) -> None: ...

    async def delete_all(self, task_id: str) -> List[str]: ...


@runtime_checkable
class DocumentConverter(Protocol):
    """Opaque HTML to DOCX conversion."""

    async def to_docx(self, html: str) -> bytes: ...
