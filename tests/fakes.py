"""In-memory collaborators shared by the test suite."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from trustdesk.core.exceptions import StorageError
from trustdesk.schemas.records import Client, Task, TaskStatus, Template
from trustdesk.schemas.tasks import StoredFile
from trustdesk.services.task.naming import signed_document_path

FIXED_NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class InMemoryRecordStore:
    """Record store keeping deep copies, so callers cannot mutate stored state."""

    def __init__(self):
        self.templates: Dict[str, Template] = {}
        self.clients: Dict[str, Client] = {}
        self.tasks: Dict[str, Task] = {}
        self.task_writes = 0

    def add_template(self, template: Template) -> Template:
        self.templates[template.id] = template
        return template

    def add_client(self, client: Client) -> Client:
        self.clients[client.id] = client
        return client

    async def get_template(self, template_id: str) -> Optional[Template]:
        template = self.templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def get_templates(self, template_ids: Sequence[str]) -> List[Template]:
        return [self.templates[t].model_copy(deep=True) for t in template_ids if t in self.templates]

    async def get_client(self, client_id: str) -> Optional[Client]:
        client = self.clients.get(client_id)
        return client.model_copy(deep=True) if client else None

    async def upsert_client(self, client: Client) -> Client:
        self.clients[client.id] = client.model_copy(deep=True)
        return client

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def upsert_task(self, task: Task) -> Task:
        self.task_writes += 1
        self.tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        return [
            task.model_copy(deep=True)
            for task in self.tasks.values()
            if status is None or task.status == status
        ]


class InMemoryObjectStorage:
    """Object storage with injectable failures and delays keyed by path substring."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail_on: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.put_calls: List[str] = []

    def _check(self, path: str) -> None:
        if any(marker in path for marker in self.fail_on):
            raise StorageError(f"storage unavailable for {path}")

    async def _delay(self, path: str) -> None:
        for marker, seconds in self.delays.items():
            if marker in path:
                await asyncio.sleep(seconds)

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.put_calls.append(path)
        await self._delay(path)
        self._check(path)
        self.objects[path] = data
        return path

    async def get(self, path: str) -> bytes:
        self._check(path)
        if path not in self.objects:
            raise StorageError(f"{path} not found")
        return self.objects[path]

    async def delete(self, path: str) -> None:
        self._check(path)
        self.objects.pop(path, None)

    async def exists(self, path: str) -> bool:
        return path in self.objects

    async def list(self, prefix: str) -> List[StoredFile]:
        prefix = prefix.rstrip("/") + "/"
        return [
            StoredFile(name=path[len(prefix):], path=path, size=len(data))
            for path, data in self.objects.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]


class InMemorySignedStorage:
    """Signed uploads keyed by (task id, template id)."""

    def __init__(self):
        self.files: Dict[Tuple[str, str], List[StoredFile]] = {}
        self.failing_templates: Set[str] = set()
        self.delete_error: Optional[Exception] = None

    def add_signed(self, task_id: str, template_id: str, name: str = "signed-document.pdf",
                   uploaded_at: datetime = FIXED_NOW) -> StoredFile:
        stored = StoredFile(
            name=name,
            path=signed_document_path(task_id, template_id, name),
            uploaded_at=uploaded_at,
        )
        self.files.setdefault((task_id, template_id), []).append(stored)
        return stored

    async def list_signed(self, task_id: str, template_id: str) -> List[StoredFile]:
        if template_id in self.failing_templates:
            raise StorageError("signed storage unavailable")
        return list(self.files.get((task_id, template_id), []))

    async def url_for(self, task_id: str, template_id: str, file_name: str) -> str:
        return f"https://storage.test/{signed_document_path(task_id, template_id, file_name)}?token=abc"

    async def upload_signed(self, task_id: str, template_id: str, data: bytes, extension: str,
                            content_type: str = "application/pdf") -> str:
        return self.add_signed(task_id, template_id, f"signed-document.{extension}").path

    async def ensure_folder(self, task_id: str, template_id: str) -> None:
        entries = self.files.setdefault((task_id, template_id), [])
        if not any(entry.name == ".gitkeep" for entry in entries):
            entries.append(StoredFile(name=".gitkeep", path=signed_document_path(task_id, template_id, ".gitkeep")))

    async def delete_all(self, task_id: str) -> List[str]:
        if self.delete_error is not None:
            raise self.delete_error
        removed = []
        for key in [key for key in self.files if key[0] == task_id]:
            removed.extend(entry.path for entry in self.files.pop(key))
        return removed

