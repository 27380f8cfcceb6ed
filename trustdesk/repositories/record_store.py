"""Record store backed by the SQL repositories.

Maps ORM rows to the pydantic domain records and back. Each call runs in its
own session so the store can be shared by concurrent generation workers.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustdesk.core.database import async_session_maker
from trustdesk.database.models import ClientRow, TaskRow, TemplateRow
from trustdesk.repositories.client_repository import ClientRepository
from trustdesk.repositories.task_repository import TaskRepository
from trustdesk.repositories.template_repository import TemplateRepository
from trustdesk.schemas.records import (
    AdditionalFile,
    Client,
    CustomFieldDefinition,
    GeneratedDocument,
    Task,
    TaskStatus,
    Template,
)
from trustdesk.services.templating.value_map import CLIENT_FIELDS
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def template_from_row(row: TemplateRow) -> Template:
    return Template(
        id=str(row.id),
        name=row.name,
        status=row.status,
        html_content=row.html_content or "",
        custom_fields=[CustomFieldDefinition.model_validate(item) for item in row.custom_fields or []],
        placeholders=list(row.placeholders or []),
        template_type=row.template_type,
    )


def client_from_row(row: ClientRow) -> Client:
    values = {name: getattr(row, name) for name in CLIENT_FIELDS}
    return Client(id=str(row.id), extra=dict(row.extra_fields or {}), **values)


def client_to_values(client: Client) -> Dict[str, Any]:
    values = {name: getattr(client, name) for name in CLIENT_FIELDS}
    values["id"] = _as_uuid(client.id)
    values["extra_fields"] = client.model_dump(mode="json")["extra"]
    return values


def task_from_row(row: TaskRow) -> Task:
    return Task(
        id=str(row.id),
        client_id=str(row.client_id),
        client_name=row.client_name,
        service_id=row.service_id,
        service_name=row.service_name,
        template_ids=[str(template_id) for template_id in row.template_ids or []],
        status=row.status,
        custom_field_values=dict(row.custom_field_values or {}),
        generated_documents=[GeneratedDocument.model_validate(item) for item in row.generated_documents or []],
        additional_files=[AdditionalFile.model_validate(item) for item in row.additional_files or []],
        generation_error=row.generation_error,
        generation_completed_at=row.generation_completed_at,
        completed_at=row.completed_at,
        notes=row.notes,
        completion_data=dict(row.completion_data or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def task_to_values(task: Task) -> Dict[str, Any]:
    """Column values for a task; JSON columns get JSON-safe payloads."""
    dumped = task.model_dump(mode="json")
    return {
        "id": _as_uuid(task.id),
        "client_id": _as_uuid(task.client_id),
        "client_name": task.client_name,
        "service_id": task.service_id,
        "service_name": task.service_name,
        "template_ids": dumped["template_ids"],
        "status": task.status.value,
        "custom_field_values": dumped["custom_field_values"],
        "generated_documents": dumped["generated_documents"],
        "additional_files": dumped["additional_files"],
        "generation_error": task.generation_error,
        "generation_completed_at": task.generation_completed_at,
        "completed_at": task.completed_at,
        "notes": task.notes,
        "completion_data": dumped["completion_data"],
    }


class SqlRecordStore:
    """Record store over SQLAlchemy async sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    async def get_template(self, template_id: str) -> Optional[Template]:
        key = _as_uuid(template_id)
        if key is None:
            return None
        async with self.session_factory() as session:
            row = await TemplateRepository(session).get_by_id(key)
            return template_from_row(row) if row else None

    async def get_templates(self, template_ids: Sequence[str]) -> List[Template]:
        """Templates in the order of ``template_ids``; unknown ids are skipped."""
        keys = [key for key in (_as_uuid(template_id) for template_id in template_ids) if key is not None]
        async with self.session_factory() as session:
            rows = await TemplateRepository(session).get_many(keys)
        by_id = {str(row.id): template_from_row(row) for row in rows}
        return [by_id[template_id] for template_id in template_ids if template_id in by_id]

    async def get_client(self, client_id: str) -> Optional[Client]:
        key = _as_uuid(client_id)
        if key is None:
            return None
        async with self.session_factory() as session:
            row = await ClientRepository(session).get_by_id(key)
            return client_from_row(row) if row else None

    async def upsert_client(self, client: Client) -> Client:
        async with self.session_factory() as session:
            row = await ClientRepository(session).save(**client_to_values(client))
            return client_from_row(row)

    async def get_task(self, task_id: str) -> Optional[Task]:
        key = _as_uuid(task_id)
        if key is None:
            return None
        async with self.session_factory() as session:
            row = await TaskRepository(session).get_by_id(key)
            return task_from_row(row) if row else None

    async def upsert_task(self, task: Task) -> Task:
        async with self.session_factory() as session:
            row = await TaskRepository(session).save(**task_to_values(task))
            LOGGER.debug("Task saved", extra={"task_id": task.id, "status": task.status.value})
            return task_from_row(row)

    async def delete_task(self, task_id: str) -> bool:
        key = _as_uuid(task_id)
        if key is None:
            return False
        async with self.session_factory() as session:
            return await TaskRepository(session).delete(key)

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        async with self.session_factory() as session:
            rows = await TaskRepository(session).list_by_status(status.value if status else None)
            return [task_from_row(row) for row in rows]
