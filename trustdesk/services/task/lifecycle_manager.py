"""Task state machine and document generation orchestration.

States::

    draft --finalize--> in_progress --generate--> awaiting --complete--> completed
                                                  awaiting --retry--> awaiting

Generation never aborts on a single document: every template in a pass ends
up as one ``GeneratedDocument`` entry, either ``generated`` or ``failed``.
Entries are merged into the task by template id, so a retry replaces the
previous attempt instead of appending to it.

All mutating operations on one task run under an in-process ``asyncio.Lock``
keyed by task id. A lock lives only while some operation holds or awaits it.
Two processes retrying the same task at the same moment can still both
regenerate a failed document; the later write wins and the task stays
consistent because entries are upserted by template id.
"""

import asyncio
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from trustdesk.core.config import settings
from trustdesk.core.exceptions import (
    AppError,
    ClientNotFoundError,
    ConversionError,
    InvalidTransitionError,
    StorageError,
    TaskNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from trustdesk.schemas.records import (
    Client,
    DocumentStatus,
    GeneratedDocument,
    Task,
    TaskStatus,
    Template,
)
from trustdesk.schemas.tasks import (
    CompletionCheck,
    CompletionResult,
    DeletionReport,
    DocumentFailure,
    GenerationOutcome,
    GenerationResult,
    SignedDocumentStatus,
    TaskProgress,
    TaskStatistics,
    WorkflowStatus,
)
from trustdesk.services.field_aggregation_service import FieldAggregationService
from trustdesk.services.interfaces import (
    DocumentConverter,
    ObjectStorage,
    RecordStore,
    SignedDocumentStorage,
)
from trustdesk.services.task.completion_validator import CompletionValidator
from trustdesk.services.task.naming import generate_file_name, generated_document_path
from trustdesk.services.task.workflow import describe_workflow, task_progress
from trustdesk.services.templating.field_aggregator import AggregationResult
from trustdesk.services.templating.substitution_engine import PlaceholderSubstitutionEngine
from trustdesk.services.templating.value_map import CLIENT_FIELDS, build_value_map
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

EXPORT_FORMATS = ("html", "docx")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


class TaskLifecycleManager:
    """Owns task state transitions and runs generation passes."""

    def __init__(
        self,
        store: RecordStore,
        document_storage: ObjectStorage,
        signed_storage: SignedDocumentStorage,
        converter: Optional[DocumentConverter] = None,
        additional_storage: Optional[ObjectStorage] = None,
        engine: Optional[PlaceholderSubstitutionEngine] = None,
        aggregation_service: Optional[FieldAggregationService] = None,
        validator: Optional[CompletionValidator] = None,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the manager.

        Args:
            store: Record store for templates, clients and tasks
            document_storage: Storage for generated documents
            signed_storage: Storage for signed uploads
            converter: HTML to DOCX converter, needed only for DOCX export
            additional_storage: Storage for supplementary task files
            engine: Placeholder substitution engine
            aggregation_service: Custom field aggregation over task templates
            validator: Completion gate
            timeout: Upper bound in seconds for generating one document
            concurrency: Maximum documents generated at once within a pass
            clock: Source of timezone-aware timestamps
        """
        self.store = store
        self.document_storage = document_storage
        self.signed_storage = signed_storage
        self.converter = converter
        self.additional_storage = additional_storage
        self.engine = engine or PlaceholderSubstitutionEngine()
        self.aggregation_service = aggregation_service or FieldAggregationService(store)
        self.timeout = timeout if timeout is not None else settings.generation.timeout_seconds
        self.validator = validator or CompletionValidator(signed_storage, timeout=self.timeout)
        self.concurrency = max(1, concurrency if concurrency is not None else settings.generation.concurrency)
        self.clock = clock
        self.logger = LOGGER
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lock(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    async def get_task(self, task_id: str) -> Task:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    async def _require_client(self, client_id: str) -> Client:
        client = await self.store.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return client

    async def _check_templates(self, template_ids: Sequence[str]) -> List[Template]:
        """Every id must name an existing, active template."""
        templates = await self.store.get_templates(list(template_ids))
        found = {template.id: template for template in templates}

        missing = [template_id for template_id in template_ids if template_id not in found]
        if missing:
            raise TemplateNotFoundError(f"Templates not found: {', '.join(missing)}")

        inactive = [found[template_id] for template_id in template_ids if not found[template_id].is_active]
        if inactive:
            raise ValidationError(
                "Only active templates can be attached to a task: "
                + ", ".join(f"'{template.name}'" for template in inactive),
                details={"inactive_template_ids": [template.id for template in inactive]},
            )
        return [found[template_id] for template_id in template_ids]

    # ------------------------------------------------------------------
    # Drafts and creation
    # ------------------------------------------------------------------

    async def create_draft(
        self,
        client_id: str,
        template_ids: Sequence[str] = (),
        custom_field_values: Optional[Mapping[str, Any]] = None,
        service_id: Optional[str] = None,
        service_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Task:
        """Create a task in ``draft``; no documents are generated yet."""
        return await self._create(
            TaskStatus.DRAFT, client_id, template_ids, custom_field_values, service_id, service_name, notes
        )

    async def create_task(
        self,
        client_id: str,
        template_ids: Sequence[str],
        custom_field_values: Optional[Mapping[str, Any]] = None,
        service_id: Optional[str] = None,
        service_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Task:
        """Create a task directly in ``in_progress``, ready for ``generate``.

        Raises:
            ValidationError: If no templates are given
        """
        if not template_ids:
            raise ValidationError("A task needs at least one template", details={"client_id": client_id})
        return await self._create(
            TaskStatus.IN_PROGRESS, client_id, template_ids, custom_field_values, service_id, service_name, notes
        )

    async def _create(
        self,
        status: TaskStatus,
        client_id: str,
        template_ids: Sequence[str],
        custom_field_values: Optional[Mapping[str, Any]],
        service_id: Optional[str],
        service_name: Optional[str],
        notes: Optional[str],
    ) -> Task:
        client = await self._require_client(client_id)
        template_ids = list(dict.fromkeys(template_ids))
        await self._check_templates(template_ids)

        now = self.clock()
        task = Task(
            client_id=client.id,
            client_name=client.display_name,
            service_id=service_id,
            service_name=service_name,
            template_ids=template_ids,
            status=status,
            custom_field_values=dict(custom_field_values or {}),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        saved = await self.store.upsert_task(task)
        self.logger.info(
            f"Task created in '{status.value}'",
            extra={"task_id": saved.id, "client_id": client.id, "templates": len(template_ids)},
        )
        return saved

    async def update_draft(
        self,
        task_id: str,
        template_ids: Optional[Sequence[str]] = None,
        custom_field_values: Optional[Mapping[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> Task:
        """Change a draft's templates, custom values or notes.

        ``custom_field_values`` are merged into the existing values.
        """
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.DRAFT:
                raise InvalidTransitionError(task.id, task.status.value, "edit draft")

            if template_ids is not None:
                template_ids = list(dict.fromkeys(template_ids))
                await self._check_templates(template_ids)
                task.template_ids = template_ids
            if custom_field_values is not None:
                task.custom_field_values = {**task.custom_field_values, **custom_field_values}
            if notes is not None:
                task.notes = notes

            task.updated_at = self.clock()
            return await self.store.upsert_task(task)

    async def discard_draft(self, task_id: str) -> bool:
        """Delete a draft record. Drafts own no stored artifacts."""
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.DRAFT:
                raise InvalidTransitionError(task.id, task.status.value, "discard")

            deleted = await self.store.delete_task(task.id)
        self.logger.info("Draft discarded", extra={"task_id": task_id})
        return deleted

    async def task_fields(self, task_id: str) -> AggregationResult:
        """Custom fields the operator must fill in for the task's templates."""
        task = await self.get_task(task_id)
        return await self.aggregation_service.execute(task.template_ids)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def finalize(
        self,
        task_id: str,
        custom_field_values: Optional[Mapping[str, Any]] = None,
    ) -> GenerationResult:
        """Move a draft to ``in_progress`` and immediately run a generation pass.

        Raises:
            InvalidTransitionError: If the task is not a draft
            ValidationError: If the draft has no templates
        """
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.DRAFT:
                raise InvalidTransitionError(task.id, task.status.value, "finalize")
            if not task.template_ids:
                raise ValidationError(
                    "Cannot finalize a task without templates",
                    details={"task_id": task.id},
                )
            await self._check_templates(task.template_ids)

            if custom_field_values:
                task.custom_field_values = {**task.custom_field_values, **custom_field_values}
            task.status = TaskStatus.IN_PROGRESS
            task.updated_at = self.clock()
            task = await self.store.upsert_task(task)
            self.logger.info("Task finalized", extra={"task_id": task.id})

            return await self._generation_pass(task, list(task.template_ids))

    async def generate(self, task_id: str) -> GenerationResult:
        """Generate every bound template of an ``in_progress`` task."""
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.IN_PROGRESS:
                raise InvalidTransitionError(task.id, task.status.value, "generate")
            return await self._generation_pass(task, list(task.template_ids))

    async def retry(self, task_id: str) -> GenerationResult:
        """Regenerate failed (or never attempted) documents of an ``awaiting`` task.

        Documents already ``generated`` are left untouched. Calling retry
        when nothing failed is a no-op.
        """
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.AWAITING:
                raise InvalidTransitionError(task.id, task.status.value, "retry")

            targets = []
            for template_id in task.template_ids:
                document = task.document_for(template_id)
                if document is None or document.status == DocumentStatus.FAILED:
                    targets.append(template_id)

            if not targets:
                self.logger.info("Retry requested with no failed documents", extra={"task_id": task.id})
                return GenerationResult(task=task, outcome=GenerationOutcome.NOOP)

            self.logger.info(
                f"Retrying {len(targets)} failed document(s)",
                extra={"task_id": task.id, "template_ids": targets},
            )
            return await self._generation_pass(task, targets)

    async def _generation_pass(self, task: Task, template_ids: List[str]) -> GenerationResult:
        """Attempt ``template_ids`` for ``task`` and merge the outcomes. Caller holds the task lock."""
        now = self.clock()
        client, templates, setup_error = await self._load_sources(task, template_ids)

        if setup_error is not None:
            entries = [self._failed_entry(template_id, templates.get(template_id), setup_error, now) for template_id in template_ids]
        else:
            semaphore = asyncio.Semaphore(self.concurrency)
            entries = await asyncio.gather(
                *(
                    self._generate_one(task, client, template_id, templates.get(template_id), semaphore, now)
                    for template_id in template_ids
                )
            )

        saved = await self._merge_entries(task.id, entries)

        generated = [entry.template_id for entry in entries if entry.status == DocumentStatus.GENERATED]
        failed = [
            DocumentFailure(template_id=entry.template_id, template_name=entry.template_name, error=entry.error or "unknown error")
            for entry in entries
            if entry.status == DocumentStatus.FAILED
        ]
        if not failed:
            outcome = GenerationOutcome.SUCCESS
        elif not generated:
            outcome = GenerationOutcome.FAILED
        else:
            outcome = GenerationOutcome.PARTIAL

        self.logger.info(
            f"Generation pass finished: {len(generated)} generated, {len(failed)} failed",
            extra={"task_id": task.id, "outcome": outcome.value},
        )

        await self._ensure_signed_folders(saved.id, generated)

        return GenerationResult(
            task=saved,
            outcome=outcome,
            generated=generated,
            failed=failed,
            attempted=list(template_ids),
        )

    async def _load_sources(
        self, task: Task, template_ids: List[str]
    ) -> Tuple[Optional[Client], Dict[str, Template], Optional[str]]:
        """Fetch the client and templates once per pass; failures fail the whole pass."""
        try:
            templates = {template.id: template for template in await self.store.get_templates(template_ids)}
        except Exception as e:
            self.logger.error("Could not load templates for generation", exc_info=True, extra={"task_id": task.id})
            return None, {}, f"Could not load templates: {_describe_error(e)}"

        try:
            client = await self.store.get_client(task.client_id)
        except Exception as e:
            self.logger.error("Could not load client for generation", exc_info=True, extra={"task_id": task.id})
            return None, templates, f"Could not load client {task.client_id}: {_describe_error(e)}"

        if client is None:
            return None, templates, f"Client {task.client_id} not found"
        return client, templates, None

    async def _generate_one(
        self,
        task: Task,
        client: Client,
        template_id: str,
        template: Optional[Template],
        semaphore: asyncio.Semaphore,
        now: datetime,
    ) -> GeneratedDocument:
        if template is None:
            return self._failed_entry(template_id, None, f"Template {template_id} not found", now)
        if not template.is_active:
            return self._failed_entry(template_id, template, f"Template '{template.name}' is not active", now)
        if not template.html_content:
            return self._failed_entry(template_id, template, f"Template '{template.name}' has no content", now)

        async with semaphore:
            try:
                return await asyncio.wait_for(self._render_and_store(task, client, template, now), timeout=self.timeout)
            except asyncio.TimeoutError:
                error = f"Generation timed out after {self.timeout}s"
            except Exception as e:
                error = _describe_error(e)

        self.logger.warning(
            f"Document generation failed for template '{template.name}': {error}",
            extra={"task_id": task.id, "template_id": template_id},
        )
        return self._failed_entry(template_id, template, error, now)

    async def _render_and_store(self, task: Task, client: Client, template: Template, now: datetime) -> GeneratedDocument:
        value_map = build_value_map(client, task.custom_field_values, template.custom_fields, now=now)
        result = self.engine.substitute(template.html_content, value_map, template.custom_fields)
        if result.unresolved:
            self.logger.warning(
                f"Template '{template.name}' rendered with unresolved placeholders: {result.unresolved}",
                extra={"task_id": task.id, "template_id": template.id},
            )

        file_name = generate_file_name(template.name, client.display_name or task.client_name or "", now)
        path = generated_document_path(task.client_id, task.id, template.id, file_name)
        stored_path = await self.document_storage.put(path, result.rendered.encode("utf-8"), "text/html")

        return GeneratedDocument(
            template_id=template.id,
            template_name=template.name,
            status=DocumentStatus.GENERATED,
            file_name=f"{file_name}.html",
            storage_path=stored_path or path,
            generated_at=now,
            unresolved_placeholders=result.unresolved,
        )

    @staticmethod
    def _failed_entry(template_id: str, template: Optional[Template], error: str, now: datetime) -> GeneratedDocument:
        return GeneratedDocument(
            template_id=template_id,
            template_name=template.name if template else template_id,
            status=DocumentStatus.FAILED,
            generated_at=now,
            error=error,
        )

    async def _merge_entries(self, task_id: str, entries: Sequence[GeneratedDocument]) -> Task:
        """Upsert ``entries`` by template id into the stored task and move it to ``awaiting``."""
        task = await self.get_task(task_id)

        by_template = {document.template_id: document for document in task.generated_documents}
        for entry in entries:
            by_template[entry.template_id] = entry
        task.generated_documents = [by_template[t] for t in task.template_ids if t in by_template]

        failed = task.failed_documents
        if task.generated_documents and not task.successful_documents:
            task.generation_error = "All documents failed to generate: " + "; ".join(
                f"{document.template_name}: {document.error}" for document in failed
            )
        else:
            task.generation_error = None

        now = self.clock()
        task.status = TaskStatus.AWAITING
        task.generation_completed_at = now
        task.updated_at = now
        return await self.store.upsert_task(task)

    async def _ensure_signed_folders(self, task_id: str, template_ids: Sequence[str]) -> None:
        for template_id in template_ids:
            try:
                await asyncio.wait_for(self.signed_storage.ensure_folder(task_id, template_id), timeout=self.timeout)
            except Exception as e:
                self.logger.warning(
                    f"Could not create signed document folder: {_describe_error(e)}",
                    extra={"task_id": task_id, "template_id": template_id},
                )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def can_complete(self, task_id: str) -> CompletionCheck:
        return await self.validator.can_complete(await self.get_task(task_id))

    async def complete(
        self,
        task_id: str,
        notes: Optional[str] = None,
        completion_data: Optional[Mapping[str, Any]] = None,
    ) -> CompletionResult:
        """Mark an ``awaiting`` task completed once every signed copy is uploaded.

        Raises:
            InvalidTransitionError: If the task is not ``awaiting``
            ValidationError: If the completion gate fails; ``details["completion_check"]``
                holds the ``CompletionCheck``
        """
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            if task.status != TaskStatus.AWAITING:
                raise InvalidTransitionError(task.id, task.status.value, "complete")

            check = await self.validator.can_complete(task)
            if not check.valid:
                raise ValidationError(
                    check.reason or "Task cannot be completed",
                    details={"task_id": task.id, "completion_check": check},
                )

            now = self.clock()
            task.status = TaskStatus.COMPLETED
            task.completed_at = now
            task.updated_at = now
            if notes is not None:
                task.notes = notes
            if completion_data:
                task.completion_data = {**task.completion_data, **completion_data}
            task = await self.store.upsert_task(task)
            self.logger.info("Task completed", extra={"task_id": task.id})

        updated_fields, warnings = await self._write_back_client(task)
        return CompletionResult(
            task=task,
            client_updated=not warnings,
            updated_client_fields=updated_fields,
            client_update_warnings=warnings,
        )

    async def _write_back_client(self, task: Task) -> Tuple[List[str], List[str]]:
        """Push client attributes captured as custom values back to the client."""
        try:
            client = await self.store.get_client(task.client_id)
            if client is None:
                return [], [f"Client {task.client_id} not found; client record was not updated"]

            updates = {
                key: value
                for key, value in task.custom_field_values.items()
                if key in CLIENT_FIELDS and value not in (None, "")
            }

            completed_at = task.completed_at or self.clock()
            extra = dict(client.extra)
            extra["last_service_date"] = completed_at.date().isoformat()
            extra["task_completions"] = list(extra.get("task_completions") or []) + [
                {
                    "task_id": task.id,
                    "service_name": task.service_name,
                    "completed_at": completed_at.isoformat(),
                    "documents": [document.template_name for document in task.successful_documents],
                }
            ]

            updated = Client.model_validate({**client.model_dump(), **updates, "extra": extra})
            await self.store.upsert_client(updated)
        except (AppError, PydanticValidationError) as e:
            self.logger.warning(
                f"Client write-back failed: {e}",
                extra={"task_id": task.id, "client_id": task.client_id},
            )
            return [], [f"Client record was not updated: {_describe_error(e)}"]

        return sorted(updates), []

    # ------------------------------------------------------------------
    # Deletion, export, reporting
    # ------------------------------------------------------------------

    async def delete_task(self, task_id: str) -> DeletionReport:
        """Remove every stored artifact of a task, then the task record.

        Storage failures are counted in the report instead of raised.
        """
        async with self._lock(task_id):
            task = await self.get_task(task_id)
            report = DeletionReport(task_id=task.id)

            for document in task.generated_documents:
                if not document.storage_path:
                    continue
                try:
                    await asyncio.wait_for(self.document_storage.delete(document.storage_path), timeout=self.timeout)
                    report.generated_deleted += 1
                except Exception as e:
                    report.generated_failed += 1
                    report.errors.append(f"Generated document {document.storage_path}: {_describe_error(e)}")

            try:
                removed = await asyncio.wait_for(self.signed_storage.delete_all(task.id), timeout=self.timeout)
                report.signed_deleted = len(removed)
            except Exception as e:
                report.signed_failed += 1
                report.errors.append(f"Signed documents: {_describe_error(e)}")

            additional_storage = self.additional_storage or self.document_storage
            for attachment in task.additional_files:
                try:
                    await asyncio.wait_for(additional_storage.delete(attachment.file_path), timeout=self.timeout)
                    report.additional_deleted += 1
                except Exception as e:
                    report.additional_failed += 1
                    report.errors.append(f"Additional file {attachment.file_path}: {_describe_error(e)}")

            report.record_deleted = await self.store.delete_task(task.id)

        if report.errors:
            self.logger.warning(
                f"Task deleted with {len(report.errors)} storage error(s)",
                extra={"task_id": task_id, "errors": report.errors},
            )
        else:
            self.logger.info("Task deleted", extra={"task_id": task_id})
        return report

    async def export_document(self, task_id: str, template_id: str, fmt: str = "html") -> bytes:
        """Return a generated document as HTML or converted to DOCX.

        Raises:
            ValidationError: If the format is unknown or the document was not generated
            StorageError: If the stored rendering cannot be read
            ConversionError: If DOCX conversion fails
        """
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format '{fmt}'", details={"supported": list(EXPORT_FORMATS)})

        task = await self.get_task(task_id)
        document = task.document_for(template_id)
        if document is None or document.status != DocumentStatus.GENERATED or not document.storage_path:
            raise ValidationError(
                f"Template {template_id} has no generated document on task {task.id}",
                details={"task_id": task.id, "template_id": template_id},
            )

        try:
            html = await asyncio.wait_for(self.document_storage.get(document.storage_path), timeout=self.timeout)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Could not read {document.storage_path}: {_describe_error(e)}", original_error=e)

        if fmt == "html":
            return html

        if self.converter is None:
            raise ConversionError("No document converter is configured")
        try:
            return await self.converter.to_docx(html.decode("utf-8"))
        except AppError:
            raise
        except Exception as e:
            raise ConversionError(f"DOCX conversion failed: {_describe_error(e)}", original_error=e)

    async def signed_status(self, task_id: str) -> List[SignedDocumentStatus]:
        return await self.validator.signed_status(await self.get_task(task_id))

    async def workflow_status(self, task_id: str) -> WorkflowStatus:
        task = await self.get_task(task_id)
        return describe_workflow(task, has_signed=await self._has_all_signed(task))

    async def progress(self, task_id: str) -> TaskProgress:
        task = await self.get_task(task_id)
        return task_progress(task, has_signed=await self._has_all_signed(task))

    async def _has_all_signed(self, task: Task) -> bool:
        if task.status != TaskStatus.AWAITING:
            return task.status == TaskStatus.COMPLETED
        return (await self.validator.can_complete(task)).valid

    async def statistics(self) -> TaskStatistics:
        """Counts of tasks by status and of generated and failed documents."""
        tasks = await self.store.list_tasks()
        stats = TaskStatistics(
            total=len(tasks),
            by_status={status.value: 0 for status in TaskStatus},
        )
        for task in tasks:
            stats.by_status[task.status.value] += 1
            if task.generation_error:
                stats.with_generation_errors += 1
            stats.documents_generated += len(task.successful_documents)
            stats.documents_failed += len(task.failed_documents)
        return stats
