"""Gate for the awaiting -> completed transition."""

import asyncio
from typing import List, Optional, Tuple

from trustdesk.core.config import settings
from trustdesk.schemas.records import GeneratedDocument, Task, TaskStatus
from trustdesk.schemas.tasks import CompletionCheck, SignedDocumentStatus, StoredFile
from trustdesk.services.interfaces import SignedDocumentStorage
from trustdesk.services.task.naming import is_keep_file
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CompletionValidator:
    """Checks that every generated document has a signed upload.

    Gate failures are returned as data, never raised. A storage error while
    looking up a signed upload counts that document as missing.
    """

    def __init__(self, signed_storage: SignedDocumentStorage, timeout: Optional[float] = None):
        self.signed_storage = signed_storage
        self.timeout = timeout if timeout is not None else settings.generation.timeout_seconds

    async def can_complete(self, task: Task) -> CompletionCheck:
        """Decide whether ``task`` may be marked completed.

        Requires status ``awaiting``, at least one generated document and a
        signed upload for each generated document.
        """
        if task.status != TaskStatus.AWAITING:
            return CompletionCheck(
                valid=False,
                reason=f"Task must be in 'awaiting' status to complete (current: '{task.status.value}')",
            )

        generated = task.successful_documents
        if not generated:
            return CompletionCheck(valid=False, reason="No documents have been generated for this task")

        lookups = await asyncio.gather(*(self._signed_files(task.id, document) for document in generated))

        missing: List[GeneratedDocument] = []
        problems: List[str] = []
        for document, (files, error) in zip(generated, lookups):
            if not files:
                missing.append(document)
                if error:
                    problems.append(f"{document.template_name}: {error}")

        if missing:
            reason = "Missing signed documents for: " + ", ".join(d.template_name for d in missing)
            if problems:
                reason += f" (lookup errors: {'; '.join(problems)})"
            LOGGER.info(
                "Completion gate rejected task",
                extra={"task_id": task.id, "missing": [d.template_id for d in missing]},
            )
            return CompletionCheck(
                valid=False,
                reason=reason,
                missing_signed_docs=[d.template_id for d in missing],
            )

        return CompletionCheck(valid=True)

    async def signed_status(self, task: Task) -> List[SignedDocumentStatus]:
        """Signed upload state for each generated document of ``task``."""
        statuses = []
        for document in task.successful_documents:
            files, error = await self._signed_files(task.id, document)
            status = SignedDocumentStatus(
                template_id=document.template_id,
                template_name=document.template_name,
                exists=bool(files),
                error=error,
            )
            if files:
                latest = files[0]
                status.file_name = latest.name
                status.uploaded_at = latest.uploaded_at
                try:
                    status.url = await asyncio.wait_for(
                        self.signed_storage.url_for(task.id, document.template_id, latest.name),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    LOGGER.warning(
                        f"Could not create download URL for signed document: {e}",
                        extra={"task_id": task.id, "template_id": document.template_id},
                    )
                    status.error = str(e) or type(e).__name__
            statuses.append(status)
        return statuses

    async def _signed_files(self, task_id: str, document: GeneratedDocument) -> Tuple[List[StoredFile], Optional[str]]:
        """Real signed uploads for a document, newest first, plus any lookup error."""
        try:
            files = await asyncio.wait_for(
                self.signed_storage.list_signed(task_id, document.template_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return [], f"signed document lookup timed out after {self.timeout}s"
        except Exception as e:
            LOGGER.warning(
                f"Signed document lookup failed: {e}",
                extra={"task_id": task_id, "template_id": document.template_id},
            )
            return [], str(e) or type(e).__name__

        uploads = [f for f in files if not is_keep_file(f.name)]
        uploads.sort(key=lambda f: f.uploaded_at.timestamp() if f.uploaded_at else 0.0, reverse=True)
        return uploads, None
