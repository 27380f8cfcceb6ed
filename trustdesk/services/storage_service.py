"""Storage adapters for Supabase Storage.

Both adapters talk to the Storage REST API directly through ``httpx`` using
the service role key. Every failure, including transport errors and
timeouts, surfaces as ``StorageError``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from trustdesk.core.config import settings
from trustdesk.core.exceptions import StorageError
from trustdesk.schemas.tasks import StoredFile
from trustdesk.services.task.naming import (
    signed_document_path,
    signed_file_name,
    signed_task_folder,
)
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

LIST_PAGE_SIZE = 100


class SupabaseStorageClient:
    """Thin client over the Supabase Storage REST API for one bucket."""

    def __init__(
        self,
        bucket: str,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.bucket = bucket
        self.url = (url if url is not None else settings.supabase_url).rstrip("/")
        self.service_role_key = service_role_key if service_role_key is not None else settings.supabase_service_role_key
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    def object_url(self, path: str) -> str:
        return f"{self.base_api_url}/object/{self.bucket}/{path}"

    async def upload(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        """Upload bytes to ``path``, replacing any existing object when ``upsert``.

        Returns:
            The storage path of the uploaded object

        Raises:
            StorageError: If the upload fails
        """
        headers = {**self.headers, "Content-Type": content_type, "x-upsert": "true" if upsert else "false"}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.object_url(path),
                    headers=headers,
                    content=data,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(
                f"Error uploading file to Supabase: {str(e)}",
                exc_info=True,
                extra={"bucket": self.bucket, "path": path},
            )
            raise StorageError(f"Storage upload error for {path}: {str(e) or type(e).__name__}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed for {path}: {response.text}")

        return path

    async def download(self, path: str) -> bytes:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.object_url(path), headers=self.headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            LOGGER.error(f"Error downloading file from Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage download error for {path}: {str(e) or type(e).__name__}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to download file from Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Download failed for {path}: {response.text}")

        return response.content

    async def remove(self, paths: List[str]) -> List[str]:
        """Delete objects in one request and return the removed paths."""
        if not paths:
            return []
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.base_api_url}/object/{self.bucket}",
                    headers=self.headers,
                    json={"prefixes": paths},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error deleting files from Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage delete error: {str(e) or type(e).__name__}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to delete files from Supabase: {response.text}",
                extra={"bucket": self.bucket, "paths": paths, "status_code": response.status_code},
            )
            raise StorageError(f"Delete failed: {response.text}")

        return paths

    async def list_folder(self, prefix: str) -> List[Dict[str, Any]]:
        """List the direct children of ``prefix``, following pagination."""
        entries: List[Dict[str, Any]] = []
        offset = 0
        try:
            async with httpx.AsyncClient() as client:
                while True:
                    response = await client.post(
                        f"{self.base_api_url}/object/list/{self.bucket}",
                        headers=self.headers,
                        json={
                            "prefix": prefix,
                            "limit": LIST_PAGE_SIZE,
                            "offset": offset,
                            "sortBy": {"column": "name", "order": "asc"},
                        },
                        timeout=self.timeout,
                    )
                    if response.status_code != 200:
                        LOGGER.error(
                            f"Failed to list Supabase folder: {response.text}",
                            extra={"bucket": self.bucket, "prefix": prefix, "status_code": response.status_code},
                        )
                        raise StorageError(f"List failed for {prefix}: {response.text}")

                    page = response.json() or []
                    entries.extend(page)
                    if len(page) < LIST_PAGE_SIZE:
                        break
                    offset += LIST_PAGE_SIZE
        except httpx.HTTPError as e:
            LOGGER.error(f"Error listing Supabase folder: {str(e)}", exc_info=True)
            raise StorageError(f"Storage list error for {prefix}: {str(e) or type(e).__name__}", original_error=e)

        return entries

    async def signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        """Create a time-limited download URL for ``path``."""
        expires_in = expires_in or settings.supabase.signed_url_expiry
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_api_url}/object/sign/{self.bucket}/{path}",
                    headers=self.headers,
                    json={"expiresIn": expires_in},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error generating signed URL: {str(e)}", exc_info=True)
            raise StorageError(f"Signed URL error for {path}: {str(e) or type(e).__name__}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to generate signed URL: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Signed URL generation failed for {path}: {response.text}")

        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageError("Supabase response did not contain signedURL")

        # Relative paths come back without the storage prefix
        if signed_path.startswith("/"):
            return f"{self.base_api_url}{signed_path}"
        return signed_path


def _to_stored_file(prefix: str, entry: Dict[str, Any]) -> StoredFile:
    metadata = entry.get("metadata") or {}
    uploaded_at = entry.get("updated_at") or entry.get("created_at")
    return StoredFile(
        name=entry["name"],
        path=f"{prefix}/{entry['name']}" if prefix else entry["name"],
        size=metadata.get("size"),
        content_type=metadata.get("mimetype"),
        uploaded_at=datetime.fromisoformat(uploaded_at.replace("Z", "+00:00")) if uploaded_at else None,
    )


def _is_folder(entry: Dict[str, Any]) -> bool:
    # Folders are listed without an id
    return entry.get("id") is None


class SupabaseObjectStorage:
    """Path-addressed object storage over one Supabase bucket."""

    def __init__(self, bucket: Optional[str] = None, client: Optional[SupabaseStorageClient] = None):
        self.client = client or SupabaseStorageClient(bucket or settings.supabase.task_documents_bucket)

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        return await self.client.upload(path, data, content_type)

    async def get(self, path: str) -> bytes:
        return await self.client.download(path)

    async def delete(self, path: str) -> None:
        await self.client.remove([path])

    async def exists(self, path: str) -> bool:
        folder, _, name = path.rpartition("/")
        entries = await self.client.list_folder(folder)
        return any(entry.get("name") == name and not _is_folder(entry) for entry in entries)

    async def list(self, prefix: str) -> List[StoredFile]:
        prefix = prefix.rstrip("/")
        entries = await self.client.list_folder(prefix)
        return [_to_stored_file(prefix, entry) for entry in entries if not _is_folder(entry)]


class SupabaseSignedDocumentStorage:
    """Signed uploads stored at ``task-{task}/template-{template}/signed-document.{ext}``."""

    def __init__(self, client: Optional[SupabaseStorageClient] = None):
        self.client = client or SupabaseStorageClient(settings.supabase.signed_documents_bucket)

    async def list_signed(self, task_id: str, template_id: str) -> List[StoredFile]:
        """List the files in a template's signed folder, keep-files included."""
        folder = signed_document_path(task_id, template_id)
        entries = await self.client.list_folder(folder)
        return [_to_stored_file(folder, entry) for entry in entries if not _is_folder(entry)]

    async def url_for(self, task_id: str, template_id: str, file_name: str) -> str:
        return await self.client.signed_url(signed_document_path(task_id, template_id, file_name))

    async def upload_signed(
        self,
        task_id: str,
        template_id: str,
        data: bytes,
        extension: str,
        content_type: str = "application/pdf",
    ) -> str:
        """Store a signed copy, overwriting the previous upload for the template."""
        file_name = signed_file_name(f"upload.{extension.lstrip('.')}")
        path = signed_document_path(task_id, template_id, file_name)
        await self.client.upload(path, data, content_type, upsert=True)
        LOGGER.info(
            "Signed document uploaded",
            extra={"task_id": task_id, "template_id": template_id, "path": path},
        )
        return path

    async def ensure_folder(self, task_id: str, template_id: str) -> None:
        path = signed_document_path(task_id, template_id, ".gitkeep")
        await self.client.upload(path, b"", "text/plain", upsert=True)

    async def delete_all(self, task_id: str) -> List[str]:
        """Remove every file under the task's signed folders."""
        root = signed_task_folder(task_id)
        paths: List[str] = []
        for entry in await self.client.list_folder(root):
            if _is_folder(entry):
                folder = f"{root}/{entry['name']}"
                for child in await self.client.list_folder(folder):
                    if not _is_folder(child):
                        paths.append(f"{folder}/{child['name']}")
            else:
                paths.append(f"{root}/{entry['name']}")

        return await self.client.remove(paths)
