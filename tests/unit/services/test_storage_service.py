"""Unit tests for the Supabase storage adapters."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from trustdesk.core.exceptions import StorageError
from trustdesk.services.storage_service import (
    LIST_PAGE_SIZE,
    SupabaseObjectStorage,
    SupabaseSignedDocumentStorage,
    SupabaseStorageClient,
)


def response(status_code=200, json_data=None, text="", content=b""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = json_data
    mock.text = text
    mock.content = content
    return mock


@pytest.fixture
def http_client():
    """Patch httpx.AsyncClient and yield the client used inside ``async with``."""
    with patch("trustdesk.services.storage_service.httpx.AsyncClient") as client_cls:
        client = AsyncMock()
        client_cls.return_value.__aenter__.return_value = client
        yield client


@pytest.fixture
def storage_client() -> SupabaseStorageClient:
    return SupabaseStorageClient("task-documents", url="https://sb.test/", service_role_key="key", timeout=5)


class TestSupabaseStorageClient:
    """REST calls against the Storage API."""

    @pytest.mark.asyncio
    async def test_upload(self, http_client, storage_client):
        http_client.post.return_value = response(200)

        path = await storage_client.upload("c1/t1/doc.html", b"<p>x</p>", "text/html")

        assert path == "c1/t1/doc.html"
        args, kwargs = http_client.post.call_args
        assert args[0] == "https://sb.test/storage/v1/object/task-documents/c1/t1/doc.html"
        assert kwargs["headers"]["x-upsert"] == "true"
        assert kwargs["headers"]["Authorization"] == "Bearer key"
        assert kwargs["headers"]["apikey"] == "key"
        assert kwargs["content"] == b"<p>x</p>"

    @pytest.mark.asyncio
    async def test_upload_error_status(self, http_client, storage_client):
        http_client.post.return_value = response(400, text="Bucket not found")

        with pytest.raises(StorageError, match="Bucket not found"):
            await storage_client.upload("a.html", b"", "text/html")

    @pytest.mark.asyncio
    async def test_transport_error(self, http_client, storage_client):
        http_client.get.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(StorageError) as exc_info:
            await storage_client.download("a.html")
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_download(self, http_client, storage_client):
        http_client.get.return_value = response(200, content=b"<p>doc</p>")
        assert await storage_client.download("a.html") == b"<p>doc</p>"

    @pytest.mark.asyncio
    async def test_list_folder_paginates(self, http_client, storage_client):
        first = [{"name": f"f{i}", "id": str(i)} for i in range(LIST_PAGE_SIZE)]
        second = [{"name": "last", "id": "x"}]
        http_client.post.side_effect = [response(200, first), response(200, second)]

        entries = await storage_client.list_folder("c1")

        assert len(entries) == LIST_PAGE_SIZE + 1
        offsets = [call.kwargs["json"]["offset"] for call in http_client.post.call_args_list]
        assert offsets == [0, LIST_PAGE_SIZE]

    @pytest.mark.asyncio
    async def test_remove(self, http_client, storage_client):
        http_client.request.return_value = response(200, [])

        removed = await storage_client.remove(["a", "b"])

        assert removed == ["a", "b"]
        assert http_client.request.call_args.kwargs["json"] == {"prefixes": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_remove_nothing(self, http_client, storage_client):
        assert await storage_client.remove([]) == []
        http_client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_signed_url_relative(self, http_client, storage_client):
        http_client.post.return_value = response(200, {"signedURL": "/object/sign/task-documents/a.pdf?token=t"})

        url = await storage_client.signed_url("a.pdf", expires_in=60)

        assert url == "https://sb.test/storage/v1/object/sign/task-documents/a.pdf?token=t"
        assert http_client.post.call_args.kwargs["json"] == {"expiresIn": 60}

    @pytest.mark.asyncio
    async def test_signed_url_missing(self, http_client, storage_client):
        http_client.post.return_value = response(200, {})
        with pytest.raises(StorageError):
            await storage_client.signed_url("a.pdf")


class TestSupabaseObjectStorage:
    """Object storage over a storage client."""

    @pytest.mark.asyncio
    async def test_list_skips_folders(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        client.list_folder.return_value = [
            {"name": "sub", "id": None},
            {
                "name": "doc.html",
                "id": "1",
                "updated_at": "2024-01-15T10:30:00Z",
                "metadata": {"size": 12, "mimetype": "text/html"},
            },
        ]
        storage = SupabaseObjectStorage(client=client)

        files = await storage.list("c1/t1/")

        assert len(files) == 1
        assert files[0].path == "c1/t1/doc.html"
        assert files[0].size == 12
        assert files[0].uploaded_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_exists(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        client.list_folder.return_value = [{"name": "doc.html", "id": "1"}]
        storage = SupabaseObjectStorage(client=client)

        assert await storage.exists("c1/t1/doc.html") is True
        assert await storage.exists("c1/t1/other.html") is False
        client.list_folder.assert_awaited_with("c1/t1")

    @pytest.mark.asyncio
    async def test_delete(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        await SupabaseObjectStorage(client=client).delete("c1/t1/doc.html")
        client.remove.assert_awaited_once_with(["c1/t1/doc.html"])


class TestSupabaseSignedDocumentStorage:
    """Signed upload folders keyed by task and template."""

    @pytest.mark.asyncio
    async def test_upload_signed_overwrites_fixed_name(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        storage = SupabaseSignedDocumentStorage(client=client)

        path = await storage.upload_signed("t1", "tpl1", b"%PDF", ".PDF")

        assert path == "task-t1/template-tpl1/signed-document.pdf"
        client.upload.assert_awaited_once_with(path, b"%PDF", "application/pdf", upsert=True)

    @pytest.mark.asyncio
    async def test_list_signed(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        client.list_folder.return_value = [
            {"name": ".gitkeep", "id": "k"},
            {"name": "signed-document.pdf", "id": "1", "created_at": "2024-01-15T10:30:00+00:00"},
        ]
        storage = SupabaseSignedDocumentStorage(client=client)

        files = await storage.list_signed("t1", "tpl1")

        client.list_folder.assert_awaited_once_with("task-t1/template-tpl1")
        assert [f.name for f in files] == [".gitkeep", "signed-document.pdf"]

    @pytest.mark.asyncio
    async def test_ensure_folder(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        await SupabaseSignedDocumentStorage(client=client).ensure_folder("t1", "tpl1")
        client.upload.assert_awaited_once_with("task-t1/template-tpl1/.gitkeep", b"", "text/plain", upsert=True)

    @pytest.mark.asyncio
    async def test_delete_all_walks_template_folders(self):
        client = AsyncMock(spec=SupabaseStorageClient)
        client.list_folder.side_effect = [
            [{"name": "template-a", "id": None}, {"name": "template-b", "id": None}],
            [{"name": ".gitkeep", "id": "1"}, {"name": "signed-document.pdf", "id": "2"}],
            [{"name": "signed-document.png", "id": "3"}],
        ]
        client.remove.side_effect = lambda paths: paths
        storage = SupabaseSignedDocumentStorage(client=client)

        removed = await storage.delete_all("t1")

        assert removed == [
            "task-t1/template-a/.gitkeep",
            "task-t1/template-a/signed-document.pdf",
            "task-t1/template-b/signed-document.png",
        ]
