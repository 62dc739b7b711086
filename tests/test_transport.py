"""Tests for blob and record transports."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from extraedit.records import FileRecord, FileRecordUpdate
from extraedit.transport import (
    APIError,
    AuthenticationError,
    InMemoryFileRecordStore,
    LocalBlobStore,
    NotFoundError,
    SupabaseBlobStore,
    SupabaseRecordStore,
    TransportError,
)


def mock_client(transport: httpx.MockTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport)


class TestLocalBlobStore:
    """Tests for the directory-backed store."""

    @pytest.mark.asyncio
    async def test_upload_download(self, blob_store: LocalBlobStore) -> None:
        await blob_store.upload("jobs/7/a.csv", b"x,y\n", "text/csv")
        assert await blob_store.download("jobs/7/a.csv") == b"x,y\n"

    @pytest.mark.asyncio
    async def test_no_overwrite_without_upsert(self, blob_store: LocalBlobStore) -> None:
        await blob_store.upload("a.csv", b"1", "text/csv")
        with pytest.raises(APIError) as exc_info:
            await blob_store.upload("a.csv", b"2", "text/csv", upsert=False)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_missing(self, blob_store: LocalBlobStore) -> None:
        assert await blob_store.get_signed_url("nope.csv") is None
        with pytest.raises(NotFoundError):
            await blob_store.download("nope.csv")

    @pytest.mark.asyncio
    async def test_signed_url(self, blob_store: LocalBlobStore) -> None:
        await blob_store.upload("a.csv", b"1", "text/csv")
        url = await blob_store.get_signed_url("a.csv", expires_in=60)
        assert url is not None
        assert url.startswith("file://")
        assert url.endswith("?expires_in=60")

    @pytest.mark.asyncio
    async def test_list(self, blob_store: LocalBlobStore) -> None:
        await blob_store.upload("jobs/7/b.csv", b"12", "text/csv")
        await blob_store.upload("jobs/7/sub/c.csv", b"1", "text/csv")
        entries = await blob_store.list("jobs/7")
        assert [(e.name, e.is_folder, e.size) for e in entries] == [
            ("b.csv", False, 2),
            ("sub", True, None),
        ]
        assert await blob_store.list("missing") == []

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, blob_store: LocalBlobStore) -> None:
        with pytest.raises(TransportError):
            await blob_store.download("../outside.csv")


class TestInMemoryFileRecordStore:
    @pytest.mark.asyncio
    async def test_update_and_insert(self) -> None:
        store = InMemoryFileRecordStore([FileRecord(id="f1", name="a.csv", path="a.csv")])
        updated = await store.update("f1", FileRecordUpdate(path="b.xlsx", size=10))
        assert (updated.name, updated.path, updated.size) == ("a.csv", "b.xlsx", 10)

        with pytest.raises(NotFoundError):
            await store.update("f2", FileRecordUpdate(size=1))

        existing = await store.insert_if_missing(FileRecord(id="f1", name="other.csv"))
        assert existing.name == "a.csv"

    def test_from_json(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps({"files": [{"id": "f1", "name": "a.csv", "extra": 1}]}))
        store = InMemoryFileRecordStore.from_json(path)
        assert store.records["f1"].name == "a.csv"


class TestFileRecordUpdate:
    def test_unset_fields_untouched(self) -> None:
        record = FileRecord(id="f1", name="a.csv", path="p/a.csv", type="text/csv", size=3)
        updated = FileRecordUpdate(name="a.xlsx").apply_to(record)
        assert updated.name == "a.xlsx"
        assert updated.path == "p/a.csv"
        assert updated.type == "text/csv"
        assert updated.updated_at >= record.updated_at


class TestSupabaseBlobStore:
    """Tests for the HTTP blob store with a mocked transport."""

    @pytest.mark.asyncio
    async def test_signed_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url).endswith("/storage/v1/object/sign/files/jobs/7/my%20file.csv")
            assert json.loads(request.content) == {"expiresIn": 3600}
            return httpx.Response(200, json={"signedURL": "/object/sign/files/x?token=t"})

        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))

        url = await store.get_signed_url("jobs/7/my file.csv")
        assert url == "https://project.example/storage/v1/object/sign/files/x?token=t"
        await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404])
    async def test_missing_object(self, status: int) -> None:
        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(
            httpx.MockTransport(lambda _: httpx.Response(status, text="Object not found"))
        )
        assert await store.get_signed_url("a.csv") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors(self, status: int) -> None:
        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(lambda _: httpx.Response(status)))
        with pytest.raises(AuthenticationError):
            await store.download("a.csv")

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(
            httpx.MockTransport(lambda _: httpx.Response(500, text="boom"))
        )
        with pytest.raises(APIError) as exc_info:
            await store.upload("a.csv", b"1", "text/csv")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_upload_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": "files/a.xlsx"})

        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))
        await store.upload("a.xlsx", b"data", "application/octet-stream")

        (request,) = seen
        assert request.headers["x-upsert"] == "true"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.content == b"data"

    @pytest.mark.asyncio
    async def test_list(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["prefix"] == "jobs/7"
            return httpx.Response(
                200,
                json=[
                    {"name": "sub", "id": None, "metadata": None},
                    {"name": "a.csv", "id": "1", "metadata": {"size": 12}},
                ],
            )

        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))
        entries = await store.list("/jobs/7/")
        assert [(e.name, e.is_folder, e.size) for e in entries] == [
            ("sub", True, None),
            ("a.csv", False, 12),
        ]

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        store = SupabaseBlobStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="Network error"):
            await store.download("a.csv")


class TestSupabaseRecordStore:
    @pytest.mark.asyncio
    async def test_read_by_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["id"] == "eq.f1"
            return httpx.Response(200, json=[{"id": "f1", "name": "a.csv", "path": "a.csv"}])

        store = SupabaseRecordStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))
        record = await store.read_by_id("f1")
        assert record is not None
        assert record.path == "a.csv"

    @pytest.mark.asyncio
    async def test_update_missing_row(self) -> None:
        store = SupabaseRecordStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(lambda _: httpx.Response(200, json=[])))
        with pytest.raises(NotFoundError):
            await store.update("f1", FileRecordUpdate(size=3))

    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self) -> None:
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            return httpx.Response(200, json=[{"id": "f1", "name": "a.csv", **body}])

        store = SupabaseRecordStore("https://project.example", "key")
        store._client = mock_client(httpx.MockTransport(handler))
        record = await store.update("f1", FileRecordUpdate(path="b.csv", size=3))

        assert set(bodies[0]) == {"path", "size", "updated_at"}
        assert record.path == "b.csv"
