"""Transport layer for blob storage and file records.

Defines the collaborator contracts and implementations:
- BlobStore / FileRecordStore: abstract read/write contracts
- SupabaseBlobStore / SupabaseRecordStore: production transports over the
  storage and PostgREST HTTP APIs
- LocalBlobStore / InMemoryFileRecordStore: directory- and memory-backed
  transports for tests and the command line
"""

from __future__ import annotations

import json
import ssl
import urllib.parse
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import certifi
import httpx
from loguru import logger

from extraedit.records import FileRecord, FileRecordUpdate

DEFAULT_TIMEOUT = 60


class TransportError(Exception):
    """Base exception for transport errors."""


class AuthenticationError(TransportError):
    """Raised when authentication fails (401/403)."""


class NotFoundError(TransportError):
    """Raised when a blob or record is not found (404)."""


class APIError(TransportError):
    """Raised when the API returns an error."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class BlobEntry:
    """One entry of a storage listing."""

    name: str
    is_folder: bool = False
    size: int | None = None


class BlobStore(ABC):
    """Abstract base class for blob storage.

    Keys are slash-separated paths relative to the store's bucket or root.
    """

    @abstractmethod
    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str | None:
        """Create a time-limited read URL for a key.

        Args:
            key: Storage key
            expires_in: URL lifetime in seconds

        Returns:
            The URL, or None if no blob exists at the key
        """
        ...

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Read a blob.

        Raises:
            NotFoundError: If no blob exists at the key
        """
        ...

    @abstractmethod
    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> None:
        """Write a blob, replacing an existing one when ``upsert`` is set."""
        ...

    @abstractmethod
    async def list(self, prefix: str, limit: int = 200) -> list[BlobEntry]:
        """List the direct children of a prefix ("" is the root)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


class FileRecordStore(ABC):
    """Abstract base class for the file record database."""

    @abstractmethod
    async def read_by_id(self, file_id: str) -> FileRecord | None:
        """Fetch a record, or None if it does not exist."""
        ...

    @abstractmethod
    async def update(self, file_id: str, update: FileRecordUpdate) -> FileRecord:
        """Apply an update to an existing record.

        Raises:
            NotFoundError: If the record does not exist
        """
        ...

    @abstractmethod
    async def insert_if_missing(self, record: FileRecord) -> FileRecord:
        """Insert a record unless one with the same id exists; return the stored one."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


# =============================================================================
# HTTP transports
# =============================================================================


class _HTTPTransport:
    """Shared client setup and error mapping for the REST transports."""

    def __init__(self, base_url: str, api_key: str, timeout: int = DEFAULT_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make a request and map HTTP failures onto transport errors."""
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise AuthenticationError("Invalid or expired API key") from e
            if status == 403:
                raise AuthenticationError("Access denied. Check storage policies.") from e
            if status == 404:
                raise NotFoundError(f"Not found: {url}") from e
            body = e.response.text
            raise APIError(f"API error ({status}): {body}", status_code=status) from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _quote_key(key: str) -> str:
    return urllib.parse.quote(key.strip("/"), safe="/")


class SupabaseBlobStore(_HTTPTransport, BlobStore):
    """Production blob store over the Supabase storage REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str = "files",
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Project URL, e.g. https://<project>.supabase.co
            api_key: Service or anon key
            bucket: Storage bucket holding the files
            timeout: Request timeout in seconds
        """
        super().__init__(base_url, api_key, timeout)
        self._bucket = bucket
        self._storage = f"{self._base_url}/storage/v1"

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str | None:
        url = f"{self._storage}/object/sign/{self._bucket}/{_quote_key(key)}"
        try:
            response = await self._request("POST", url, json={"expiresIn": expires_in})
        except NotFoundError:
            return None
        except APIError as e:
            # The storage API reports missing objects as 400 "Object not found"
            if e.status_code == 400:
                return None
            raise
        signed = response.json().get("signedURL")
        if not signed:
            return None
        return f"{self._storage}{signed}" if signed.startswith("/") else signed

    async def download(self, key: str) -> bytes:
        url = f"{self._storage}/object/authenticated/{self._bucket}/{_quote_key(key)}"
        response = await self._request("GET", url, headers={"Cache-Control": "no-cache"})
        return response.content

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> None:
        url = f"{self._storage}/object/{self._bucket}/{_quote_key(key)}"
        await self._request(
            "POST",
            url,
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
                "Cache-Control": "max-age=0",
            },
        )

    async def list(self, prefix: str, limit: int = 200) -> list[BlobEntry]:
        url = f"{self._storage}/object/list/{self._bucket}"
        body = {"prefix": prefix.strip("/"), "limit": limit, "offset": 0}
        response = await self._request("POST", url, json=body)
        entries = []
        for item in response.json():
            metadata = item.get("metadata") or {}
            entries.append(
                BlobEntry(
                    name=item.get("name", ""),
                    is_folder=item.get("id") is None,
                    size=metadata.get("size"),
                )
            )
        return entries


class SupabaseRecordStore(_HTTPTransport, FileRecordStore):
    """Production record store over PostgREST."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "files",
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(base_url, api_key, timeout)
        self._table_url = f"{self._base_url}/rest/v1/{table}"

    async def read_by_id(self, file_id: str) -> FileRecord | None:
        response = await self._request(
            "GET", self._table_url, params={"id": f"eq.{file_id}", "select": "*"}
        )
        rows = response.json()
        return FileRecord.model_validate(rows[0]) if rows else None

    async def update(self, file_id: str, update: FileRecordUpdate) -> FileRecord:
        response = await self._request(
            "PATCH",
            self._table_url,
            params={"id": f"eq.{file_id}"},
            json=update.model_dump(mode="json", exclude_none=True),
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise NotFoundError(f"File record {file_id} not found")
        return FileRecord.model_validate(rows[0])

    async def insert_if_missing(self, record: FileRecord) -> FileRecord:
        existing = await self.read_by_id(record.id)
        if existing is not None:
            return existing
        response = await self._request(
            "POST",
            self._table_url,
            json=record.model_dump(mode="json", exclude_none=True),
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return FileRecord.model_validate(rows[0]) if rows else record


# =============================================================================
# Local transports
# =============================================================================


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory.

    Expected directory structure mirrors the keys:
        root/
            <folder>/<subfolder>/<file>
    """

    def __init__(self, root: Path) -> None:
        """Initialize the store.

        Args:
            root: Directory that plays the role of the bucket
        """
        self._root = root.resolve()

    def _path(self, key: str) -> Path:
        path = (self._root / key.strip("/")).resolve()
        if path != self._root and self._root not in path.parents:
            raise TransportError(f"Key escapes the storage root: {key}")
        return path

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str | None:
        path = self._path(key)
        if not path.is_file():
            return None
        return f"{path.as_uri()}?expires_in={expires_in}"

    async def download(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Not found: {key}")
        return path.read_bytes()

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> None:
        path = self._path(key)
        if path.exists() and not upsert:
            raise APIError(f"Object already exists: {key}", status_code=409)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Wrote {} bytes ({}) to {}", len(data), content_type, path)

    async def list(self, prefix: str, limit: int = 200) -> list[BlobEntry]:
        directory = self._path(prefix)
        if not directory.is_dir():
            return []
        entries = [
            BlobEntry(
                name=child.name,
                is_folder=child.is_dir(),
                size=None if child.is_dir() else child.stat().st_size,
            )
            for child in sorted(directory.iterdir())
        ]
        return entries[:limit]

    async def close(self) -> None:
        """No-op for local blob store."""
        pass


class InMemoryFileRecordStore(FileRecordStore):
    """Record store held in a dict, for tests and the command line."""

    def __init__(self, records: Iterable[FileRecord] = ()) -> None:
        self.records: dict[str, FileRecord] = {r.id: r for r in records}

    @classmethod
    def from_json(cls, path: Path) -> InMemoryFileRecordStore:
        """Load records from a JSON list (or {"files": [...]}) file."""
        payload = json.loads(path.read_text())
        rows = payload.get("files", []) if isinstance(payload, dict) else payload
        return cls(FileRecord.model_validate(row) for row in rows)

    async def read_by_id(self, file_id: str) -> FileRecord | None:
        return self.records.get(file_id)

    async def update(self, file_id: str, update: FileRecordUpdate) -> FileRecord:
        record = self.records.get(file_id)
        if record is None:
            raise NotFoundError(f"File record {file_id} not found")
        updated = update.apply_to(record)
        self.records[file_id] = updated
        return updated

    async def insert_if_missing(self, record: FileRecord) -> FileRecord:
        return self.records.setdefault(record.id, record)

    async def close(self) -> None:
        """No-op for in-memory record store."""
        pass
