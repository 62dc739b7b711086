"""Storage key resolution.

The path recorded for a file does not always equal its blob key: files
were migrated between naming conventions over time. Resolution probes an
ordered, de-duplicated list of candidate keys and takes the first one
that exists. If none does, it lists each candidate's parent prefix (and
one level of subfolders) looking for an exact file name match. Running
out of candidates is a hard failure.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from loguru import logger

from extraedit.config import get_settings
from extraedit.exceptions import StorageNotFoundError
from extraedit.logging import log_key_resolved
from extraedit.records import FileRecord
from extraedit.transport import (
    AuthenticationError,
    BlobEntry,
    BlobStore,
    FileRecordStore,
    TransportError,
)
from extraedit.utils import parent_key


def normalize_storage_path(path: str | None, file_name: str | None = None) -> str:
    """Clean a recorded path and make sure it names the file.

    Leading and duplicate slashes are collapsed. The file name is appended
    only when the path neither ends in a file-like segment (one containing
    a dot) nor already contains the file name (case-insensitively), which
    covers timestamp-prefixed keys.

    Examples:
        ("//jobs//7/", "a.csv") -> jobs/7/a.csv
        ("jobs/7/a.csv", "a.csv") -> jobs/7/a.csv
        ("jobs/1700000000_a.csv", "a.csv") -> jobs/1700000000_a.csv
        ("", "a.csv") -> a.csv
    """
    cleaned = re.sub(r"/+", "/", (path or "").lstrip("/")).rstrip("/")
    if not file_name:
        return cleaned
    name = file_name.strip()
    if not cleaned:
        return name
    if "." in cleaned.rsplit("/", 1)[-1]:
        return cleaned
    if name.lower() in cleaned.lower():
        return cleaned
    return f"{cleaned}/{name}"


def _dedupe(keys: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(k for k in keys if k))


def build_candidate_keys(
    recorded_path: str | None,
    file_name: str,
    folder_path: str | None = None,
    job_id: str | None = None,
    legacy_roots: Sequence[str] = ("root",),
) -> list[str]:
    """Build the ordered, de-duplicated candidate keys for a file.

    Order: the raw recorded path, the normalized path, the parent folder's
    path joined with the file name (then the raw folder path), the legacy
    root-relative keys and finally the job-relative key.
    """
    candidates: list[str | None] = [
        recorded_path,
        normalize_storage_path(recorded_path, file_name),
    ]
    if folder_path:
        candidates.append(normalize_storage_path(folder_path, file_name))
        candidates.append(folder_path)
    candidates.extend(f"{root.strip('/')}/{file_name}" for root in legacy_roots)
    if job_id:
        candidates.append(f"jobs/{job_id}/{file_name}")
    return _dedupe(candidates)


@dataclass(frozen=True)
class ResolvedKey:
    """Where a file's blob actually lives."""

    key: str
    url: str
    attempts: int
    via_listing: bool = False


class StorageKeyResolver:
    """Locates a file's blob under inconsistent historical path conventions.

    Args:
        blob_store: Store probed for signed URLs and listings
        record_store: Store used to look up the parent folder's path
        signed_url_ttl: Lifetime of the returned URL, in seconds
        listing_limit: Maximum entries read per listing
        legacy_roots: Root prefixes tried as ``<root>/<file name>``
        listing_prefixes: Extra prefixes searched by the listing fallback
    """

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: FileRecordStore,
        *,
        signed_url_ttl: int | None = None,
        listing_limit: int | None = None,
        legacy_roots: Sequence[str] | None = None,
        listing_prefixes: Sequence[str] | None = None,
    ) -> None:
        settings = get_settings()
        self._blobs = blob_store
        self._records = record_store
        self._ttl = signed_url_ttl or settings.signed_url_ttl_seconds
        self._limit = listing_limit or settings.listing_limit
        self._legacy_roots = tuple(
            settings.legacy_roots if legacy_roots is None else legacy_roots
        )
        self._listing_prefixes = tuple(
            settings.listing_prefixes if listing_prefixes is None else listing_prefixes
        )

    async def folder_path(self, record: FileRecord) -> str | None:
        """Recorded path of the folder a file belongs to, if any."""
        if not record.folder_id:
            return None
        folder = await self._records.read_by_id(record.folder_id)
        return folder.path if folder is not None and folder.path else None

    async def candidates_for(self, record: FileRecord) -> list[str]:
        """Direct candidate keys of a record, in probe order."""
        return self._candidates(record, await self.folder_path(record))

    def _candidates(self, record: FileRecord, folder_path: str | None) -> list[str]:
        return build_candidate_keys(
            record.path,
            record.name,
            folder_path=folder_path,
            job_id=record.job_id,
            legacy_roots=self._legacy_roots,
        )

    async def resolve(self, record: FileRecord) -> ResolvedKey:
        """Find the blob key of a file record.

        Raises:
            StorageNotFoundError: If no candidate or listing match resolves
            AuthenticationError: If the blob store rejects our credentials
        """
        folder_path = await self.folder_path(record)
        candidates = self._candidates(record, folder_path)
        tried: list[str] = []

        for key in candidates:
            tried.append(key)
            url = await self._probe(key)
            if url is not None:
                log_key_resolved(record.id, key, len(tried), via_listing=False)
                return ResolvedKey(key=key, url=url, attempts=len(tried))

        logger.info(
            "No direct candidate resolved for {} after {} probes, searching listings",
            record.name,
            len(tried),
        )
        bases = _dedupe(
            [
                (folder_path or "").strip("/"),
                *(parent_key(key) for key in candidates),
                *(prefix.strip("/") for prefix in self._listing_prefixes),
            ]
        )
        for base in bases:
            found = await self._search_listing(base, record.name, tried)
            if found is not None:
                key, url = found
                log_key_resolved(record.id, key, len(tried), via_listing=True)
                return ResolvedKey(key=key, url=url, attempts=len(tried), via_listing=True)

        raise StorageNotFoundError(record.name, tried)

    async def _probe(self, key: str) -> str | None:
        try:
            url = await self._blobs.get_signed_url(key, self._ttl)
        except AuthenticationError:
            raise
        except TransportError as e:
            logger.debug("Probe of {} failed: {}", key, e)
            return None
        if url is None:
            logger.debug("Probe miss: {}", key)
        return url

    async def _list(self, prefix: str) -> list[BlobEntry]:
        try:
            return await self._blobs.list(prefix, self._limit)
        except AuthenticationError:
            raise
        except TransportError as e:
            logger.debug("Listing of {} failed: {}", prefix, e)
            return []

    async def _sign_if_listed(
        self,
        base: str,
        entries: list[BlobEntry],
        file_name: str,
        tried: list[str],
    ) -> tuple[str, str] | None:
        if not any(e.name == file_name and not e.is_folder for e in entries):
            return None
        key = f"{base}/{file_name}"
        tried.append(key)
        url = await self._probe(key)
        return (key, url) if url is not None else None

    async def _search_listing(
        self,
        base: str,
        file_name: str,
        tried: list[str],
    ) -> tuple[str, str] | None:
        """Look for ``file_name`` in ``base`` and its direct subfolders."""
        entries = await self._list(base)
        found = await self._sign_if_listed(base, entries, file_name, tried)
        if found is not None:
            return found

        for entry in entries:
            # Storage listings report folders without metadata; names without a dot
            # are folders by convention
            if not (entry.is_folder or "." not in entry.name) or entry.name == file_name:
                continue
            child = f"{base}/{entry.name}"
            found = await self._sign_if_listed(child, await self._list(child), file_name, tried)
            if found is not None:
                return found
        return None
