"""EditorClient - host-facing API for extraedit.

Provides the ``load`` method that turns a file record into an editable
session, and the FileEditor handle whose ``save``/``rename``/``close``
methods drive persistence back to the blob store and record store.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from extraedit.autosave import AutosaveScheduler, SaveResult, Timer
from extraedit.config import get_settings
from extraedit.doc_ingest import RichTextDocument, ingest_document, placeholder_for
from extraedit.exceptions import (
    EditorError,
    StorageUploadError,
    UnsupportedFormatError,
    ValidationError,
)
from extraedit.grid_ingest import ingest_grid
from extraedit.key_resolver import ResolvedKey, StorageKeyResolver
from extraedit.logging import file_context, log_save_failed, log_save_started, log_save_succeeded
from extraedit.records import FileRecord, FileRecordUpdate
from extraedit.serializer import OutputFormat, SavePayload, serialize_document, serialize_grid
from extraedit.session import Clock, DocumentSession, EditSession
from extraedit.sniffer import FileKind, FileKindTag, FormatTag, classify_file_kind, sniff_format
from extraedit.transport import (
    APIError,
    AuthenticationError,
    BlobStore,
    FileRecordStore,
    NotFoundError,
    TransportError,
)
from extraedit.utils import file_extension, replace_extension

# Re-export transport exceptions for convenience
__all__ = [
    "APIError",
    "AuthenticationError",
    "EditorClient",
    "FileEditor",
    "LoadResult",
    "NotFoundError",
    "TransportError",
]


@dataclass
class LoadResult:
    """Result of opening a file.

    Exactly one of ``editor`` and ``placeholder`` is set for files that
    have content; folders and images carry neither.
    """

    record: FileRecord
    kind: FileKind
    format_tag: FormatTag | None = None
    editor: FileEditor | None = None
    placeholder: RichTextDocument | None = None
    url: str | None = None  # Signed read URL, for hosts that display the blob directly

    @property
    def is_editable(self) -> bool:
        return self.editor is not None


class FileEditor:
    """An open, editable file: its session plus the machinery to persist it.

    Created by ``EditorClient.load``. Edits go through ``session``; the
    autosave scheduler watches it and saves after the inactivity delay.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: FileRecordStore,
        record: FileRecord,
        key: str,
        session: EditSession | DocumentSession,
        kind: FileKind,
        *,
        autosave_delay: float | None = None,
        save_timeout: float | None = None,
        timer: Timer | None = None,
    ) -> None:
        self._blobs = blob_store
        self._records = record_store
        self.record = record
        self.key = key
        self.session = session
        self.kind = kind
        self.scheduler = AutosaveScheduler(
            session,
            self._persist,
            delay=autosave_delay,
            timeout=save_timeout,
            timer=timer,
        )

    @property
    def file_name(self) -> str:
        return self.session.file_name

    @property
    def has_unsaved_changes(self) -> bool:
        """Whether closing now would lose edits (for host close prompts)."""
        return self.session.dirty or self.session.is_saving

    def on_dirty_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Subscribe to dirty-flag flips; returns an unsubscribe function."""
        return self.session.on_dirty_change(callback)

    async def save(self, manual: bool = True) -> SaveResult:
        """Save now.

        A save requested while another is in flight is skipped, and a
        clean session is a successful no-op. Failures are reported in the
        result rather than raised; the session keeps its edits.
        """
        return await self.scheduler.request_save(manual=manual)

    async def rename(self, new_name: str) -> bool:
        """Rename the file's display name.

        Blank or unchanged names are ignored.

        Returns:
            True if the record was renamed

        Raises:
            ValidationError: If the name contains whitespace or changes the extension
        """
        trimmed = new_name.strip()
        current = self.session.file_name
        if not trimmed or trimmed == current:
            return False
        if any(ch.isspace() for ch in trimmed):
            raise ValidationError("file name", "file names cannot contain spaces")
        old_ext, new_ext = file_extension(current), file_extension(trimmed)
        if old_ext and old_ext != new_ext:
            raise ValidationError(
                "file name", f"cannot change file extension from .{old_ext} to .{new_ext}"
            )

        with file_context(self.record.id):
            self.record = await self._records.update(
                self.record.id, FileRecordUpdate(name=trimmed)
            )
            logger.info("Renamed {} to {}", current, trimmed)
        self.session.file_name = trimmed
        return True

    async def close(self) -> None:
        """Stop autosaving; an in-flight save is awaited so it is not lost."""
        self.scheduler.close()
        result = await self.scheduler.flush()
        if result is not None and not result.ok:
            logger.warning("Last autosave of {} failed: {}", self.file_name, result.error)
        if self.session.dirty:
            logger.warning("Closing {} with unsaved changes", self.file_name)

    # -- persistence -------------------------------------------------------

    def _serialize(self) -> SavePayload:
        session = self.session
        if isinstance(session, EditSession):
            base = session.source if session.format_tag is FormatTag.ZIP_CONTAINER else None
            return serialize_grid(
                session.grid,
                session.metadata,
                session.file_name,
                base_workbook=base,
                sheet_name=session.sheet_name,
            )
        return serialize_document(session.html, session.file_name)

    async def _persist(self, manual: bool) -> str | None:
        """Serialize, upload and record one save; return the new name on upgrade."""
        with file_context(self.record.id):
            try:
                return await self._upload_and_record(manual)
            except (EditorError, TransportError) as e:
                log_save_failed(self.record.id, str(e))
                raise

    async def _upload_and_record(self, manual: bool) -> str | None:
        payload = self._serialize()
        key = self.key
        if payload.upgraded:
            key = replace_extension(key, payload.output_format.value)
        log_save_started(self.record.id, key, manual)

        try:
            await self._blobs.upload(key, payload.data, payload.content_type, upsert=True)
        except TransportError as e:
            raise StorageUploadError(key, str(e)) from e

        update = FileRecordUpdate(
            path=key,
            type=payload.content_type,
            size=len(payload.data),
            name=payload.file_name,
        )
        await self._write_record(update)

        self.key = key
        session = self.session
        if payload.upgraded:
            session.file_name = payload.file_name
        if isinstance(session, EditSession) and payload.output_format is OutputFormat.XLSX:
            session.source = payload.data
            session.format_tag = FormatTag.ZIP_CONTAINER

        log_save_succeeded(self.record.id, key, len(payload.data), session.file_name)
        return payload.file_name

    async def _write_record(self, update: FileRecordUpdate) -> None:
        """Update the file record, creating it if it has gone missing.

        The blob is already stored at this point, so a failed update is
        only logged. A failed insert of a missing record is fatal.
        """
        try:
            self.record = await self._records.update(self.record.id, update)
            return
        except NotFoundError:
            logger.warning("File record {} missing, inserting it", self.record.id)
        except TransportError as e:
            logger.warning("File record update failed after upload: {}", e)
            self.record = update.apply_to(self.record)
            return

        try:
            self.record = await self._records.insert_if_missing(update.apply_to(self.record))
        except TransportError as e:
            reason = f"could not create file record: {e}"
            raise StorageUploadError(update.path or self.key, reason) from e


class EditorClient:
    """Client for loading files into edit sessions and saving them back.

    Example:
        >>> client = EditorClient(LocalBlobStore(Path("storage")), records)
        >>> result = await client.load("file-id")
        >>> result.editor.session.apply_format("bold", cell_range=...)
        >>> await result.editor.save()
    """

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: FileRecordStore,
        *,
        resolver: StorageKeyResolver | None = None,
        autosave_delay: float | None = None,
        save_timeout: float | None = None,
        timer: Timer | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            blob_store: Where file contents live
            record_store: Where file records live
            resolver: Storage key resolver (built from the stores by default)
            autosave_delay: Inactivity delay before autosave, in seconds
            save_timeout: Budget of one save, in seconds
            timer: Timer for the autosave scheduler
            clock: Clock stamping edits and saves
        """
        self._blobs = blob_store
        self._records = record_store
        self._resolver = resolver or StorageKeyResolver(blob_store, record_store)
        self._autosave_delay = autosave_delay
        self._save_timeout = save_timeout
        self._timer = timer
        self._clock = clock

    async def load(self, file_id: str) -> LoadResult:
        """Open a file by record id.

        Args:
            file_id: Id of the file record

        Returns:
            LoadResult with an editor for editable content, or a placeholder

        Raises:
            NotFoundError: If the record does not exist
            StorageNotFoundError: If the blob cannot be located
            IngestionError: If the file bytes are corrupt
        """
        with file_context(file_id):
            record = await self._records.read_by_id(file_id)
            if record is None:
                raise NotFoundError(f"File record {file_id} not found")

            if record.is_folder:
                return LoadResult(record=record, kind=classify_file_kind(record))

            resolved = await self._resolver.resolve(record)
            data = await self._blobs.download(resolved.key)
            tag = sniff_format(data[: get_settings().sniff_bytes], record.name, record.type)
            kind = classify_file_kind(record, tag)
            logger.info(
                "Loaded {} ({} bytes) from {} as {} / {}",
                record.name,
                len(data),
                resolved.key,
                tag.value,
                kind.tag.value,
            )
            return self._open(record, resolved, data, tag, kind)

    def _open(
        self,
        record: FileRecord,
        resolved: ResolvedKey,
        data: bytes,
        tag: FormatTag,
        kind: FileKind,
    ) -> LoadResult:
        result = LoadResult(record=record, kind=kind, format_tag=tag, url=resolved.url)

        if kind.tag is FileKindTag.SPREADSHEET:
            try:
                ingestion = ingest_grid(data, record.name, record.type)
            except UnsupportedFormatError as e:
                logger.info("Spreadsheet {} cannot be edited: {}", record.name, e.reason)
                result.placeholder = placeholder_for(e.format_tag, record.name)
                return result
            session: EditSession | DocumentSession = EditSession.from_ingestion(
                ingestion, record.name, source=data, clock=self._clock
            )
        elif kind.tag is FileKindTag.DOCUMENT:
            document = ingest_document(data, record.name, record.type)
            if document.placeholder:
                result.placeholder = document
                return result
            session = DocumentSession(
                document.html,
                file_name=record.name,
                format_tag=document.source_format,
                clock=self._clock,
            )
        elif kind.tag is FileKindTag.OTHER:
            result.placeholder = placeholder_for(kind.subtype or tag.value, record.name)
            return result
        else:
            return result

        result.editor = FileEditor(
            self._blobs,
            self._records,
            record,
            resolved.key,
            session,
            kind,
            autosave_delay=self._autosave_delay,
            save_timeout=self._save_timeout,
            timer=self._timer,
        )
        return result

    async def close(self) -> None:
        """Close both collaborators."""
        await self._blobs.close()
        await self._records.close()
