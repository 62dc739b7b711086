"""extraedit - Load, edit and save spreadsheets and documents held in blob storage.

This library decodes stored files into editable grids (with per-cell
formatting) or rich text, tracks edits in a session with debounced
autosave, and writes them back in a format that can carry the edits.
"""

__version__ = "0.1.0"

from extraedit.autosave import AutosaveScheduler, SaveOutcome, SaveResult
from extraedit.client import EditorClient, FileEditor, LoadResult
from extraedit.exceptions import (
    EditorError,
    IngestionError,
    SaveTimeoutError,
    SerializationError,
    StorageNotFoundError,
    StorageUploadError,
    UnsupportedFormatError,
    ValidationError,
)
from extraedit.metadata import CellFormat, CellMetadataStore, HorizontalAlign, StructuralAction
from extraedit.records import FileRecord
from extraedit.session import DocumentSession, EditSession, FormatAttribute, SaveState, Selection
from extraedit.sniffer import FileKind, FormatTag, sniff_format
from extraedit.transport import (
    APIError,
    AuthenticationError,
    BlobStore,
    FileRecordStore,
    InMemoryFileRecordStore,
    LocalBlobStore,
    NotFoundError,
    SupabaseBlobStore,
    SupabaseRecordStore,
    TransportError,
)

__all__ = [
    "APIError",
    "AuthenticationError",
    "AutosaveScheduler",
    "BlobStore",
    "CellFormat",
    "CellMetadataStore",
    "DocumentSession",
    "EditSession",
    "EditorClient",
    "EditorError",
    "FileEditor",
    "FileKind",
    "FileRecord",
    "FileRecordStore",
    "FormatAttribute",
    "FormatTag",
    "HorizontalAlign",
    "InMemoryFileRecordStore",
    "IngestionError",
    "LoadResult",
    "LocalBlobStore",
    "NotFoundError",
    "SaveOutcome",
    "SaveResult",
    "SaveState",
    "SaveTimeoutError",
    "Selection",
    "SerializationError",
    "StorageNotFoundError",
    "StorageUploadError",
    "StructuralAction",
    "SupabaseBlobStore",
    "SupabaseRecordStore",
    "TransportError",
    "UnsupportedFormatError",
    "ValidationError",
    "__version__",
    "sniff_format",
]
