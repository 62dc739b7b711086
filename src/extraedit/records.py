"""File record models shared with the record store collaborator."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


class FileRecord(BaseModel):
    """A row of the file record store.

    Folders are records too: a file's ``folder_id`` points at another
    record whose ``path`` is the folder's own storage prefix.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    path: str | None = None
    type: str | None = None  # MIME type, or "folder" for folder records
    size: int | None = None
    folder_id: str | None = None
    job_id: str | None = None
    category: str | None = None  # Folder subtype for folder records
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_folder(self) -> bool:
        """Check if this record describes a folder rather than a blob."""
        return self.type == "folder"


class FileRecordUpdate(BaseModel):
    """Fields written back to a record after a save or rename.

    Unset fields are left untouched by the store.
    """

    path: str | None = None
    type: str | None = None
    size: int | None = None
    updated_at: datetime = Field(default_factory=_now)
    name: str | None = None  # Set by renames and format upgrades

    def apply_to(self, record: FileRecord) -> FileRecord:
        """Return a copy of ``record`` with this update applied."""
        changes = self.model_dump(exclude_none=True)
        return record.model_copy(update=changes)
