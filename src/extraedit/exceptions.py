"""Custom exceptions for the extraedit load/edit/save workflow."""

from __future__ import annotations


class EditorError(Exception):
    """Base exception for editing and persistence errors."""

    pass


class IngestionError(EditorError):
    """Raised when file bytes are unreadable or corrupt."""

    def __init__(self, file_name: str, reason: str) -> None:
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not read '{file_name}': {reason}")


class UnsupportedFormatError(EditorError):
    """Raised when no safe decoder exists for a format.

    Document ingestion recovers this into a placeholder document; it is
    never surfaced to the host as a blocking error.
    """

    def __init__(self, format_tag: str, reason: str) -> None:
        self.format_tag = format_tag
        self.reason = reason
        super().__init__(f"Unsupported format '{format_tag}': {reason}")


class SerializationError(EditorError):
    """Raised when every serialization tier for a target has failed."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"Could not serialize to '{target}': {reason}")


class StorageUploadError(EditorError):
    """Raised when the blob store rejects an upload."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Upload to '{key}' failed: {reason}")


class StorageNotFoundError(EditorError):
    """Raised when no candidate key resolves to a stored blob.

    This is a hard failure; resolution is not retried.
    """

    def __init__(self, file_name: str, tried_keys: list[str]) -> None:
        self.file_name = file_name
        self.tried_keys = list(tried_keys)
        tried = ", ".join(self.tried_keys) if self.tried_keys else "(none)"
        super().__init__(
            f"File '{file_name}' not found in storage. Tried: {tried}. "
            "It may have been moved or deleted."
        )


class SaveTimeoutError(EditorError, TimeoutError):
    """Raised when a save exceeds its wall-clock budget."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"Save timed out after {seconds:g} seconds")


class ValidationError(EditorError):
    """Raised when a user-supplied value is rejected before any mutation."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")
