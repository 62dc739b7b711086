"""Format sniffing and file-kind classification.

Classifies raw leading bytes plus a file name and declared content type
into a FormatTag, and a file record into a FileKind. Magic bytes always
win over the name or declared type, so mislabeled uploads are routed by
what they actually contain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from extraedit.utils import file_extension

if TYPE_CHECKING:
    from extraedit.records import FileRecord

SNIFF_BYTES = 800

ZIP_MAGIC = b"PK"
PDF_MAGIC = b"%PDF"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
RTF_MAGIC = b"{\\rtf"

_HTML_HEAD_RE = re.compile(r"^(<!doctype html|<html|<p[\s>]|<div[\s>])", re.IGNORECASE)
_BODY_RE = re.compile(r"<body", re.IGNORECASE)


class FormatTag(str, Enum):
    """Container or encoding a file's bytes are in."""

    CSV = "csv"
    ZIP_CONTAINER = "zip-container"
    LEGACY_BINARY_DOC = "legacy-binary-doc"
    LEGACY_BINARY_SHEET = "legacy-binary-sheet"
    HTML = "html"
    PLAIN_TEXT = "plain-text"
    MARKDOWN = "markdown"
    RICH_TEXT = "rich-text"
    PROPRIETARY_PACKAGE = "proprietary-package"
    PDF = "pdf"
    UNSUPPORTED = "unsupported"


# Extension and MIME fallbacks, consulted only when no signature matched.
_EXTENSION_TAGS: dict[str, FormatTag] = {
    "csv": FormatTag.CSV,
    "tsv": FormatTag.CSV,
    "txt": FormatTag.PLAIN_TEXT,
    "md": FormatTag.MARKDOWN,
    "markdown": FormatTag.MARKDOWN,
    "rtf": FormatTag.RICH_TEXT,
    "html": FormatTag.HTML,
    "htm": FormatTag.HTML,
    "doc": FormatTag.LEGACY_BINARY_DOC,
    "xls": FormatTag.LEGACY_BINARY_SHEET,
    "docx": FormatTag.PLAIN_TEXT,  # A .docx without a zip signature is text at best
    "pages": FormatTag.PROPRIETARY_PACKAGE,
    "odt": FormatTag.PROPRIETARY_PACKAGE,
    "ods": FormatTag.PROPRIETARY_PACKAGE,
    "pdf": FormatTag.PDF,
}

_CONTENT_TYPE_TAGS: dict[str, FormatTag] = {
    "text/csv": FormatTag.CSV,
    "text/tab-separated-values": FormatTag.CSV,
    "text/plain": FormatTag.PLAIN_TEXT,
    "text/markdown": FormatTag.MARKDOWN,
    "application/rtf": FormatTag.RICH_TEXT,
    "text/rtf": FormatTag.RICH_TEXT,
    "text/html": FormatTag.HTML,
    "application/msword": FormatTag.LEGACY_BINARY_DOC,
    "application/vnd.ms-excel": FormatTag.LEGACY_BINARY_SHEET,
    "application/vnd.apple.pages": FormatTag.PROPRIETARY_PACKAGE,
    "application/x-iwork-pages-sffpages": FormatTag.PROPRIETARY_PACKAGE,
    "application/vnd.oasis.opendocument.text": FormatTag.PROPRIETARY_PACKAGE,
    "application/vnd.oasis.opendocument.spreadsheet": FormatTag.PROPRIETARY_PACKAGE,
    "application/pdf": FormatTag.PDF,
}

SPREADSHEET_EXTENSIONS = frozenset({"xlsx", "xls", "csv", "tsv", "ods"})
SPREADSHEET_MIME_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "text/csv",
        "text/tab-separated-values",
        "application/vnd.oasis.opendocument.spreadsheet",
    }
)
DOCUMENT_EXTENSIONS = frozenset(
    {"docx", "doc", "txt", "rtf", "odt", "md", "markdown", "pages", "html", "htm"}
)
DOCUMENT_MIME_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
        "text/plain",
        "application/rtf",
        "application/vnd.oasis.opendocument.text",
        "text/markdown",
        "application/x-iwork-pages-sffpages",
        "application/vnd.apple.pages",
        "text/html",
    }
)
IMAGE_EXTENSIONS = frozenset(
    {"jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "heic", "heif", "tif", "tiff"}
)


def _base_content_type(content_type: str | None) -> str:
    """Strip parameters such as charset from a content type."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def looks_like_html(text: str, file_name: str = "", content_type: str | None = None) -> bool:
    """Check whether decoded leading text (or its labels) marks HTML."""
    if "html" in _base_content_type(content_type):
        return True
    if file_extension(file_name) in ("html", "htm"):
        return True
    stripped = text.lstrip().lower()
    return bool(_HTML_HEAD_RE.match(stripped) or _BODY_RE.search(stripped))


def sniff_format(
    head: bytes,
    file_name: str = "",
    content_type: str | None = None,
) -> FormatTag:
    """Classify leading bytes into a FormatTag.

    Signatures are checked first (zip, PDF, OLE2, RTF), then HTML markers
    in the decoded text, then the file extension and declared type.

    Args:
        head: Leading bytes of the file (the first 800 are enough)
        file_name: Name of the file, used for extension fallback
        content_type: Declared MIME type, if any

    Returns:
        The detected FormatTag
    """
    head = head[:SNIFF_BYTES]
    extension = file_extension(file_name)
    mime = _base_content_type(content_type)

    tag = _sniff(head, extension, mime, file_name, content_type)
    logger.debug(
        "Sniffed format {} (name={!r}, type={!r}, {} bytes)",
        tag.value,
        file_name,
        mime,
        len(head),
    )
    return tag


def _sniff(
    head: bytes,
    extension: str,
    mime: str,
    file_name: str,
    content_type: str | None,
) -> FormatTag:
    if head.startswith(ZIP_MAGIC):
        return FormatTag.ZIP_CONTAINER
    if head.startswith(PDF_MAGIC):
        return FormatTag.PDF
    if head.startswith(OLE2_MAGIC):
        if extension == "xls" or mime == "application/vnd.ms-excel":
            return FormatTag.LEGACY_BINARY_SHEET
        return FormatTag.LEGACY_BINARY_DOC
    if head.lstrip().startswith(RTF_MAGIC):
        return FormatTag.RICH_TEXT

    text = head.decode("utf-8", errors="replace")
    if looks_like_html(text, file_name, content_type):
        return FormatTag.HTML

    if extension in _EXTENSION_TAGS:
        return _EXTENSION_TAGS[extension]
    if mime in _CONTENT_TYPE_TAGS:
        return _CONTENT_TYPE_TAGS[mime]
    return FormatTag.UNSUPPORTED


def is_binary(head: bytes) -> bool:
    """Heuristic: text files never contain NUL bytes."""
    return b"\x00" in head[:SNIFF_BYTES]


# =============================================================================
# File kinds
# =============================================================================


FOLDER_CATEGORY_LABELS: dict[str, str] = {
    "property_files": "Property Files",
    "job_files": "Job Files",
    "before_images": "Before Images",
    "sprinkler_images": "Sprinkler Images",
    "other_files": "Other Files",
}

_LEGACY_CATEGORY_MAP: dict[str, str] = {
    "before": "before_images",
    "sprinkler": "sprinkler_images",
    "other": "other_files",
    "job_files": "job_files",
    "property_files": "property_files",
    "before_images": "before_images",
    "sprinkler_images": "sprinkler_images",
    "other_files": "other_files",
}

_FOLDER_NAME_TO_CATEGORY: dict[str, str] = {
    label.lower(): key for key, label in FOLDER_CATEGORY_LABELS.items()
}


def normalize_category(value: str | None) -> str | None:
    """Map a folder category, legacy alias or display label to its key.

    Examples:
        "before" -> before_images, "Job Files" -> job_files, "misc" -> None
    """
    if not value:
        return None
    key = value.strip().lower()
    if key in _LEGACY_CATEGORY_MAP:
        return _LEGACY_CATEGORY_MAP[key]
    return _FOLDER_NAME_TO_CATEGORY.get(key)


class FileKindTag(str, Enum):
    FOLDER = "folder"
    IMAGE = "image"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    OTHER = "other"


@dataclass(frozen=True)
class FileKind:
    """What a file record is, resolved once when it is opened.

    ``subtype`` carries the folder category for folders and the extension
    (e.g. "pdf") for other files.
    """

    tag: FileKindTag
    subtype: str | None = None

    @classmethod
    def folder(cls, subtype: str | None) -> FileKind:
        return cls(FileKindTag.FOLDER, subtype)

    @classmethod
    def image(cls) -> FileKind:
        return cls(FileKindTag.IMAGE)

    @classmethod
    def document(cls) -> FileKind:
        return cls(FileKindTag.DOCUMENT)

    @classmethod
    def spreadsheet(cls) -> FileKind:
        return cls(FileKindTag.SPREADSHEET)

    @classmethod
    def other(cls, subtype: str | None = None) -> FileKind:
        return cls(FileKindTag.OTHER, subtype)

    @property
    def is_editable(self) -> bool:
        return self.tag in (FileKindTag.DOCUMENT, FileKindTag.SPREADSHEET)


_SPREADSHEET_TAGS = frozenset({FormatTag.CSV, FormatTag.LEGACY_BINARY_SHEET})
_DOCUMENT_TAGS = frozenset(
    {
        FormatTag.HTML,
        FormatTag.PLAIN_TEXT,
        FormatTag.MARKDOWN,
        FormatTag.RICH_TEXT,
        FormatTag.LEGACY_BINARY_DOC,
    }
)


def classify_file_kind(record: FileRecord, format_tag: FormatTag | None = None) -> FileKind:
    """Resolve the FileKind of a record.

    The name and declared type decide first; the sniffed format tag is
    the fallback for records with neither.
    """
    if record.is_folder:
        return FileKind.folder(normalize_category(record.category or record.name))

    extension = file_extension(record.name)
    mime = _base_content_type(record.type)

    if extension in IMAGE_EXTENSIONS or mime.startswith("image/"):
        return FileKind.image()
    if extension in SPREADSHEET_EXTENSIONS or mime in SPREADSHEET_MIME_TYPES:
        return FileKind.spreadsheet()
    if extension in DOCUMENT_EXTENSIONS or mime in DOCUMENT_MIME_TYPES:
        return FileKind.document()
    if extension == "pdf" or mime == "application/pdf" or format_tag is FormatTag.PDF:
        return FileKind.other("pdf")

    if format_tag in _SPREADSHEET_TAGS:
        return FileKind.spreadsheet()
    if format_tag in _DOCUMENT_TAGS:
        return FileKind.document()
    return FileKind.other(extension or None)
