"""
Utility functions for extraedit.

Provides coordinate conversion, color normalization, file-name and
storage-path helpers.
"""

from __future__ import annotations

import re

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def column_index_to_letter(index: int) -> str:
    """Spreadsheet column label for a zero-based index (0 -> A, 26 -> AA, 702 -> AAA)."""
    letters = []
    number = index + 1
    while number:
        number, remainder = divmod(number - 1, 26)
        letters.append(chr(ord("A") + remainder))
    return "".join(reversed(letters))


def cell_to_a1(row_index: int, col_index: int) -> str:
    """Convert zero-based row and column indices to A1 notation.

    Examples:
        (0, 0) -> A1, (0, 1) -> B1, (9, 2) -> C10
    """
    return f"{column_index_to_letter(col_index)}{row_index + 1}"


def escape_tsv_value(value: str) -> str:
    """Escape a value for TSV format.

    Escapes tabs, newlines, and backslashes.
    """
    return (
        value.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def normalize_hex_color(value: str) -> str:
    """Normalize a color to uppercase ``#RRGGBB``.

    Accepts ``#RGB``, ``RRGGBB``, ``#RRGGBB`` and ARGB (``FFRRGGBB``, as
    written by spreadsheet containers).

    Raises:
        ValueError: If the value is not a hex color
    """
    match = _HEX_COLOR_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid color: {value!r}")
    digits = match.group(1).upper()
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    elif len(digits) == 8:
        digits = digits[2:]
    return f"#{digits}"


def file_extension(file_name: str) -> str:
    """Return the lowercase extension of a file name without the dot.

    Examples:
        report.CSV -> csv, archive.tar.gz -> gz, README -> ""
    """
    base = file_name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def replace_extension(file_name: str, new_extension: str) -> str:
    """Replace (or append) the extension of a file name.

    Examples:
        ("data.csv", "xlsx") -> data.xlsx, ("notes", "docx") -> notes.docx
    """
    if "." in file_name.rsplit("/", 1)[-1]:
        stem = file_name.rsplit(".", 1)[0]
    else:
        stem = file_name
    return f"{stem}.{new_extension}"


def sanitize_for_storage(segment: str) -> str:
    """Sanitize a string for use in a storage key.

    Whitespace runs become underscores and characters that break object
    paths or URLs become dashes.

    Examples:
        "511 Queens Rd" -> "511_Queens_Rd"
    """
    if not segment:
        return ""
    sanitized = re.sub(r"\s+", "_", segment.strip())
    sanitized = re.sub(r'[\\?#%*:|"<>]', "-", sanitized)
    sanitized = re.sub(r"_+", "_", sanitized)
    return sanitized.strip("_")


def format_display_name(segment: str) -> str:
    """Turn a storage key segment back into a display name.

    Examples:
        "511_Queens_Rd" -> "511 Queens Rd"
    """
    if not segment:
        return ""
    return segment.replace("_", " ").strip()


def join_path_segments(*segments: str) -> str:
    """Join sanitized segments into a storage key, dropping empty ones."""
    parts = []
    for segment in segments:
        if not segment:
            continue
        cleaned = sanitize_for_storage(segment).strip("/")
        if cleaned:
            parts.append(cleaned)
    return "/".join(parts)


def parent_key(key: str) -> str:
    """Return the parent prefix of a storage key ("" at the root).

    Examples:
        "a/b/c.csv" -> "a/b", "c.csv" -> ""
    """
    key = key.strip("/")
    if "/" not in key:
        return ""
    return key.rsplit("/", 1)[0]
