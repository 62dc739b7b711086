"""Serialization: turn live session content into bytes for storage.

Grids are written as CSV or as a zip-container workbook. A grid whose
target cannot carry its formatting (CSV with metadata, or a legacy
workbook) is upgraded to .xlsx and the payload carries the new file name.

Rich text is written as .docx through three tiers: direct conversion,
conversion after sanitizing, and finally plain paragraphs. Only when all
three fail does serialization raise.
"""

from __future__ import annotations

import csv
import io
import math
import zipfile
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import docx
import openpyxl
from loguru import logger
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

from extraedit.exceptions import SerializationError
from extraedit.grid_ingest import cell_to_text
from extraedit.rich_text import (
    HTMLDocument,
    HTMLParagraph,
    HTMLTable,
    MarkupError,
    html_to_plain_text,
    parse_html,
    plain_paragraphs,
    sanitize_html,
    strip_xml_invalid,
    wrap_html_document,
)
from extraedit.utils import file_extension, replace_extension

if TYPE_CHECKING:
    from collections.abc import Iterable

    from openpyxl.cell.cell import Cell
    from openpyxl.worksheet.worksheet import Worksheet

    from extraedit.grid import Grid
    from extraedit.metadata import CellFormat, CellMetadataStore

DEFAULT_SHEET_NAME = "Sheet1"
MAX_EXACT_DIGITS = 15  # Spreadsheet numbers are doubles


class OutputFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
    DOCX = "docx"
    HTML = "html"
    TXT = "txt"
    MD = "md"
    RTF = "rtf"

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self]


CONTENT_TYPES: dict[OutputFormat, str] = {
    OutputFormat.CSV: "text/csv",
    OutputFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    OutputFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    OutputFormat.HTML: "text/html",
    OutputFormat.TXT: "text/plain",
    OutputFormat.MD: "text/markdown",
    OutputFormat.RTF: "application/rtf",
}

_DOCUMENT_FORMATS: dict[str, OutputFormat] = {
    "docx": OutputFormat.DOCX,
    "html": OutputFormat.HTML,
    "htm": OutputFormat.HTML,
    "txt": OutputFormat.TXT,
    "md": OutputFormat.MD,
    "markdown": OutputFormat.MD,
    "rtf": OutputFormat.RTF,
}


@dataclass(frozen=True)
class SavePayload:
    """Serialized bytes ready for upload.

    ``file_name`` is set only when the output format differs from what the
    original name implies (a format upgrade); the caller renames the file.
    """

    data: bytes
    content_type: str
    output_format: OutputFormat
    file_name: str | None = None
    tier: int = 1  # Which rich-text export tier produced the bytes

    @property
    def upgraded(self) -> bool:
        return self.file_name is not None


# =============================================================================
# Grids
# =============================================================================


def serialize_grid(
    grid: Grid,
    metadata: CellMetadataStore,
    file_name: str,
    *,
    base_workbook: bytes | None = None,
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> SavePayload:
    """Serialize a grid and its formatting for the file's format.

    Args:
        grid: Live grid (header and rows)
        metadata: Cell formatting keyed by (data-row, col)
        file_name: Current file name; its extension picks the format
        base_workbook: Original workbook bytes; other sheets are preserved
        sheet_name: Worksheet to replace (or create) in the workbook

    Returns:
        SavePayload, with a new file name when the format was upgraded

    Raises:
        SerializationError: If the workbook cannot be written
    """
    extension = file_extension(file_name)

    if extension in ("csv", "tsv"):
        if len(metadata) == 0:
            delimiter = "\t" if extension == "tsv" else ","
            return SavePayload(
                data=grid_to_csv(grid, delimiter),
                content_type=OutputFormat.CSV.content_type,
                output_format=OutputFormat.CSV,
            )
        new_name = replace_extension(file_name, "xlsx")
        logger.info(
            "Upgrading {} to {}: {} formatted cells cannot be stored as CSV",
            file_name,
            new_name,
            len(metadata),
        )
        return _xlsx_payload(grid, metadata, None, sheet_name, new_name)

    if extension in ("xlsx", "xlsm"):
        return _xlsx_payload(grid, metadata, base_workbook, sheet_name, None)

    new_name = replace_extension(file_name, "xlsx")
    logger.info("Upgrading {} to {}: format cannot be written", file_name, new_name)
    return _xlsx_payload(grid, metadata, None, sheet_name, new_name)


def grid_to_csv(grid: Grid, delimiter: str = ",") -> bytes:
    """Header plus rows, every field quoted, CRLF line endings."""
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, delimiter=delimiter, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(grid.header)
    writer.writerows(grid.rows)
    return buffer.getvalue().encode("utf-8")


def _xlsx_payload(
    grid: Grid,
    metadata: CellMetadataStore,
    base_workbook: bytes | None,
    sheet_name: str,
    new_name: str | None,
) -> SavePayload:
    return SavePayload(
        data=grid_to_xlsx(grid, metadata, base_workbook=base_workbook, sheet_name=sheet_name),
        content_type=OutputFormat.XLSX.content_type,
        output_format=OutputFormat.XLSX,
        file_name=new_name,
    )


def typed_value(text: str) -> str | int | float:
    """Store canonical numbers as numbers, everything else as text.

    A string is converted only if it renders back identically, so the
    grid reads back unchanged.
    """
    stripped = text.lstrip("-")
    if not text or len(stripped.replace(".", "")) > MAX_EXACT_DIGITS:
        return text
    try:
        number: int | float = int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return text
        if not math.isfinite(number):
            return text
    return number if cell_to_text(number) == text else text


def _apply_format(ws: Worksheet, row: int, col: int, fmt: CellFormat) -> None:
    cell = ws.cell(row=row, column=col)
    if fmt.bold or fmt.italic or fmt.underline or fmt.font_size or fmt.font_color:
        cell.font = Font(
            bold=bool(fmt.bold),
            italic=bool(fmt.italic),
            underline="single" if fmt.underline else None,
            size=fmt.font_size,
            color=f"FF{fmt.font_color[1:]}" if fmt.font_color else None,
        )
    if fmt.align is not None:
        cell.alignment = Alignment(horizontal=fmt.align.value)
    if fmt.background_color:
        argb = f"FF{fmt.background_color[1:]}"
        cell.fill = PatternFill(fill_type="solid", fgColor=argb, bgColor=argb)


def _open_base(base_workbook: bytes | None) -> openpyxl.Workbook | None:
    if base_workbook is None:
        return None
    try:
        return openpyxl.load_workbook(io.BytesIO(base_workbook))
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as e:
        logger.warning("Base workbook unreadable, writing a fresh one: {}", e)
        return None


def _write_row(ws: Worksheet, excel_row: int, values: Iterable[object]) -> list[Cell]:
    """Write one row of values; text is always stored as text, never as a formula."""
    cells = []
    for col, value in enumerate(values, start=1):
        if isinstance(value, str):
            value = ILLEGAL_CHARACTERS_RE.sub("", value)
        cell = ws.cell(row=excel_row, column=col, value=value)
        if cell.data_type in ("f", "e"):
            cell.data_type = "s"
        cells.append(cell)
    return cells


def grid_to_xlsx(
    grid: Grid,
    metadata: CellMetadataStore,
    *,
    base_workbook: bytes | None = None,
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> bytes:
    """Write a grid as a worksheet, replacing it in place inside the base workbook.

    Raises:
        SerializationError: If openpyxl rejects the sheet name or a value
    """
    wb = _open_base(base_workbook)
    try:
        if wb is None:
            wb = openpyxl.Workbook()
            ws = wb.active
            ws.title = sheet_name
        elif sheet_name in wb.sheetnames:
            index = wb.sheetnames.index(sheet_name)
            wb.remove(wb[sheet_name])
            ws = wb.create_sheet(sheet_name, index)
            wb.active = index
        else:
            ws = wb.create_sheet(sheet_name)

        for cell in _write_row(ws, 1, grid.header):
            cell.font = Font(bold=True)
        for excel_row, row in enumerate(grid.rows, start=2):
            _write_row(ws, excel_row, [typed_value(value) for value in row])

        for (row, col), fmt in metadata.items():
            _apply_format(ws, row + 2, col + 1, fmt)

        buffer = io.BytesIO()
        wb.save(buffer)
    except (IllegalCharacterError, ValueError, TypeError) as e:
        raise SerializationError("xlsx", str(e)) from e
    return buffer.getvalue()


# =============================================================================
# Rich text
# =============================================================================


def serialize_document(html: str, file_name: str) -> SavePayload:
    """Serialize editor HTML for the file's format.

    Names without a known document extension are stored as HTML under
    their current name.

    Raises:
        SerializationError: If every .docx export tier fails
    """
    output = _DOCUMENT_FORMATS.get(file_extension(file_name), OutputFormat.HTML)

    if output is OutputFormat.DOCX:
        data, tier = html_to_docx(html)
        return SavePayload(data, output.content_type, output, tier=tier)
    if output is OutputFormat.TXT:
        data = (html_to_plain_text(html) + "\n").encode("utf-8")
    elif output is OutputFormat.MD:
        data = html_to_markdown(html).encode("utf-8")
    elif output is OutputFormat.RTF:
        data = html_to_rtf(html).encode("ascii")
    else:
        title = file_name.rsplit("/", 1)[-1]
        data = wrap_html_document(html, title=title).encode("utf-8")
    return SavePayload(data, output.content_type, output)


def _add_paragraph(document: docx.document.Document, paragraph: HTMLParagraph) -> None:
    if paragraph.heading_level:
        target = document.add_heading("", level=paragraph.heading_level)
    elif paragraph.is_list_item:
        style = "List Number" if paragraph.ordered else "List Bullet"
        if paragraph.list_nesting:
            style = f"{style} {min(paragraph.list_nesting + 1, 3)}"
        target = document.add_paragraph(style=style)
    else:
        target = document.add_paragraph()

    for span in paragraph.spans:
        run = target.add_run(span.text)
        run.bold = span.bold or None
        run.italic = span.italic or None
        run.underline = span.underline or None
        if span.strikethrough:
            run.font.strike = True


def _add_table(document: docx.document.Document, table: HTMLTable) -> None:
    if not table.rows or not table.column_count:
        return
    grid = document.add_table(rows=len(table.rows), cols=table.column_count)
    grid.style = "Table Grid"
    for r, row in enumerate(table.rows):
        for c, cell in enumerate(row.cells):
            grid.cell(r, c).text = cell.text_content()


def _structured_docx(parsed: HTMLDocument) -> bytes:
    document = docx.Document()
    if parsed.title:
        document.core_properties.title = parsed.title
    for element in parsed.elements:
        if isinstance(element, HTMLTable):
            _add_table(document, element)
        else:
            _add_paragraph(document, element)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _plain_docx(html: str) -> bytes:
    document = docx.Document()
    for text in plain_paragraphs(html_to_plain_text(html)) or [""]:
        document.add_paragraph(strip_xml_invalid(text))
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def html_to_docx(html: str) -> tuple[bytes, int]:
    """Export HTML as a .docx, falling back through three tiers.

    Returns:
        The document bytes and the tier (1-3) that produced them

    Raises:
        SerializationError: If the plain-paragraph tier fails too
    """
    try:
        return _structured_docx(parse_html(html, strict=True)), 1
    except (MarkupError, ValueError, KeyError) as e:
        logger.warning("Direct .docx export failed, retrying sanitized: {}", e)

    try:
        return _structured_docx(parse_html(sanitize_html(html), strict=True)), 2
    except (MarkupError, ValueError, KeyError) as e:
        logger.warning("Sanitized .docx export failed, falling back to plain text: {}", e)

    try:
        return _plain_docx(html), 3
    except (ValueError, KeyError) as e:
        raise SerializationError("docx", f"all export tiers failed: {e}") from e


# =============================================================================
# Text formats
# =============================================================================


def _inline_markdown(paragraph: HTMLParagraph) -> str:
    parts = []
    for span in paragraph.spans:
        text = span.text
        if not text.strip():
            parts.append(text)
            continue
        if span.bold and span.italic:
            text = f"***{text}***"
        elif span.bold:
            text = f"**{text}**"
        elif span.italic:
            text = f"*{text}*"
        if span.link_url:
            text = f"[{text}]({span.link_url})"
        parts.append(text)
    return "".join(parts).strip()


def html_to_markdown(html: str) -> str:
    """Headings, bold, italic, lists, tables and paragraphs as markdown."""
    blocks: list[str] = []
    for element in parse_html(html).elements:
        if isinstance(element, HTMLTable):
            rows = [
                "| " + " | ".join(cell.text_content() for cell in row.cells) + " |"
                for row in element.rows
            ]
            if rows:
                separator = "| " + " | ".join("---" for _ in range(element.column_count)) + " |"
                rows.insert(1, separator)
                blocks.append("\n".join(rows))
        elif element.heading_level:
            blocks.append("#" * element.heading_level + " " + _inline_markdown(element))
        elif element.is_list_item:
            marker = "1." if element.ordered else "-"
            blocks.append("  " * element.list_nesting + f"{marker} {_inline_markdown(element)}")
        else:
            blocks.append(_inline_markdown(element))
    return "\n\n".join(b for b in blocks if b) + "\n"


def _rtf_escape(text: str) -> str:
    out = []
    for char in text:
        if char in "\\{}":
            out.append("\\" + char)
        elif char == "\n":
            out.append("\\line ")
        elif char == "\t":
            out.append("\\tab ")
        elif ord(char) < 128:
            out.append(char)
        else:
            code = ord(char)
            if code > 0xFFFF:
                out.append("?")
                continue
            signed = code - 0x10000 if code > 0x7FFF else code
            out.append(f"\\u{signed}?")
    return "".join(out)


def html_to_rtf(html: str) -> str:
    """Plain paragraphs as a minimal RTF document."""
    body = "".join(
        f"{_rtf_escape(text)}\\par\n" for text in plain_paragraphs(html_to_plain_text(html))
    )
    return "{\\rtf1\\ansi\\deff0{\\fonttbl{\\f0 Arial;}}\n" + body + "}\n"
