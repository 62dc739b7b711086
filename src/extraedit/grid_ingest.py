"""Grid ingestion: CSV, zip-container workbooks and legacy binary workbooks.

Every path produces a GridIngestion holding a Grid plus the formatting
extracted into a CellMetadataStore keyed by (data-row, col). The header
row never carries metadata; data row ``r`` is worksheet row ``r + 2``.
"""

from __future__ import annotations

import csv
import io
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

import openpyxl
import xlrd
from loguru import logger
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from extraedit.exceptions import IngestionError, UnsupportedFormatError
from extraedit.grid import Grid
from extraedit.metadata import CellFormat, CellMetadataStore, HorizontalAlign
from extraedit.sniffer import OLE2_MAGIC, FormatTag, is_binary, sniff_format
from extraedit.utils import column_index_to_letter, file_extension, normalize_hex_color

if TYPE_CHECKING:
    from openpyxl.cell.cell import Cell
    from openpyxl.worksheet.worksheet import Worksheet

CSV_DELIMITERS = ",;\t|"
WORKBOOK_MARKER = "xl/workbook.xml"
ODS_MIMETYPE = "application/vnd.oasis.opendocument.spreadsheet"
DEFAULT_FONT_SIZE = 11.0
_ALIGNMENTS = {a.value: a for a in HorizontalAlign}


@dataclass(frozen=True)
class GridIngestion:
    """Result of decoding a spreadsheet file."""

    grid: Grid
    metadata: CellMetadataStore
    format_tag: FormatTag
    sheet_names: tuple[str, ...] = ("Sheet1",)
    active_sheet: int = 0

    @property
    def sheet_name(self) -> str:
        return self.sheet_names[self.active_sheet]


def ingest_grid(
    data: bytes,
    file_name: str,
    content_type: str | None = None,
    sheet_index: int = 0,
) -> GridIngestion:
    """Decode spreadsheet bytes into a grid and formatting metadata.

    Args:
        data: Complete file contents
        file_name: Name of the file (used for sniffing and messages)
        content_type: Declared MIME type, if any
        sheet_index: Worksheet to load from multi-sheet workbooks

    Returns:
        GridIngestion for the chosen sheet

    Raises:
        IngestionError: If the bytes are corrupt or unreadable
        UnsupportedFormatError: If the format has no grid decoder
    """
    tag = sniff_format(data, file_name, content_type)

    if tag is FormatTag.ZIP_CONTAINER:
        _check_workbook_package(data)
        result = _ingest_workbook(data, file_name, sheet_index)
    elif tag is FormatTag.LEGACY_BINARY_SHEET and data.startswith(OLE2_MAGIC):
        result = _ingest_legacy_workbook(data, file_name, sheet_index)
    elif tag in (FormatTag.CSV, FormatTag.PLAIN_TEXT, FormatTag.LEGACY_BINARY_SHEET):
        # A legacy-named file without the OLE2 signature is usually a text export
        if is_binary(data):
            raise IngestionError(file_name, "binary content is not delimited text")
        result = ingest_csv(data, file_name)
    else:
        raise UnsupportedFormatError(tag.value, "no spreadsheet decoder for this format")

    logger.info(
        "Ingested {} as {}: {} rows x {} cols, {} formatted cells",
        file_name,
        result.format_tag.value,
        result.grid.row_count,
        result.grid.col_count,
        len(result.metadata),
    )
    return result


# =============================================================================
# CSV
# =============================================================================


def decode_text(data: bytes) -> str:
    """Decode text bytes, tolerating a BOM and legacy single-byte encodings."""
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


def detect_delimiter(sample: str, file_name: str = "") -> str:
    """Guess the field delimiter from a text sample."""
    try:
        return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        return "\t" if file_extension(file_name) == "tsv" else ","


def parse_csv_rows(text: str, file_name: str = "") -> list[list[str]]:
    """Parse delimited text into rows, skipping empty lines."""
    delimiter = detect_delimiter(text[:4096], file_name)
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    try:
        return [row for row in reader if row and row != [""]]
    except csv.Error as e:
        raise IngestionError(file_name, f"malformed delimited text: {e}") from e


def _is_header_row(rows: list[list[str]]) -> bool:
    """Row 1 is a header iff every cell has text and more rows follow."""
    return len(rows) > 1 and all(cell.strip() for cell in rows[0])


def _duplicates_header(row: list[str], header: list[str]) -> bool:
    return len(row) == len(header) and all(
        cell.strip() == label.strip() for cell, label in zip(row, header, strict=True)
    )


def build_csv_grid(rows: list[list[str]]) -> Grid:
    """Build a grid from parsed rows using the header detection rules."""
    if not rows:
        return Grid.default()

    if _is_header_row(rows):
        header = list(rows[0])
        data_rows = [row for row in rows[1:] if not _duplicates_header(row, header)]
        if not data_rows:
            data_rows = [[""] * len(header)]
        return Grid(header, data_rows)

    width = max(len(row) for row in rows)
    header = [column_index_to_letter(i) for i in range(width)]
    return Grid(header, rows)


def ingest_csv(data: bytes, file_name: str = "data.csv") -> GridIngestion:
    """Decode delimited text into a grid (CSV carries no metadata)."""
    rows = parse_csv_rows(decode_text(data), file_name)
    return GridIngestion(
        grid=build_csv_grid(rows),
        metadata=CellMetadataStore(),
        format_tag=FormatTag.CSV,
    )


# =============================================================================
# Zip-container workbooks (openpyxl)
# =============================================================================


def cell_to_text(value: Any) -> str:
    """Render a worksheet value as the string shown in the grid."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date | time):
        return value.isoformat()
    return str(value)


def _rgb_of(color: Any) -> str | None:
    """Return "#RRGGBB" for an explicit RGB color, None for theme/indexed ones."""
    if color is None or getattr(color, "type", None) != "rgb":
        return None
    rgb = color.rgb
    if not isinstance(rgb, str):
        return None
    try:
        return normalize_hex_color(rgb)
    except ValueError:
        return None


def extract_cell_format(cell: Cell) -> CellFormat:
    """Read the non-default font, alignment and fill attributes of a cell."""
    font = cell.font
    alignment = cell.alignment
    fill = cell.fill

    font_size = None
    if font is not None and font.sz is not None and float(font.sz) != DEFAULT_FONT_SIZE:
        font_size = float(font.sz)

    background = None
    if fill is not None and fill.fill_type == "solid":
        background = _rgb_of(fill.fgColor)

    return CellFormat(
        bold=bool(font and font.b) or None,
        italic=bool(font and font.i) or None,
        underline=bool(font and font.u and font.u != "none") or None,
        align=_ALIGNMENTS.get(alignment.horizontal) if alignment is not None else None,
        font_size=font_size,
        font_color=_rgb_of(font.color) if font is not None else None,
        background_color=background,
    )


def _load_workbook(data: bytes, file_name: str) -> openpyxl.Workbook:
    try:
        return openpyxl.load_workbook(io.BytesIO(data), data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as e:
        raise IngestionError(file_name, f"not a readable workbook: {e}") from e


def _pick_sheet(names: list[str], sheet_index: int, file_name: str) -> None:
    if not names:
        raise IngestionError(file_name, "workbook has no worksheets")
    if not 0 <= sheet_index < len(names):
        raise IngestionError(
            file_name, f"sheet index {sheet_index} out of range (0..{len(names) - 1})"
        )


def _grid_from_values(values: list[list[str]]) -> Grid:
    """First row is the header; blank header cells get letter labels."""
    if not any(cell for row in values for cell in row):
        return Grid.default()
    width = max(len(row) for row in values)
    header = [
        label or column_index_to_letter(i)
        for i, label in enumerate(values[0] + [""] * (width - len(values[0])))
    ]
    data_rows = values[1:] or [[""] * width]
    return Grid(header, data_rows)


def read_worksheet(ws: Worksheet) -> tuple[Grid, CellMetadataStore]:
    """Read one worksheet into a grid and its data-cell metadata."""
    values: list[list[str]] = []
    formats: dict[tuple[int, int], CellFormat] = {}

    for excel_row, cells in enumerate(ws.iter_rows(), start=1):
        values.append([cell_to_text(cell.value) for cell in cells])
        if excel_row == 1:
            continue
        for col, cell in enumerate(cells):
            fmt = extract_cell_format(cell)
            if not fmt.is_default:
                formats[(excel_row - 2, col)] = fmt

    grid = _grid_from_values(values)
    metadata = CellMetadataStore(formats)
    metadata.prune(grid.row_count, grid.col_count)
    return grid, metadata


def _check_workbook_package(data: bytes) -> None:
    """Reject spreadsheet packages that are not Office Open XML workbooks."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
            if WORKBOOK_MARKER in names:
                return
            mimetype = archive.read("mimetype") if "mimetype" in names else b""
    except zipfile.BadZipFile:
        return  # Reported as unreadable by the workbook loader

    if mimetype.strip().decode("ascii", "replace") == ODS_MIMETYPE:
        raise UnsupportedFormatError("ods", "OpenDocument spreadsheet has no safe decoder")
    if any(n.startswith("Index/") for n in names):
        raise UnsupportedFormatError("numbers", "Numbers package has no safe decoder")


def _ingest_workbook(data: bytes, file_name: str, sheet_index: int) -> GridIngestion:
    wb = _load_workbook(data, file_name)
    try:
        _pick_sheet(wb.sheetnames, sheet_index, file_name)
        grid, metadata = read_worksheet(wb.worksheets[sheet_index])
        return GridIngestion(
            grid=grid,
            metadata=metadata,
            format_tag=FormatTag.ZIP_CONTAINER,
            sheet_names=tuple(wb.sheetnames),
            active_sheet=sheet_index,
        )
    finally:
        wb.close()


# =============================================================================
# Legacy binary workbooks (xlrd)
# =============================================================================


def _legacy_cell_text(book: xlrd.book.Book, cell: xlrd.sheet.Cell) -> str:
    if cell.ctype == xlrd.XL_CELL_DATE:
        return cell_to_text(xlrd.xldate_as_datetime(cell.value, book.datemode))
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return cell_to_text(bool(cell.value))
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(cell.value, "#ERR")
    return cell_to_text(cell.value)


def _ingest_legacy_workbook(data: bytes, file_name: str, sheet_index: int) -> GridIngestion:
    """Values only; legacy formatting is not carried over."""
    try:
        book = xlrd.open_workbook(file_contents=data)
    except (xlrd.XLRDError, CompDocError) as e:
        raise IngestionError(file_name, f"not a readable legacy workbook: {e}") from e

    names = book.sheet_names()
    _pick_sheet(names, sheet_index, file_name)
    sheet = book.sheet_by_index(sheet_index)
    values = [
        [_legacy_cell_text(book, sheet.cell(r, c)) for c in range(sheet.ncols)]
        for r in range(sheet.nrows)
    ]
    return GridIngestion(
        grid=_grid_from_values(values) if values else Grid.default(),
        metadata=CellMetadataStore(),
        format_tag=FormatTag.LEGACY_BINARY_SHEET,
        sheet_names=tuple(names),
        active_sheet=sheet_index,
    )
