"""Shared test fixtures for extraedit."""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable
from pathlib import Path

import docx
import openpyxl
import pytest
from openpyxl.styles import Alignment, Font, PatternFill

from extraedit.autosave import ManualClock, ManualTimer
from extraedit.records import FileRecord
from extraedit.transport import InMemoryFileRecordStore, LocalBlobStore

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    root = tmp_path / "bucket"
    root.mkdir()
    return root


@pytest.fixture
def blob_store(storage_root: Path) -> LocalBlobStore:
    """Directory-backed blob store rooted in a temp dir."""
    return LocalBlobStore(storage_root)


@pytest.fixture
def record_store() -> InMemoryFileRecordStore:
    return InMemoryFileRecordStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1000.0)


@pytest.fixture
def timer(clock: ManualClock) -> ManualTimer:
    """Timer driven by the manual clock; callbacks run on ``advance``."""
    return ManualTimer(clock)


@pytest.fixture
def put_file(
    storage_root: Path, record_store: InMemoryFileRecordStore
) -> Callable[..., FileRecord]:
    """Store bytes under a key and register a matching file record."""

    def _put(
        file_id: str,
        key: str,
        data: bytes,
        *,
        name: str | None = None,
        path: str | None = None,
        content_type: str | None = None,
        **fields: str | None,
    ) -> FileRecord:
        target = storage_root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        record = FileRecord(
            id=file_id,
            name=name or key.rsplit("/", 1)[-1],
            path=key if path is None else path,
            type=content_type,
            size=len(data),
            **fields,
        )
        record_store.records[file_id] = record
        return record

    return _put


def build_xlsx(
    rows: list[list[object]],
    *,
    sheet_title: str = "Sheet1",
    extra_sheets: dict[str, list[list[object]]] | None = None,
    bold_cells: tuple[str, ...] = (),
    fill_cells: dict[str, str] | None = None,
    center_cells: tuple[str, ...] = (),
) -> bytes:
    """Build a workbook in memory with optional formatting on A1-named cells."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_title
    for row in rows:
        ws.append(row)
    for ref in bold_cells:
        ws[ref].font = Font(bold=True)
    for ref, argb in (fill_cells or {}).items():
        ws[ref].fill = PatternFill(fill_type="solid", fgColor=argb)
    for ref in center_cells:
        ws[ref].alignment = Alignment(horizontal="center")
    for title, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(title)
        for row in sheet_rows:
            extra.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def build_docx(
    paragraphs: list[str],
    *,
    heading: str | None = None,
    bullets: tuple[str, ...] = (),
    bold_run: str | None = None,
) -> bytes:
    """Build a word-processor document in memory."""
    document = docx.Document()
    if heading:
        document.add_heading(heading, level=1)
    for text in paragraphs:
        document.add_paragraph(text)
    if bold_run:
        paragraph = document.add_paragraph()
        paragraph.add_run(bold_run).bold = True
    for text in bullets:
        document.add_paragraph(text, style="List Bullet")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def read_xlsx(data: bytes) -> openpyxl.Workbook:
    return openpyxl.load_workbook(io.BytesIO(data))


def build_ods() -> bytes:
    """Minimal OpenDocument spreadsheet package."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.spreadsheet")
        archive.writestr("content.xml", "<office:document-content/>")
        archive.writestr("META-INF/manifest.xml", "<manifest:manifest/>")
    return buffer.getvalue()
