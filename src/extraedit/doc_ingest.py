"""Document ingestion: decode word-processor and text formats to rich text.

Every route ends in a RichTextDocument. Formats without a safe decoder
produce a placeholder document that explains how to convert the file;
they never produce a best-guess partial decode.
"""

from __future__ import annotations

import html
import io
import re
import zipfile
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import docx
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.hyperlink import Hyperlink
from loguru import logger

from extraedit.exceptions import IngestionError, UnsupportedFormatError
from extraedit.grid_ingest import decode_text
from extraedit.rich_text import extract_body, strip_xml_invalid, text_to_html
from extraedit.sniffer import ZIP_MAGIC, FormatTag, is_binary, sniff_format
from extraedit.utils import file_extension

if TYPE_CHECKING:
    from docx.text.paragraph import Paragraph
    from docx.text.run import Run

PREVIEW_CHARS = 1000
EMPTY_HTML = "<p></p>"
UNSUPPORTED_NOTE = (
    "<p><em>Document format not fully supported. Basic text editing available.</em></p>"
)
WORD_MARKER = "word/document.xml"
ODT_MIMETYPE = "application/vnd.oasis.opendocument.text"

_HEADING_STYLE_RE = re.compile(r"^heading\s*([1-6])$", re.IGNORECASE)
_RTF_TOKEN_RE = re.compile(
    r"\\([a-zA-Z]{1,32})(-?\d{1,10})? ?"  # control word
    r"|\\'([0-9a-fA-F]{2})"  # hex escape
    r"|\\(.)"  # control symbol
    r"|([{}])"
    r"|[\r\n]+"
)
_RTF_DESTINATIONS = frozenset(
    {"fonttbl", "colortbl", "stylesheet", "info", "pict", "header", "footer", "listtable"}
)


@dataclass(frozen=True)
class RichTextDocument:
    """Normalized rich text (an HTML fragment) ready for editing.

    ``placeholder`` documents are informational only; they are never saved
    back over the original file.
    """

    html: str
    source_format: FormatTag
    placeholder: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)


def ingest_document(
    data: bytes,
    file_name: str,
    content_type: str | None = None,
) -> RichTextDocument:
    """Decode document bytes into normalized rich text.

    Args:
        data: Complete file contents
        file_name: Name of the file (used for sniffing and messages)
        content_type: Declared MIME type, if any

    Returns:
        RichTextDocument, possibly a placeholder

    Raises:
        IngestionError: If a word-processor container is corrupt
    """
    tag = sniff_format(data, file_name, content_type)
    try:
        document = _route(data, file_name, tag)
    except UnsupportedFormatError as e:
        logger.info("No safe decoder for {}: {}", file_name, e.reason)
        document = placeholder_for(e.format_tag, file_name)

    logger.info(
        "Ingested document {} as {}{} ({} chars of HTML)",
        file_name,
        document.source_format.value,
        " placeholder" if document.placeholder else "",
        len(document.html),
    )
    return document


def _route(data: bytes, file_name: str, tag: FormatTag) -> RichTextDocument:
    if tag is FormatTag.ZIP_CONTAINER:
        return _ingest_zip(data, file_name)

    if tag is FormatTag.LEGACY_BINARY_DOC:
        # Some .doc uploads are really zip containers under the old name
        if data.startswith(ZIP_MAGIC):
            return _ingest_zip(data, file_name)
        raise UnsupportedFormatError("doc", "legacy binary word format")

    if tag in (FormatTag.PROPRIETARY_PACKAGE, FormatTag.LEGACY_BINARY_SHEET, FormatTag.PDF):
        raise UnsupportedFormatError(file_extension(file_name) or tag.value, "no safe decoder")

    text = decode_text(data)
    if tag is FormatTag.HTML:
        body = extract_body(text).strip()
        return RichTextDocument(html=body or EMPTY_HTML, source_format=tag)
    if tag is FormatTag.PLAIN_TEXT or tag is FormatTag.CSV:
        return RichTextDocument(html=text_to_html(text), source_format=FormatTag.PLAIN_TEXT)
    if tag is FormatTag.MARKDOWN:
        return RichTextDocument(html=markdown_to_html(text), source_format=tag)
    if tag is FormatTag.RICH_TEXT:
        return RichTextDocument(html=rtf_to_html(text), source_format=tag)

    if is_binary(data):
        raise UnsupportedFormatError(file_extension(file_name) or tag.value, "binary content")
    return _raw_text_document(text, tag, "unrecognized format")


def _raw_text_document(text: str, tag: FormatTag, warning: str) -> RichTextDocument:
    """Wrap the first characters of decoded text with a limited-support note."""
    preview = text[:PREVIEW_CHARS]
    if len(text) > PREVIEW_CHARS:
        preview += "..."
    return RichTextDocument(
        html=f"<p>{html.escape(preview)}</p>{UNSUPPORTED_NOTE}",
        source_format=tag,
        warnings=(warning,),
    )


# =============================================================================
# Zip containers
# =============================================================================


def _zip_names(data: bytes) -> tuple[set[str], bytes | None]:
    """Return the member names and the ``mimetype`` member of a zip."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
            mimetype = archive.read("mimetype") if "mimetype" in names else None
            return names, mimetype
    except zipfile.BadZipFile:
        return set(), None


def _ingest_zip(data: bytes, file_name: str) -> RichTextDocument:
    names, mimetype = _zip_names(data)

    if WORD_MARKER in names:
        return RichTextDocument(
            html=docx_to_html(data, file_name),
            source_format=FormatTag.ZIP_CONTAINER,
        )
    if mimetype is not None and mimetype.strip().decode("ascii", "replace") == ODT_MIMETYPE:
        raise UnsupportedFormatError("odt", "OpenDocument text has no safe decoder")
    if "index.xml" in names or any(n.startswith("Index/") for n in names):
        raise UnsupportedFormatError("pages", "Pages package has no safe decoder")

    logger.warning("Zip container {} has no word-processor markers", file_name)
    text = strip_xml_invalid(decode_text(data))
    return _raw_text_document(text, FormatTag.ZIP_CONTAINER, "zip container without document")


def _style_name(paragraph: Paragraph) -> str:
    style = paragraph.style
    return style.name if style is not None and style.name else ""


def _run_html(run: Run) -> str:
    text = html.escape(run.text).replace("\n", "<br>")
    if not text:
        return ""
    if run.underline:
        text = f"<u>{text}</u>"
    if run.italic:
        text = f"<em>{text}</em>"
    if run.bold:
        text = f"<strong>{text}</strong>"
    return text


def _paragraph_inner_html(paragraph: Paragraph) -> str:
    parts: list[str] = []
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            inner = "".join(_run_html(run) for run in item.runs)
            href = html.escape(item.url or "", quote=True)
            parts.append(f'<a href="{href}">{inner}</a>' if href else inner)
        else:
            parts.append(_run_html(item))
    return "".join(parts)


def _paragraph_tag(style_name: str) -> str:
    match = _HEADING_STYLE_RE.match(style_name)
    if match:
        return f"h{match.group(1)}"
    if style_name.lower() == "title":
        return "h1"
    return "p"


def _list_kind(style_name: str) -> str | None:
    lowered = style_name.lower()
    if lowered.startswith("list bullet"):
        return "ul"
    if lowered.startswith("list number"):
        return "ol"
    return None


def _table_html(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = "".join(
            "<td>" + "<br>".join(html.escape(p.text) for p in cell.paragraphs) + "</td>"
            for cell in row.cells
        )
        rows.append(f"<tr>{cells}</tr>")
    return "<table>" + "".join(rows) + "</table>"


def docx_to_html(data: bytes, file_name: str = "document.docx") -> str:
    """Convert a word-processor container to an HTML fragment.

    Headings, bullet/numbered lists, bold/italic/underline runs, links and
    tables are carried over; other styling is dropped.

    Raises:
        IngestionError: If the container cannot be opened
    """
    try:
        document = docx.Document(io.BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise IngestionError(
            file_name, f"failed to load document, it may be corrupted: {e}"
        ) from e

    parts: list[str] = []
    open_list: str | None = None

    for block in document.iter_inner_content():
        if isinstance(block, Table):
            if open_list:
                parts.append(f"</{open_list}>")
                open_list = None
            parts.append(_table_html(block))
            continue

        style_name = _style_name(block)
        list_kind = _list_kind(style_name)
        inner = _paragraph_inner_html(block)

        if list_kind != open_list:
            if open_list:
                parts.append(f"</{open_list}>")
            if list_kind:
                parts.append(f"<{list_kind}>")
            open_list = list_kind

        if list_kind:
            parts.append(f"<li>{inner}</li>")
        elif inner.strip():
            tag = _paragraph_tag(style_name)
            parts.append(f"<{tag}>{inner}</{tag}>")

    if open_list:
        parts.append(f"</{open_list}>")

    return "".join(parts) or EMPTY_HTML


# =============================================================================
# Text formats
# =============================================================================


def _inline_markdown(line: str) -> str:
    line = html.escape(line, quote=False)
    line = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", line)
    return re.sub(r"\*(.+?)\*", r"<em>\1</em>", line)


def markdown_to_html(text: str) -> str:
    """Line-based markdown conversion: headings, bold, italic, paragraphs."""
    blocks = re.split(r"\r?\n\s*\r?\n", text.strip())
    parts: list[str] = []
    for block in blocks:
        lines: list[str] = []
        for line in block.splitlines():
            heading = re.match(r"^(#{1,6}) (.+)$", line)
            if heading:
                if lines:
                    parts.append("<p>" + "<br>".join(lines) + "</p>")
                    lines = []
                level = len(heading.group(1))
                parts.append(f"<h{level}>{_inline_markdown(heading.group(2))}</h{level}>")
            else:
                lines.append(_inline_markdown(line))
        if lines:
            parts.append("<p>" + "<br>".join(lines) + "</p>")
    return "".join(parts) or EMPTY_HTML


def rtf_to_text(text: str) -> str:
    """Strip RTF control words and groups, keeping paragraph breaks.

    Hex escapes are decoded as cp1252 and ``\\uN`` escapes as Unicode
    (dropping their one-character fallback). Font, color and style tables
    are skipped entirely.
    """
    out: list[str] = []
    depth = 0
    skip_below: int | None = None  # Depth at which a skipped destination ends
    pending_star = False
    skip_fallback = False
    pos = 0
    for match in _RTF_TOKEN_RE.finditer(text):
        literal = text[pos : match.start()]
        pos = match.end()
        if literal and skip_fallback:
            literal = literal[1:]
            skip_fallback = False
        if literal and skip_below is None:
            out.append(literal)

        word, arg, hex_code, symbol, brace = match.groups()
        if brace == "{":
            depth += 1
        elif brace == "}":
            if skip_below is not None and depth <= skip_below:
                skip_below = None
            depth -= 1
            pending_star = False
        elif word is not None:
            if pending_star or word in _RTF_DESTINATIONS:
                if skip_below is None:
                    skip_below = depth
            elif skip_below is None and word == "u" and arg is not None:
                out.append(chr(int(arg) % 0x10000))
                skip_fallback = True
            elif skip_below is None and word in ("par", "line"):
                out.append("\n" if word == "line" else "\n\n")
            elif skip_below is None and word == "tab":
                out.append("\t")
            pending_star = False
        elif hex_code is not None:
            if skip_fallback:
                skip_fallback = False
            elif skip_below is None:
                out.append(bytes([int(hex_code, 16)]).decode("cp1252", errors="replace"))
        elif symbol is not None:
            if symbol == "*":
                pending_star = True
            elif skip_below is None and symbol in "\\{}":
                out.append(symbol)
            elif skip_below is None and symbol == "~":
                out.append("\u00a0")

    if skip_below is None:
        out.append(text[pos + 1 :] if skip_fallback else text[pos:])

    plain = "".join(out)
    plain = re.sub(r" {2,}", " ", plain)
    plain = re.sub(r" *\n *", "\n", plain)
    return re.sub(r"\n{3,}", "\n\n", plain).strip()


def rtf_to_html(text: str) -> str:
    """Best-effort RTF decode into plain paragraphs."""
    return text_to_html(rtf_to_text(text))


# =============================================================================
# Placeholders
# =============================================================================


@dataclass(frozen=True)
class _Notice:
    title: str
    message: str
    steps: tuple[str, ...]
    alternative: str | None = None


_NOTICES: dict[str, _Notice] = {
    "doc": _Notice(
        title="Legacy Word Format (.doc)",
        message=(
            "This file is in the legacy Microsoft Word format (.doc) "
            "which cannot be edited safely here."
        ),
        steps=(
            "Download the file using the download button",
            "Open it in Microsoft Word",
            'Save As and select "Word Document (.docx)"',
            "Upload the new .docx file here",
        ),
        alternative="You can also save it as .txt for plain text editing.",
    ),
    "pages": _Notice(
        title="Apple Pages Format",
        message="Pages documents cannot be edited safely here.",
        steps=(
            "Download the file using the download button",
            "Open it in Apple Pages (on Mac or iOS)",
            "Go to File, Export To, Word (.docx)",
            "Upload the exported .docx file here",
        ),
    ),
    "odt": _Notice(
        title="OpenDocument Format (.odt)",
        message="OpenDocument text files cannot be edited safely here.",
        steps=(
            "Download the file using the download button",
            "Open it in LibreOffice, Google Docs, or Microsoft Word",
            "Save As Word Document (.docx)",
            "Upload the .docx file here for full editing support",
        ),
    ),
    "ods": _Notice(
        title="OpenDocument Spreadsheet (.ods)",
        message="OpenDocument spreadsheets cannot be edited safely here.",
        steps=(
            "Download the file using the download button",
            "Open it in LibreOffice Calc, Google Sheets, or Microsoft Excel",
            "Save As Excel Workbook (.xlsx)",
            "Upload the .xlsx file here for full editing support",
        ),
        alternative="You can also save it as .csv for plain grid editing.",
    ),
    "pdf": _Notice(
        title="PDF Document",
        message="PDF files are view-only.",
        steps=(
            "Download the file using the download button",
            "Convert it to Word (.docx) with a PDF editor",
            "Upload the .docx file here to edit it",
        ),
    ),
}


def _generic_notice(format_name: str) -> _Notice:
    return _Notice(
        title=f"Unsupported Format (.{format_name})",
        message="This file format cannot be edited safely here.",
        steps=(
            "Download the file using the download button",
            "Convert it to Word (.docx) or plain text (.txt)",
            "Upload the converted file here",
        ),
    )


def placeholder_for(format_name: str, file_name: str = "") -> RichTextDocument:
    """Build the informational placeholder for a format without a safe decoder."""
    notice = _NOTICES.get(format_name) or _generic_notice(format_name)
    steps = "".join(f"<li>{html.escape(step)}</li>" for step in notice.steps)
    alternative = (
        f"<p><strong>Alternative:</strong> {html.escape(notice.alternative)}</p>"
        if notice.alternative
        else ""
    )
    body = (
        '<div class="format-notice">'
        f"<h3>{html.escape(notice.title)}</h3>"
        f"<p>{html.escape(notice.message)}</p>"
        "<p><strong>To edit this document:</strong></p>"
        f"<ol>{steps}</ol>"
        f"{alternative}"
        "</div>"
    )
    tag = {
        "doc": FormatTag.LEGACY_BINARY_DOC,
        "pdf": FormatTag.PDF,
    }.get(format_name, FormatTag.PROPRIETARY_PACKAGE)
    return RichTextDocument(
        html=body,
        source_format=tag,
        placeholder=True,
        warnings=(f"{file_name or format_name}: {notice.title}",),
    )
