"""Tests for document ingestion and placeholders."""

from __future__ import annotations

import io
import zipfile

import pytest
from conftest import build_docx

from extraedit.doc_ingest import (
    UNSUPPORTED_NOTE,
    docx_to_html,
    ingest_document,
    markdown_to_html,
    placeholder_for,
    rtf_to_text,
)
from extraedit.exceptions import IngestionError
from extraedit.sniffer import OLE2_MAGIC, FormatTag


def _zip(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


class TestWordDocuments:
    """Tests for zip-container word documents."""

    def test_headings_paragraphs_and_runs(self) -> None:
        data = build_docx(["First paragraph"], heading="Report", bold_run="Important")
        doc = ingest_document(data, "report.docx")

        assert not doc.placeholder
        assert doc.source_format is FormatTag.ZIP_CONTAINER
        assert "<h1>Report</h1>" in doc.html
        assert "<p>First paragraph</p>" in doc.html
        assert "<strong>Important</strong>" in doc.html

    def test_bullets_grouped_into_list(self) -> None:
        html = docx_to_html(build_docx([], bullets=("one", "two")))
        assert "<ul><li>one</li><li>two</li></ul>" in html

    def test_markup_in_text_is_escaped(self) -> None:
        html = docx_to_html(build_docx(["a < b & c"]))
        assert "a &lt; b &amp; c" in html

    def test_empty_document(self) -> None:
        assert docx_to_html(build_docx([])) == "<p></p>"

    def test_corrupt_word_container(self) -> None:
        data = _zip({"word/document.xml": b"<not-xml"})
        with pytest.raises(IngestionError):
            ingest_document(data, "broken.docx")

    def test_zip_renamed_to_doc(self) -> None:
        doc = ingest_document(build_docx(["hello"]), "legacy-name.doc")
        assert not doc.placeholder
        assert "hello" in doc.html


class TestPlaceholders:
    """Formats without a safe decoder become placeholders, never errors."""

    def test_legacy_binary_doc(self) -> None:
        doc = ingest_document(OLE2_MAGIC + b"\x00" * 64, "old.doc")
        assert doc.placeholder
        assert doc.source_format is FormatTag.LEGACY_BINARY_DOC
        assert "Legacy Word Format" in doc.html

    def test_odt_container(self) -> None:
        data = _zip({"mimetype": b"application/vnd.oasis.opendocument.text"})
        doc = ingest_document(data, "essay.odt")
        assert doc.placeholder
        assert "OpenDocument" in doc.html

    def test_pages_container(self) -> None:
        doc = ingest_document(_zip({"Index/Document.iwa": b"\x00"}), "story.pages")
        assert doc.placeholder
        assert "Apple Pages" in doc.html

    def test_pdf(self) -> None:
        doc = ingest_document(b"%PDF-1.7\n...", "scan.pdf")
        assert doc.placeholder
        assert doc.source_format is FormatTag.PDF

    def test_binary_garbage(self) -> None:
        doc = ingest_document(b"\x01\x02\x00\x03", "blob.xyz")
        assert doc.placeholder
        assert "Unsupported Format (.xyz)" in doc.html

    def test_placeholder_structure(self) -> None:
        doc = placeholder_for("doc", "old.doc")
        assert doc.html.startswith('<div class="format-notice">')
        assert doc.html.count("<li>") == 4
        assert "Alternative:" in doc.html
        assert doc.warnings == ("old.doc: Legacy Word Format (.doc)",)


class TestTextFormats:
    """Tests for HTML, plain text, markdown and RTF."""

    def test_html_body_extracted(self) -> None:
        doc = ingest_document(b"<html><body><p>Hi</p></body></html>", "page.html")
        assert doc.source_format is FormatTag.HTML
        assert doc.html == "<p>Hi</p>"

    def test_plain_text(self) -> None:
        doc = ingest_document(b"line one\nline two\n\nnext", "notes.txt")
        assert doc.html == "<p>line one<br>line two</p><p>next</p>"

    def test_markdown(self) -> None:
        doc = ingest_document(b"# Title\n\nSome **bold** and *it*", "readme.md")
        assert doc.html == "<h1>Title</h1><p>Some <strong>bold</strong> and <em>it</em></p>"

    def test_markdown_heading_inside_block(self) -> None:
        assert markdown_to_html("intro\n## Part") == "<p>intro</p><h2>Part</h2>"

    def test_rtf(self) -> None:
        data = b"{\\rtf1\\ansi{\\fonttbl{\\f0 Arial;}}\\f0 Hello \\b world\\b0\\par Second}"
        doc = ingest_document(data, "memo.rtf")
        assert doc.source_format is FormatTag.RICH_TEXT
        assert doc.html == "<p>Hello world</p><p>Second</p>"

    def test_unrecognized_text_preview(self) -> None:
        text = "x" * 1500
        doc = ingest_document(text.encode(), "data.weird")
        assert not doc.placeholder
        assert doc.html.endswith(UNSUPPORTED_NOTE)
        assert "x" * 1000 + "..." in doc.html
        assert doc.warnings


class TestRtfToText:
    def test_escapes(self) -> None:
        assert rtf_to_text(r"{\rtf1 Caf\'e9 \{x\} a\\b}") == "Café {x} a\\b"

    def test_unicode_escape_skips_fallback(self) -> None:
        assert rtf_to_text(r"{\rtf1 \u8364?5 and caf\u233?}") == "\u20ac5 and caf\u00e9"

    def test_ignorable_destination(self) -> None:
        assert rtf_to_text(r"{\rtf1{\*\generator Writer;}Body}") == "Body"

    def test_line_and_tab(self) -> None:
        assert rtf_to_text(r"{\rtf1 a\line b\tab c}") == "a\nb\tc"
