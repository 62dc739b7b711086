"""Parse normalized rich-text HTML into structured elements.

This module provides:
1. A structured representation of the editor's HTML content
2. Strict parsing that rejects markup a word-processor export cannot carry
3. Sanitizing and plain-text reduction used by the save fallback tiers
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
BLOCK_TAGS = (*HEADING_TAGS, "p", "div", "blockquote", "pre")
VOID_TAGS = frozenset(
    {"br", "hr", "img", "input", "meta", "link", "col", "area", "base", "wbr", "source"}
)
UNSAFE_TAGS = ("script", "style")

_SCRIPT_RE = re.compile(r"<script\b[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_EVENT_ATTR_RE = re.compile(r"""\son\w+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
_BODY_RE = re.compile(r"<body[^>]*>([\s\S]*?)</body>", re.IGNORECASE)
_BLOCK_BREAK_RE = re.compile(
    r"</?(?:p|div|h[1-6]|li|ul|ol|tr|table|blockquote|pre)\b[^>]*>|<br\s*/?>",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")
# Characters XML 1.0 cannot carry (python-docx rejects them)
_XML_INVALID_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f￾￿]")


class MarkupError(ValueError):
    """Raised by strict parsing when markup cannot be converted faithfully."""


@dataclass
class TextSpan:
    """A span of text with optional formatting."""

    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    link_url: str | None = None


@dataclass
class HTMLParagraph:
    """A paragraph parsed from HTML."""

    tag: str  # p, h1-h6, li
    spans: list[TextSpan] = field(default_factory=list)
    is_list_item: bool = False
    ordered: bool = False
    list_nesting: int = 0

    def text_content(self) -> str:
        """Get plain text content."""
        return "".join(span.text for span in self.spans)

    @property
    def heading_level(self) -> int:
        """1-6 for headings, 0 otherwise."""
        return int(self.tag[1]) if self.tag in HEADING_TAGS else 0


@dataclass
class HTMLTableCell:
    """A table cell parsed from HTML."""

    paragraphs: list[HTMLParagraph] = field(default_factory=list)

    def text_content(self) -> str:
        return "\n".join(p.text_content() for p in self.paragraphs)


@dataclass
class HTMLTableRow:
    """A table row parsed from HTML."""

    cells: list[HTMLTableCell] = field(default_factory=list)


@dataclass
class HTMLTable:
    """A table parsed from HTML."""

    rows: list[HTMLTableRow] = field(default_factory=list)

    @property
    def column_count(self) -> int:
        return max((len(row.cells) for row in self.rows), default=0)


@dataclass
class HTMLDocument:
    """A document parsed from HTML."""

    title: str = ""
    elements: list[HTMLParagraph | HTMLTable] = field(default_factory=list)

    def paragraphs(self) -> list[HTMLParagraph]:
        """All top-level paragraphs, skipping tables."""
        return [e for e in self.elements if isinstance(e, HTMLParagraph)]


class DocumentHTMLParser(HTMLParser):
    """Parse document HTML into structured elements.

    Text outside any block element is collected into implicit paragraphs,
    so a bare fragment like ``Hello <b>world</b>`` still yields content.
    In strict mode, unbalanced end tags and script/style/event-handler
    markup raise MarkupError instead of being skipped.
    """

    def __init__(self, strict: bool = False) -> None:
        super().__init__(convert_charrefs=True)
        self.strict = strict
        self.document = HTMLDocument()
        self._current_paragraph: HTMLParagraph | None = None
        self._tag_stack: list[str] = []
        self._formatting_stack: list[tuple[str, dict[str, Any]]] = []
        self._skip_depth = 0
        self._in_title = False

        # Table parsing state
        self._current_table: HTMLTable | None = None
        self._current_row: HTMLTableRow | None = None
        self._current_cell: HTMLTableCell | None = None

        # List parsing state
        self._list_stack: list[str] = []  # Stack of 'ul' or 'ol'

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attrs_dict = dict(attrs)
        if self.strict and any(name.startswith("on") for name in attrs_dict):
            raise MarkupError(f"Event handler attribute on <{tag}>")

        if tag in UNSAFE_TAGS:
            if self.strict:
                raise MarkupError(f"<{tag}> content cannot be exported")
            self._skip_depth += 1
            return

        if tag not in VOID_TAGS:
            self._tag_stack.append(tag)

        if tag == "title":
            self._in_title = True

        elif tag in BLOCK_TAGS:
            self._end_paragraph()
            self._current_paragraph = HTMLParagraph(tag="p" if tag not in HEADING_TAGS else tag)

        elif tag == "li":
            self._end_paragraph()
            self._current_paragraph = HTMLParagraph(
                tag="li",
                is_list_item=True,
                ordered=bool(self._list_stack) and self._list_stack[-1] == "ol",
                list_nesting=max(len(self._list_stack) - 1, 0),
            )

        elif tag in ("ul", "ol"):
            self._end_paragraph()
            self._list_stack.append(tag)

        elif tag == "table":
            self._end_paragraph()
            self._current_table = HTMLTable()

        elif tag == "tr":
            if self._current_table is not None:
                self._current_row = HTMLTableRow()

        elif tag in ("td", "th"):
            if self._current_row is not None:
                self._current_cell = HTMLTableCell()
                if tag == "th":
                    self._push_formatting(tag, bold=True)

        elif tag in ("strong", "b"):
            self._push_formatting(tag, bold=True)

        elif tag in ("em", "i"):
            self._push_formatting(tag, italic=True)

        elif tag == "u":
            self._push_formatting(tag, underline=True)

        elif tag in ("s", "del", "strike"):
            self._push_formatting(tag, strikethrough=True)

        elif tag == "a":
            self._push_formatting(tag, link_url=attrs_dict.get("href") or "")

        elif tag == "br":
            self._append_text("\n")

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.handle_starttag(tag, attrs)
        if tag not in VOID_TAGS:
            self.handle_endtag(tag)

    def handle_endtag(self, tag: str) -> None:
        if tag in UNSAFE_TAGS:
            self._skip_depth = max(self._skip_depth - 1, 0)
            return
        if tag in VOID_TAGS:
            return

        if tag in self._tag_stack:
            while self._tag_stack:
                open_tag = self._tag_stack.pop()
                if open_tag == tag:
                    break
                if self.strict:
                    raise MarkupError(f"Unclosed <{open_tag}> before </{tag}>")
                self._pop_formatting(open_tag)
        elif self.strict:
            raise MarkupError(f"Unexpected closing tag </{tag}>")
        else:
            return

        if tag == "title":
            self._in_title = False

        elif tag in BLOCK_TAGS or tag == "li":
            self._end_paragraph()

        elif tag in ("ul", "ol"):
            self._end_paragraph()
            if self._list_stack:
                self._list_stack.pop()

        elif tag == "table":
            self._end_paragraph()
            if self._current_table is not None:
                self.document.elements.append(self._current_table)
                self._current_table = None

        elif tag == "tr":
            if self._current_row is not None and self._current_table is not None:
                self._current_table.rows.append(self._current_row)
                self._current_row = None

        elif tag in ("td", "th"):
            self._end_paragraph()
            if self._current_cell is not None and self._current_row is not None:
                self._current_row.cells.append(self._current_cell)
                self._current_cell = None
            if tag == "th":
                self._pop_formatting(tag)

        elif tag in ("strong", "b", "em", "i", "u", "s", "del", "strike", "a"):
            self._pop_formatting(tag)

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        if self._in_title:
            self.document.title += data.strip()
            return
        # Skip whitespace-only data between elements
        if not data.strip() and self._current_paragraph is None:
            return
        self._append_text(re.sub(r"[ \t\r\n]+", " ", data))

    def close(self) -> None:
        super().close()
        if self.strict and self._tag_stack:
            unclosed = [t for t in self._tag_stack if t not in ("html", "body", "head")]
            if unclosed:
                raise MarkupError(f"Unclosed tags at end of document: {unclosed}")
        self._end_paragraph()
        if self._current_table is not None:
            self.document.elements.append(self._current_table)
            self._current_table = None

    def _append_text(self, text: str) -> None:
        if self._current_paragraph is None:
            self._current_paragraph = HTMLParagraph(tag="p")
        span = TextSpan(text=text, **self._get_current_formatting())
        self._current_paragraph.spans.append(span)

    def _end_paragraph(self) -> None:
        paragraph = self._current_paragraph
        if paragraph is None:
            return
        self._current_paragraph = None
        if self._current_cell is not None:
            self._current_cell.paragraphs.append(paragraph)
        elif paragraph.text_content().strip() or paragraph.is_list_item:
            self.document.elements.append(paragraph)

    def _push_formatting(self, tag: str, **kwargs: Any) -> None:
        self._formatting_stack.append((tag, kwargs))

    def _pop_formatting(self, tag: str) -> None:
        for i in range(len(self._formatting_stack) - 1, -1, -1):
            if self._formatting_stack[i][0] == tag:
                del self._formatting_stack[i]
                return

    def _get_current_formatting(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "bold": False,
            "italic": False,
            "underline": False,
            "strikethrough": False,
            "link_url": None,
        }
        for _, fmt in self._formatting_stack:
            result.update(fmt)
        return result


def parse_html(html_content: str, strict: bool = False) -> HTMLDocument:
    """Parse HTML content into a structured document.

    Args:
        html_content: HTML string (fragment or full document)
        strict: Raise MarkupError on malformed or unsafe markup

    Returns:
        Parsed HTMLDocument
    """
    parser = DocumentHTMLParser(strict=strict)
    parser.feed(html_content)
    parser.close()
    return parser.document


def sanitize_html(html_content: str) -> str:
    """Strip scripts, styles and inline event handlers."""
    cleaned = _SCRIPT_RE.sub("", html_content)
    cleaned = _STYLE_RE.sub("", cleaned)
    return _EVENT_ATTR_RE.sub("", cleaned)


def extract_body(html_content: str) -> str:
    """Return the inner HTML of <body>, or the input if there is none."""
    match = _BODY_RE.search(html_content)
    return match.group(1).strip() if match else html_content


def html_to_plain_text(html_content: str) -> str:
    """Reduce markup to text with blank lines between blocks."""
    text = sanitize_html(html_content)
    text = _BLOCK_BREAK_RE.sub("\n\n", text)
    text = html.unescape(_TAG_RE.sub("", text))
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def plain_paragraphs(text: str) -> list[str]:
    """Split text into non-empty paragraphs on blank lines."""
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


def strip_xml_invalid(text: str) -> str:
    """Remove characters that cannot appear in an XML document."""
    return _XML_INVALID_RE.sub("", text)


def text_to_html(text: str) -> str:
    """Render plain text as paragraphs: blank lines split, newlines break."""
    paragraphs = re.split(r"\r?\n\s*\r?\n", text.strip())
    rendered = [
        "<p>" + "<br>".join(html.escape(line) for line in p.splitlines()) + "</p>"
        for p in paragraphs
        if p.strip()
    ]
    return "".join(rendered) or "<p></p>"


def wrap_html_document(fragment: str, title: str = "Document") -> str:
    """Wrap an HTML fragment in a complete document unless it already is one."""
    if fragment.lstrip().lower().startswith("<!doctype"):
        return fragment
    return (
        "<!DOCTYPE html>\n"
        '<html>\n<head>\n<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n<body>\n"
        f"{fragment}\n"
        "</body>\n</html>\n"
    )


def word_count(html_content: str) -> int:
    """Number of whitespace-separated words in the rendered text."""
    return len(html_to_plain_text(html_content).split())
