"""HTML persistence format for transcript documents.

A saved document is a standalone HTML page. Each segment is one ``<span>``
inside ``<div class="content">``; the span color carries its provenance.
"""

import html
from datetime import datetime
from html.parser import HTMLParser
from typing import Iterable, List, Optional

from loguru import logger

from ..styles.colors import ProvenanceColors, normalize_color
from .errors import MalformedDocument
from .models import DEFAULT_TITLE, Document, Provenance, Segment


DECODED_DEFAULT_TITLE = "Untitled"

_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
{language_meta}<title>{title}</title>
<style>
body {{ font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; line-height: 1.6; }}
h1 {{ color: {heading}; border-bottom: 2px solid {border}; padding-bottom: 10px; }}
.content {{ margin-top: 20px; font-size: 16px; }}
.metadata {{ margin-top: 30px; font-size: 12px; color: {metadata}; }}
</style>
</head>
<body>
<h1>{title}</h1>
<div class="content">{content}</div>
<div class="metadata">
<p>Generated: {generated_at}</p>
<p>Segments: {count}</p>
</div>
</body>
</html>
"""


def _span(segment: Segment) -> str:
    color = ProvenanceColors.USER if segment.is_user_input else ProvenanceColors.MACHINE
    return f'<span style="color: {color};">{html.escape(segment.text)}</span>'


def encode(
    title: str,
    segments: Iterable[Segment],
    language: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Serialize a document to HTML.

    Provisional segments are not persisted.
    """
    committed = [s for s in segments if not s.provisional and s.text.strip()]
    if not title or not title.strip():
        title = DEFAULT_TITLE
    generated_at = generated_at or datetime.now()

    language_meta = ""
    if language:
        language_meta = f'<meta name="language" content="{html.escape(language)}">\n'

    return _TEMPLATE.format(
        title=html.escape(title),
        language_meta=language_meta,
        heading=ProvenanceColors.HEADING,
        border=ProvenanceColors.BORDER,
        metadata=ProvenanceColors.METADATA,
        content=" ".join(_span(s) for s in committed),
        generated_at=generated_at.strftime("%Y-%m-%d %H:%M:%S"),
        count=len(committed),
    )


def _style_color(style: str) -> str:
    """Extract the ``color`` declaration from an inline style"""
    for declaration in (style or "").split(";"):
        name, sep, value = declaration.partition(":")
        if sep and name.strip().lower() == "color":
            return value
    return ""


class _DocumentParser(HTMLParser):
    """Collects the heading, language meta tag and content spans"""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title: Optional[str] = None
        self.language: Optional[str] = None
        self.found_content = False
        self.spans: List[Segment] = []

        self._in_h1 = False
        self._h1_parts: List[str] = []
        self._content_depth = 0  # div nesting inside the content container
        self._span_depth = 0
        self._span_color = ""
        self._span_parts: List[str] = []
        self._user_markers = ProvenanceColors.user_markers()

    def handle_starttag(self, tag, attrs):
        attrs = dict(attrs)

        if tag == "meta" and (attrs.get("name") or "").lower() == "language":
            self.language = (attrs.get("content") or "").strip() or None
            return

        if tag == "h1" and self.title is None and not self._in_h1:
            self._in_h1 = True
            self._h1_parts = []
            return

        if tag == "div":
            if self._content_depth:
                self._content_depth += 1
            elif "content" in (attrs.get("class") or "").split() and not self.found_content:
                self.found_content = True
                self._content_depth = 1
            return

        if tag == "span" and self._content_depth:
            self._span_depth += 1
            if self._span_depth == 1:
                self._span_color = _style_color(attrs.get("style"))
                self._span_parts = []

    def handle_endtag(self, tag):
        if tag == "h1" and self._in_h1:
            self._in_h1 = False
            self.title = "".join(self._h1_parts)
            return

        if tag == "div" and self._content_depth:
            self._content_depth -= 1
            return

        if tag == "span" and self._span_depth:
            self._span_depth -= 1
            if self._span_depth == 0:
                self._close_span()

    def handle_data(self, data):
        if self._in_h1:
            self._h1_parts.append(data)
        if self._span_depth:
            self._span_parts.append(data)

    def _close_span(self):
        text = "".join(self._span_parts).strip()
        if not text:
            return
        if normalize_color(self._span_color) in self._user_markers:
            provenance = Provenance.USER
        else:
            provenance = Provenance.MACHINE
        self.spans.append(Segment(text=text, provenance=provenance))


def decode(text: str) -> Document:
    """
    Parse a saved document.

    Raises:
        MalformedDocument: no content container in the input
    """
    parser = _DocumentParser()
    try:
        parser.feed(text or "")
        parser.close()
    except Exception as e:
        raise MalformedDocument(f"Could not parse document: {e}") from e

    if not parser.found_content:
        raise MalformedDocument("Document has no content container")

    logger.debug(f"Decoded document with {len(parser.spans)} segments")
    return Document(
        title=parser.title if parser.title and parser.title.strip() else DECODED_DEFAULT_TITLE,
        segments=parser.spans,
        language=parser.language,
    )
