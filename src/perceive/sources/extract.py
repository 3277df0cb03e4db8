"""Default text extractor: plain text, HTML and PDF.

HTML is cleaned with BeautifulSoup and converted with html2text; PDFs are
read page by page with pypdf. Bump PROCESS_VERSION when the output of
``extract`` changes so existing items are re-extracted on the next sync.
"""

from __future__ import annotations

import io

import html2text
import pypdf
from bs4 import BeautifulSoup

from perceive.errors import ExtractionError
from perceive.sources.base import TextExtractor

PROCESS_VERSION = 1

_HTML_TYPES = {"text/html", "application/xhtml+xml"}
_PDF_TYPES = {"application/pdf"}

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class DefaultExtractor(TextExtractor):
    """Picks a conversion by MIME type; anything else must be UTF-8 text."""

    process_version = PROCESS_VERSION

    def extract(self, raw: bytes, content_type: str | None) -> str:
        kind = (content_type or "").split(";")[0].strip().lower()
        if kind in _PDF_TYPES:
            return _pdf_to_text(raw)
        text = _decode(raw)
        if kind in _HTML_TYPES:
            return _html_to_text(text)
        return text


def _decode(raw: bytes) -> str:
    if b"\x00" in raw[:8192]:
        raise ExtractionError("Content looks binary (NUL bytes)")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"Content is not valid UTF-8: {exc}") from exc


def _html_to_text(html: str) -> str:
    """Strip non-content tags, then convert with html2text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


def _pdf_to_text(raw: bytes) -> str:
    """Extract all page text from a PDF held in memory."""
    try:
        reader = pypdf.PdfReader(io.BytesIO(raw))
        parts: list[str] = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                parts.append(page_text)
    except Exception as exc:  # malformed PDFs surface as arbitrary pypdf errors
        raise ExtractionError(f"Could not read PDF: {exc}") from exc
    return "\n\n".join(parts)
