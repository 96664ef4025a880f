# extractor.py

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from .errors import ExtractionFailed, UnsupportedFormat
from .models import ContentKind, Document
from .pdf import PdfTextExtractor
from .text import normalize_paragraphs, normalize_whitespace

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = [
    "script", "style", "noscript", "template", "nav", "header", "footer",
    "aside", "form", "svg", "iframe",
]
BLOCK_TAGS = [
    "p", "div", "section", "article", "main", "li", "ul", "ol", "table", "tr",
    "td", "th", "h1", "h2", "h3", "h4", "h5", "h6", "pre", "blockquote",
    "br", "dd", "dt", "figcaption",
]
TEXT_EXTENSIONS = (".txt", ".md", ".markdown", ".csv", ".rst")
HTML_EXTENSIONS = (".html", ".htm", ".xhtml", ".php", ".asp", ".aspx", ".jsp")


@dataclass
class ExtractedText:
    text: str
    source_id: str


def looks_like_pdf(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(".pdf")


def content_kind_for(url: str, content_type: Optional[str] = None) -> ContentKind:
    """Content kind from the Content-Type header, falling back to the extension."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype:
        if "html" in ctype:
            return ContentKind.HTML
        if ctype == "application/pdf" or ctype.endswith("/x-pdf"):
            return ContentKind.PDF
        if ctype.startswith("text/"):
            return ContentKind.TEXT
        if ctype not in ("application/octet-stream", "binary/octet-stream"):
            raise UnsupportedFormat(f"{url}: unsupported content type {ctype}")

    path = urlsplit(url).path.lower()
    if path.endswith(".pdf"):
        return ContentKind.PDF
    if path.endswith(TEXT_EXTENSIONS):
        return ContentKind.TEXT
    last_segment = path.rsplit("/", 1)[-1]
    if "." not in last_segment or path.endswith(HTML_EXTENSIONS):
        return ContentKind.HTML
    raise UnsupportedFormat(f"{url}: cannot tell the content kind")


def _as_text(content) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content or ""


def html_to_text(html: str) -> str:
    """
    Visible text of an HTML page, paragraph breaks kept at block elements.
    Scripts, styles and navigational boilerplate are dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = normalize_whitespace(soup.title.get_text()) if soup.title else ""

    for tag in soup.find_all(BOILERPLATE_TAGS):
        tag.decompose()

    root = soup.find("main") or soup.find("article") or soup.body or soup
    for tag in root.find_all(BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")

    body = normalize_paragraphs(root.get_text())
    if title and not body.startswith(title):
        return f"{title}\n\n{body}" if body else title
    return body


def extract(
    document: Document,
    pdf_extractor: Optional[PdfTextExtractor] = None,
    pdf_max_pages: int = 12,
    skip_pdfs: bool = False,
) -> ExtractedText:
    """Clean text and source identity of a document, dispatched on its kind."""
    kind = document.kind
    if kind is ContentKind.HTML:
        text = html_to_text(_as_text(document.content))
    elif kind is ContentKind.TEXT:
        text = normalize_paragraphs(_as_text(document.content))
    elif kind is ContentKind.PDF:
        if skip_pdfs:
            raise UnsupportedFormat(f"{document.source_id}: PDF extraction is disabled")
        if pdf_extractor is None:
            raise UnsupportedFormat(f"{document.source_id}: no PDF text extractor configured")
        data = document.content
        if isinstance(data, str):
            data = data.encode("latin-1", errors="replace")
        try:
            raw = pdf_extractor.extract_text(data, pdf_max_pages)
        except (UnsupportedFormat, ExtractionFailed):
            raise
        except Exception as e:
            raise ExtractionFailed(f"{document.source_id}: {e}") from e
        text = normalize_paragraphs(raw)
    else:
        raise UnsupportedFormat(f"{document.source_id}: no extractor for {kind}")

    logger.debug("Extracted %d chars from %s", len(text), document.source_id)
    return ExtractedText(text=text, source_id=document.source_id)
