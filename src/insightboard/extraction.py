"""Extract analysable text from uploaded documents."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from odf import teletype
from odf.namespaces import TEXTNS
from odf.office import Text as OdfBody
from odf.opendocument import load as load_odf
from pypdf import PdfReader

logger = logging.getLogger(__name__)

_PLAIN_TEXT_SUFFIXES = frozenset(
    {
        ".txt",
        ".md",
        ".markdown",
        ".json",
        ".csv",
        ".xml",
        ".js",
        ".jsx",
        ".ts",
        ".tsx",
        ".css",
        ".scss",
    }
)
_HTML_SUFFIXES = frozenset({".html", ".htm"})
_ODT_BLOCKS = frozenset({(TEXTNS, "p"), (TEXTNS, "h")})
_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


class UnsupportedFormatError(ValueError):
    """Raised when no extractor handles the uploaded file type."""


@dataclass(slots=True)
class ExtractedText:
    text: str
    format: str
    stats: dict[str, Any] = field(default_factory=dict)


def format_file_size(num_bytes: int) -> str:
    """Render a byte count the way the dashboard shows it (``"1.5 KB"``)."""

    if num_bytes <= 0:
        return "0 Bytes"
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(num_bytes / (1024**exponent), 2)
    if value.is_integer():
        return f"{int(value)} {_SIZE_UNITS[exponent]}"
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def extract_text(data: bytes, filename: str) -> ExtractedText:
    """Return the text content of ``data`` based on the extension of ``filename``."""

    suffix = Path(filename).suffix.lower()

    if suffix in _PLAIN_TEXT_SUFFIXES:
        return ExtractedText(text=data.decode("utf-8", errors="ignore"), format="text")

    if suffix in _HTML_SUFFIXES:
        soup = BeautifulSoup(data, "html.parser")
        for tag in soup(["script", "style"]):
            tag.extract()
        return ExtractedText(text=soup.get_text(separator="\n").strip(), format="html")

    if suffix == ".pdf":
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as exc:
            logger.error("extraction.pdf.failed file=%s error=%s", filename, exc)
            raise ValueError(f"Failed to extract text from PDF: {exc}") from exc
        return ExtractedText(
            text="\n\n".join(filter(None, pages)),
            format="pdf",
            stats={"pageCount": len(pages)},
        )

    if suffix == ".docx":
        try:
            document = DocxDocument(io.BytesIO(data))
        except Exception as exc:
            logger.error("extraction.docx.failed file=%s error=%s", filename, exc)
            raise ValueError(f"Failed to extract text from DOCX: {exc}") from exc
        paragraphs = [paragraph.text.strip() for paragraph in document.paragraphs if paragraph.text.strip()]
        return ExtractedText(
            text="\n\n".join(paragraphs),
            format="docx",
            stats={"paragraphs": len(paragraphs)},
        )

    if suffix == ".odt":
        try:
            odt_document = load_odf(io.BytesIO(data))
        except Exception as exc:
            logger.error("extraction.odt.failed file=%s error=%s", filename, exc)
            raise ValueError(f"Failed to extract text from ODT: {exc}") from exc
        blocks = [block for body in odt_document.getElementsByType(OdfBody) for block in _odt_blocks(body)]
        paragraphs = [block.strip() for block in blocks if block.strip()]
        return ExtractedText(
            text="\n\n".join(paragraphs),
            format="odt",
            stats={"paragraphs": len(paragraphs)},
        )

    label = suffix.lstrip(".") or "unknown"
    raise UnsupportedFormatError(f"Unsupported file format: {label}")


def _odt_blocks(node: Any) -> Iterator[str]:
    """Yield paragraph and heading text in document order."""

    for child in getattr(node, "childNodes", ()):
        if getattr(child, "qname", None) in _ODT_BLOCKS:
            yield teletype.extractText(child)
        else:
            yield from _odt_blocks(child)


__all__ = ["ExtractedText", "UnsupportedFormatError", "extract_text", "format_file_size"]
