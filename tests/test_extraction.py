from __future__ import annotations

import io

import pytest
from docx import Document
from odf.opendocument import OpenDocumentText
from odf.text import H, P
from pypdf import PdfWriter

from insightboard.extraction import UnsupportedFormatError, extract_text, format_file_size


def test_extract_plain_text_formats() -> None:
    extracted = extract_text("Привет, world".encode("utf-8"), "notes.md")

    assert extracted.text == "Привет, world"
    assert extracted.format == "text"


def test_extract_html_strips_markup_and_scripts() -> None:
    html = b"""
    <html><head><style>body { color: red; }</style><script>alert('x')</script></head>
    <body><h1>Release notes</h1><p>Queue now runs one request at a time.</p></body></html>
    """

    extracted = extract_text(html, "page.HTML")

    assert extracted.format == "html"
    assert "Release notes" in extracted.text
    assert "one request at a time" in extracted.text
    assert "alert" not in extracted.text
    assert "color: red" not in extracted.text


def test_extract_docx_paragraphs() -> None:
    document = Document()
    document.add_paragraph("First paragraph about embeddings.")
    document.add_paragraph("   ")
    document.add_paragraph("Second paragraph about retrieval.")
    buffer = io.BytesIO()
    document.save(buffer)

    extracted = extract_text(buffer.getvalue(), "report.docx")

    assert extracted.format == "docx"
    assert extracted.text == "First paragraph about embeddings.\n\nSecond paragraph about retrieval."
    assert extracted.stats == {"paragraphs": 2}


def test_extract_odt_headings_and_paragraphs() -> None:
    document = OpenDocumentText()
    document.text.addElement(H(outlinelevel=1, text="Vector search"))
    document.text.addElement(P(text="Embeddings map text to points."))
    document.text.addElement(P(text=""))
    document.text.addElement(P(text="Nearest neighbours answer queries."))
    buffer = io.BytesIO()
    document.write(buffer)

    extracted = extract_text(buffer.getvalue(), "chapter.ODT")

    assert extracted.format == "odt"
    assert extracted.text == "Vector search\n\nEmbeddings map text to points.\n\nNearest neighbours answer queries."
    assert extracted.stats == {"paragraphs": 3}


def test_extract_pdf_reports_page_count() -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)

    extracted = extract_text(buffer.getvalue(), "slides.pdf")

    assert extracted.format == "pdf"
    assert extracted.stats == {"pageCount": 2}


def test_extract_rejects_corrupt_documents() -> None:
    with pytest.raises(ValueError, match="DOCX"):
        extract_text(b"not a zip archive", "broken.docx")
    with pytest.raises(ValueError, match="ODT"):
        extract_text(b"not a zip archive", "broken.odt")


@pytest.mark.parametrize("filename", ["legacy.doc", "archive.zip", "README"])
def test_extract_rejects_unsupported_formats(filename: str) -> None:
    with pytest.raises(UnsupportedFormatError, match="Unsupported file format"):
        extract_text(b"data", filename)


@pytest.mark.parametrize(
    ("size", "label"),
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5 MB"),
        (3 * 1024**3, "3 GB"),
    ],
)
def test_format_file_size(size: int, label: str) -> None:
    assert format_file_size(size) == label
