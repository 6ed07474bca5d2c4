"""Tests for synchronous text extraction."""

import pytest

from quizmint.services.extraction import (
    DOCX_CONTENT_TYPE,
    PDF_CONTENT_TYPE,
    ExtractionError,
    extract_docx_text,
    extract_pdf_text,
    extract_text,
    is_pdf,
)
from tests.helpers import make_docx, make_pdf, make_scanned_pdf


class TestPdf:
    def test_text_layer_is_extracted(self):
        assert "Krebs cycle" in extract_pdf_text(make_pdf("The Krebs cycle"))

    def test_scanned_pdf_is_empty(self):
        assert extract_pdf_text(make_scanned_pdf()) == ""

    def test_garbage_is_an_error(self):
        with pytest.raises(ExtractionError):
            extract_pdf_text(b"definitely not a pdf")


class TestWord:
    def test_paragraphs_joined_by_newlines(self):
        content = make_docx("Cells divide.", "", "Mitosis has phases.")
        assert extract_docx_text(content) == "Cells divide.\nMitosis has phases."

    def test_garbage_is_an_error(self):
        with pytest.raises(ExtractionError):
            extract_docx_text(b"PK but not really")


def test_dispatch_on_content_type():
    assert extract_text(make_docx("Word text"), DOCX_CONTENT_TYPE) == "Word text"
    assert "PDF text" in extract_text(make_pdf("PDF text"), PDF_CONTENT_TYPE)


@pytest.mark.parametrize(
    "content_type,expected",
    [
        ("application/pdf", True),
        ("Application/PDF; charset=binary", True),
        (DOCX_CONTENT_TYPE, False),
    ],
)
def test_is_pdf(content_type, expected):
    assert is_pdf(content_type) is expected
