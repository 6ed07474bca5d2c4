"""Synchronous text extraction from uploaded documents.

PDFs are read with PyPDF2 and Word documents with python-docx. A PDF
with no text layer (a scan) comes back empty; the caller then falls back
to OCR.
"""

import io

from docx import Document
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from quizmint.logging import get_logger

logger = get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DOC_CONTENT_TYPE = "application/msword"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

ALLOWED_CONTENT_TYPES = frozenset({PDF_CONTENT_TYPE, DOC_CONTENT_TYPE, DOCX_CONTENT_TYPE})


class ExtractionError(Exception):
    """The document could not be read."""


def is_pdf(content_type: str) -> bool:
    return content_type.split(";")[0].strip().lower() == PDF_CONTENT_TYPE


def extract_pdf_text(content: bytes) -> str:
    """Concatenated text layer of every page. Empty for scanned PDFs."""
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError) as e:
        raise ExtractionError(f"unreadable PDF: {e}") from e
    return "\n".join(p for p in pages if p.strip()).strip()


def extract_docx_text(content: bytes) -> str:
    """Raw paragraph text of a Word document."""
    try:
        document = Document(io.BytesIO(content))
    except Exception as e:
        # python-docx raises zipfile/KeyError/ValueError flavors for bad input
        raise ExtractionError(f"unreadable Word document: {type(e).__name__}") from e
    return "\n".join(p.text for p in document.paragraphs if p.text.strip()).strip()


def extract_text(content: bytes, content_type: str) -> str:
    """Extract plain text according to the upload's content type."""
    if is_pdf(content_type):
        text = extract_pdf_text(content)
    else:
        text = extract_docx_text(content)
    logger.info("text_extracted", content_type=content_type, chars=len(text))
    return text
