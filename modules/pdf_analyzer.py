"""Page counting for PDF documents."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from core.exceptions import PageCountError


def count_pdf_pages(pdf_path: str | Path) -> int:
    """
    Count pages from the PDF structure.

    Encrypted documents with an empty user password (common for
    "print-protected" files) are opened transparently.

    Raises:
        PageCountError: If the file is missing, not a PDF, or unreadable
    """
    path = Path(pdf_path)
    try:
        reader = PdfReader(str(path))
        if reader.is_encrypted:
            reader.decrypt("")
        return len(reader.pages)
    except (OSError, PyPdfError, ValueError, KeyError, TypeError, AttributeError, IndexError) as exc:
        raise PageCountError(f"Failed to read pages: {exc}", filename=path.name) from exc


def read_pdf_pages_or_none(path: str | Path) -> Optional[int]:
    """Best-effort page count; None when the file cannot be parsed as PDF."""
    try:
        return count_pdf_pages(path)
    except PageCountError:
        return None
