"""PDF text extraction via pypdf."""

from __future__ import annotations

from pathlib import Path

import pypdf


def extract_pdf_text(path: Path | str) -> str:
    """Extract all page text from the PDF at *path*.

    Pages that yield no text (scanned images, etc.) are silently skipped.
    Pages are separated by a blank line so the sentence splitter treats
    page ends as paragraph breaks.
    """
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)
