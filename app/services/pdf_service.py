"""PDF helpers built on PyMuPDF: page splitting and text-layer extraction."""

import fitz  # PyMuPDF

from app.core.errors import ExtractionError


class PdfService:
    """Thin wrapper around PyMuPDF used by the extractor."""

    def _open(self, pdf_bytes: bytes) -> fitz.Document:
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as exc:
            msg = f"Failed to open PDF: {exc}"
            raise ExtractionError(msg) from exc
        if doc.is_encrypted:
            doc.close()
            msg = "PDF is encrypted. Export an unlocked copy."
            raise ExtractionError(msg)
        return doc

    def page_count(self, pdf_bytes: bytes) -> int:
        with self._open(pdf_bytes) as doc:
            return len(doc)

    def split_pages(self, pdf_bytes: bytes) -> list[bytes]:
        """Return one single-page PDF per page, in page order."""
        pages: list[bytes] = []
        with self._open(pdf_bytes) as doc:
            for index in range(len(doc)):
                single = fitz.open()
                single.insert_pdf(doc, from_page=index, to_page=index)
                pages.append(single.tobytes())
                single.close()
        return pages

    def extract_text(self, pdf_bytes: bytes) -> str:
        """Concatenate the text layer of every page."""
        with self._open(pdf_bytes) as doc:
            return "\n".join(page.get_text("text") or "" for page in doc)
