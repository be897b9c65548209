"""ExtractionAgent: turns statement pages, text, whole PDFs and CSV text into statement payloads."""

from app.agents.base import BaseAgent, pdf_file_part
from app.agents.prompts import (
    CSV_EXTRACTION_PROMPT,
    PAGE_EXTRACTION_PROMPT,
    PDF_EXTRACTION_PROMPT,
    TEXT_EXTRACTION_PROMPT,
)
from app.agents.registry import AgentRegistry
from app.agents.schemas import StatementPayload


class ExtractionAgent(BaseAgent):
    """Agent responsible for the completion calls of the extractor stage."""

    name = "extraction"

    def extract_page(self, page_pdf: bytes, page: int, total_pages: int, file_name: str) -> StatementPayload:
        """Vision-extract one single-page PDF (``page`` is 1-based)."""
        prompt = PAGE_EXTRACTION_PROMPT.format(page=page, total_pages=total_pages)
        messages = [
            {
                "role": "user",
                "content": [
                    pdf_file_part(page_pdf, f"page-{page}-{file_name}"),
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        data = self.complete_json(
            messages,
            model=self.settings.llm_vision_model,
            max_tokens=self.settings.page_max_tokens,
            timeout=self.settings.page_timeout,
            label=f"Page {page}/{total_pages}",
        )
        return self.parse(StatementPayload, data, f"Page {page}/{total_pages}")

    def extract_text(self, text: str) -> StatementPayload:
        """Extract transactions from the whole-document text layer."""
        messages = [{"role": "user", "content": TEXT_EXTRACTION_PROMPT.format(text=text)}]
        data = self.complete_json(
            messages,
            max_tokens=self.settings.document_max_tokens,
            timeout=self.settings.document_timeout,
            label="Text extraction",
        )
        return self.parse(StatementPayload, data, "Text extraction")

    def extract_pdf(self, pdf_bytes: bytes, file_name: str, model: str | None = None) -> StatementPayload:
        """Send the entire PDF as one attachment."""
        messages = [
            {
                "role": "user",
                "content": [pdf_file_part(pdf_bytes, file_name), {"type": "text", "text": PDF_EXTRACTION_PROMPT.format()}],
            }
        ]
        data = self.complete_json(
            messages,
            model=model or self.settings.llm_vision_model,
            max_tokens=self.settings.document_max_tokens,
            timeout=self.settings.document_timeout,
            label="Direct PDF extraction",
        )
        return self.parse(StatementPayload, data, "Direct PDF extraction")

    def extract_csv(self, csv_text: str) -> StatementPayload:
        """Extract transactions and a column mapping from CSV text."""
        messages = [{"role": "user", "content": CSV_EXTRACTION_PROMPT.format(text=csv_text)}]
        data = self.complete_json(
            messages,
            max_tokens=self.settings.document_max_tokens,
            timeout=self.settings.document_timeout,
            label="CSV extraction",
        )
        return self.parse(StatementPayload, data, "CSV extraction")


AgentRegistry.register(ExtractionAgent.name, ExtractionAgent)
