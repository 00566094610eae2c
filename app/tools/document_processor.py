import os
import re
import logging
from datetime import datetime
from typing import Dict, Any, Optional, List

import fitz  # PyMuPDF
import docx

from app.config import settings
from app.errors import ExtractionError

logger = logging.getLogger(__name__)

# Labelled totals, most specific first
AMOUNT_PATTERNS = [
    r"(?:grand\s+total|total\s+amount|amount\s+due|balance\s+due|total\s+due)\s*[:\-]?\s*(?:[A-Z]{3}|[$€£])?\s*([\d][\d.,]*)",
    r"\btotal\b\s*[:\-]?\s*(?:[A-Z]{3}|[$€£])?\s*([\d][\d.,]*)",
    r"\bamount\b\s*[:\-]?\s*(?:[A-Z]{3}|[$€£])?\s*([\d][\d.,]*)",
]
INVOICE_NUMBER_PATTERN = r"invoice\s*(?:no\.?|number|#)\s*[:\-]?\s*([A-Z0-9][A-Z0-9\-/]*)"
DATE_PATTERN = r"(?:invoice\s+)?date\s*[:\-]?\s*(\d{4}-\d{2}-\d{2}|\d{1,2}[/.]\d{1,2}[/.]\d{2,4})"
VENDOR_PATTERN = r"(?:from|vendor|supplier|bill\s+from)\s*[:\-]\s*(.+)"
CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP"}

class DocumentProcessor:
    """
    Content extractor: reads PDF/DOCX files and pulls structured fields out of the text.
    """
    def __init__(self, allowed_extensions: Optional[List[str]] = None, max_bytes: Optional[int] = None):
        self.allowed_extensions = [e.lower() for e in (allowed_extensions or settings.ALLOWED_EXTENSIONS)]
        self.max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES

    def validate_file(self, file_path: str) -> None:
        if not os.path.isfile(file_path):
            raise ExtractionError(f"File not found: {file_path}")

        extension = os.path.splitext(file_path)[1].lower()
        if extension not in self.allowed_extensions:
            raise ExtractionError(f"Unsupported file type: {extension}")

        size = os.path.getsize(file_path)
        if size == 0:
            raise ExtractionError("File is empty")
        if size > self.max_bytes:
            raise ExtractionError(f"File exceeds maximum size of {self.max_bytes} bytes")

    def extract_text(self, file_path: str) -> str:
        """Extracts raw text from a PDF or DOCX file."""
        extension = os.path.splitext(file_path)[1].lower()
        try:
            if extension == ".pdf":
                text = self._extract_pdf(file_path)
            elif extension == ".docx":
                text = self._extract_docx(file_path)
            else:
                raise ExtractionError(f"Unsupported file type: {extension}")
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(f"Text extraction failed for {file_path}: {e}")
            raise ExtractionError(f"Failed to extract text: {e}") from e

        if not text.strip():
            raise ExtractionError("No text could be extracted from the document")
        return text

    def _extract_pdf(self, file_path: str) -> str:
        with fitz.open(file_path) as pdf:
            return "\n".join(page.get_text() for page in pdf)

    def _extract_docx(self, file_path: str) -> str:
        document = docx.Document(file_path)
        lines = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                lines.append(" ".join(cell.text for cell in row.cells))
        return "\n".join(lines)

    def parse_document_data(self, text: str) -> Dict[str, Any]:
        """
        Pulls invoice-like fields out of raw text.
        ``amount`` is None when no labelled total is found.
        """
        data: Dict[str, Any] = {
            "amount": self._find_amount(text),
            "currency": self._find_currency(text),
            "invoice_number": self._search(INVOICE_NUMBER_PATTERN, text),
            "date": self._search(DATE_PATTERN, text),
            "vendor": self._search(VENDOR_PATTERN, text),
            "text_length": len(text),
            "extracted_at": datetime.utcnow().isoformat(),
        }
        return data

    def _find_amount(self, text: str) -> Optional[float]:
        for pattern in AMOUNT_PATTERNS:
            matches = re.findall(pattern, text, flags=re.IGNORECASE)
            for raw in reversed(matches):
                value = parse_number(raw)
                if value is not None:
                    return value
        return None

    def _find_currency(self, text: str) -> Optional[str]:
        code = re.search(r"\b(USD|EUR|GBP|CHF|JPY|CAD|AUD)\b", text)
        if code:
            return code.group(1)
        for symbol, iso in CURRENCY_SYMBOLS.items():
            if symbol in text:
                return iso
        return None

    def _search(self, pattern: str, text: str) -> Optional[str]:
        match = re.search(pattern, text, flags=re.IGNORECASE)
        return match.group(1).strip() if match else None

def parse_number(raw: str) -> Optional[float]:
    """'1,234.56' / '1.234,56' / '1500' -> float; None if it is not a number."""
    cleaned = raw.strip().rstrip(".,")
    if not cleaned:
        return None
    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        cleaned = f"{head.replace(',', '')}.{tail}" if len(tail) == 2 else cleaned.replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return None

document_processor = DocumentProcessor()
