"""OCR text extraction and KTP/NPWP field parsing."""
from __future__ import annotations

from .parsers import ParsedFields, parse_document, parse_ktp, parse_npwp
from .tesseract import TesseractOCR

__all__ = ["ParsedFields", "TesseractOCR", "parse_document", "parse_ktp", "parse_npwp"]
