"""Local Tesseract text extraction for uploaded identity documents."""
from __future__ import annotations

import io
import logging
from typing import List

import fitz  # type: ignore
import pytesseract  # type: ignore
from PIL import Image, UnidentifiedImageError

from apps.kyc_worker.errors import OCRError

logger = logging.getLogger(__name__)


class TesseractOCR:
    """Runs the system Tesseract binary via pytesseract."""

    name = "tesseract"

    def __init__(self, *, lang: str = "ind+eng", config: str = "--oem 1 --psm 3", max_pages: int = 2) -> None:
        self._lang = lang
        self._config = config
        self._max_pages = max_pages

    def _images(self, blob: bytes, suffix: str) -> List[Image.Image]:
        if suffix.lower() == ".pdf":
            images: List[Image.Image] = []
            with fitz.open(stream=blob, filetype="pdf") as document:  # type: ignore[attr-defined]
                for index, page in enumerate(document, start=1):
                    if index > self._max_pages:
                        break
                    pix = page.get_pixmap(dpi=200)
                    images.append(Image.frombytes("RGB", [pix.width, pix.height], pix.samples))
            return images
        return [Image.open(io.BytesIO(blob))]

    def extract_text(self, blob: bytes, *, suffix: str = "") -> str:
        """Return the raw text of an image or PDF upload."""

        if not blob:
            raise OCRError("Document file is empty")
        try:
            images = self._images(blob, suffix)
            texts = [pytesseract.image_to_string(image, lang=self._lang, config=self._config) for image in images]
        except (UnidentifiedImageError, fitz.FileDataError) as exc:
            raise OCRError(f"Unreadable document file: {exc}") from exc
        except pytesseract.TesseractError as exc:
            logger.error("Tesseract failed", extra={"error": str(exc)})
            raise OCRError("Failed to perform OCR") from exc
        return "\n".join(texts)
