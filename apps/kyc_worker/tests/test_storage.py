import io
from unittest.mock import MagicMock

import pytest
import pytesseract
from botocore.exceptions import ClientError
from PIL import Image

from apps.kyc_worker.config import WorkerConfig
from apps.kyc_worker.errors import OCRError, StorageError
from apps.kyc_worker.ocr import TesseractOCR
from apps.kyc_worker.storage import CircuitBreaker, DocumentStorage, extract_key_from_url


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _settings():
    return WorkerConfig(_env_file=None, r2_bucket="kyc-docs")


def _client_error():
    return ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://bucket.r2.dev/uploads/doc-1.png", "uploads/doc-1.png"),
        ("uploads/doc-1.png", "uploads/doc-1.png"),
        ("/uploads/doc-1.png", "uploads/doc-1.png"),
    ],
)
def test_extract_key_from_url(url, expected):
    assert extract_key_from_url(url) == expected


def test_download_returns_object_body():
    client = MagicMock()
    client.get_object.return_value = {"Body": io.BytesIO(b"image-bytes")}
    storage = DocumentStorage(_settings(), client=client)

    assert storage.download("uploads/doc-1.png") == b"image-bytes"
    client.get_object.assert_called_once_with(Bucket="kyc-docs", Key="uploads/doc-1.png")


def test_download_translates_client_errors():
    client = MagicMock()
    client.get_object.side_effect = _client_error()
    storage = DocumentStorage(_settings(), client=client)

    with pytest.raises(StorageError):
        storage.download("uploads/missing.png")


def test_download_rejects_blank_key():
    storage = DocumentStorage(_settings(), client=MagicMock())

    with pytest.raises(StorageError):
        storage.download("  ")


def test_circuit_breaker_opens_and_recovers():
    clock = ManualClock()
    breaker = CircuitBreaker(failure_threshold=2, recovery_time=30, clock=clock)
    client = MagicMock()
    client.get_object.side_effect = _client_error()
    storage = DocumentStorage(_settings(), client=client, breaker=breaker)

    for _ in range(2):
        with pytest.raises(StorageError):
            storage.download("uploads/doc-1.png")
    assert breaker.state == "open"

    with pytest.raises(StorageError, match="circuit is open"):
        storage.download("uploads/doc-1.png")
    assert client.get_object.call_count == 2

    clock.now = 30
    client.get_object.side_effect = None
    client.get_object.return_value = {"Body": io.BytesIO(b"ok")}
    assert storage.download("uploads/doc-1.png") == b"ok"
    assert breaker.state == "closed"


def test_circuit_breaker_half_opens_after_recovery_time():
    clock = ManualClock()
    breaker = CircuitBreaker(failure_threshold=1, recovery_time=10, clock=clock)

    breaker.record_failure()
    with pytest.raises(StorageError):
        breaker.allow()

    clock.now = 10
    breaker.allow()
    assert breaker.state == "half_open"

    breaker.record_failure()
    assert breaker.state == "open"
    with pytest.raises(StorageError):
        breaker.allow()


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (20, 20), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


def test_tesseract_ocr_extracts_text_from_image(monkeypatch):
    calls = []

    def fake_image_to_string(image, lang=None, config=None):
        calls.append((lang, config))
        return "NIK : 3171234567890123"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)

    text = TesseractOCR(lang="ind", config="--psm 6").extract_text(_png_bytes(), suffix=".png")

    assert text == "NIK : 3171234567890123"
    assert calls == [("ind", "--psm 6")]


def test_tesseract_ocr_rejects_empty_and_unreadable_files():
    ocr = TesseractOCR()

    with pytest.raises(OCRError):
        ocr.extract_text(b"")
    with pytest.raises(OCRError):
        ocr.extract_text(b"not an image", suffix=".jpg")


def test_tesseract_errors_become_ocr_errors(monkeypatch):
    def broken(image, lang=None, config=None):
        raise pytesseract.TesseractError(1, "failed")

    monkeypatch.setattr(pytesseract, "image_to_string", broken)

    with pytest.raises(OCRError):
        TesseractOCR().extract_text(_png_bytes(), suffix=".png")
