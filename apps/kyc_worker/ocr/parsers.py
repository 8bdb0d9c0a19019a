"""Field extraction from raw KTP and NPWP OCR text."""
from __future__ import annotations

import re
from typing import Callable, Dict

from apps.kyc_worker.errors import UnsupportedDocumentType

ParsedFields = Dict[str, str]

_NIK = re.compile(r"NIK[\s:]*([0-9]{16})", re.IGNORECASE)
_NAME = re.compile(r"Nama[\s:]*([A-Z\s]+)", re.IGNORECASE)
_BIRTH = re.compile(r"Tempat[/\s]*Tgl\s*Lahir[\s:]*([A-Z\s]+),\s*([0-9\-/]+)", re.IGNORECASE)
_ADDRESS = re.compile(r"Alamat[\s:]*([A-Za-z0-9\s,./]+)", re.IGNORECASE)
_GENDER = re.compile(r"Jenis\s*Kelamin[\s:]*([A-Z\s]+)", re.IGNORECASE)
_RELIGION = re.compile(r"Agama[\s:]*([A-Z\s]+)", re.IGNORECASE)
_MARITAL = re.compile(r"Status\s*Perkawinan[\s:]*([A-Z\s]+)", re.IGNORECASE)
_NPWP_NUMBER = re.compile(r"([0-9]{2}\.[0-9]{3}\.[0-9]{3}\.[0-9]-[0-9]{3}\.[0-9]{3})")


def parse_ktp(ocr_text: str) -> ParsedFields:
    """Extract KTP fields. Only fields found in the text are returned."""

    result: ParsedFields = {}

    if match := _NIK.search(ocr_text):
        result["nik"] = match.group(1)
    if match := _NAME.search(ocr_text):
        result["name"] = match.group(1).strip()
    if match := _BIRTH.search(ocr_text):
        result["birthPlace"] = match.group(1).strip()
        result["birthDate"] = match.group(2).strip()
    if match := _ADDRESS.search(ocr_text):
        result["address"] = match.group(1).strip()
    if match := _GENDER.search(ocr_text):
        result["gender"] = match.group(1).strip()
    if match := _RELIGION.search(ocr_text):
        result["religion"] = match.group(1).strip()
    if match := _MARITAL.search(ocr_text):
        result["maritalStatus"] = match.group(1).strip()

    return result


def parse_npwp(ocr_text: str) -> ParsedFields:
    result: ParsedFields = {}

    if match := _NPWP_NUMBER.search(ocr_text):
        result["npwpNumber"] = match.group(1)
    if match := _NAME.search(ocr_text):
        result["name"] = match.group(1).strip()

    return result


_PARSERS: Dict[str, Callable[[str], ParsedFields]] = {
    "KTP": parse_ktp,
    "NPWP": parse_npwp,
}


def parse_document(document_type: str, ocr_text: str) -> ParsedFields:
    try:
        parser = _PARSERS[document_type]
    except KeyError as exc:
        raise UnsupportedDocumentType(f"Unknown document type: {document_type}") from exc
    return parser(ocr_text)
