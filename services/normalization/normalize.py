# services/normalization/normalize.py
from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Any

from services.workflow.domain import FileBlob


_WS_RE = re.compile(r"\s+")
_DIGITS12_RE = re.compile(r"([0-9]{4})([0-9]{4})([0-9]{4})")

_EXT_BY_TYPE = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def _safe_str(x: Any) -> str:
    if x is None:
        return ""
    if isinstance(x, str):
        return x.strip()
    return str(x).strip()


def normalize_aadhaar_number(v: str) -> str:
    """'1234 5678 9012' -> '123456789012'. Only whitespace is removed."""
    return _WS_RE.sub("", v or "")


def normalize_pan_number(v: str) -> str:
    return _safe_str(v).upper()


def format_aadhaar_number(v: str) -> str:
    """
    Display grouping used by the entry form:
      - '123456789012' -> '1234 5678 9012'
    Anything that is not 12 digits after stripping is returned stripped, ungrouped.
    """
    cleaned = normalize_aadhaar_number(v)
    m = _DIGITS12_RE.fullmatch(cleaned)
    return " ".join(m.groups()) if m else cleaned


def file_extension(blob: FileBlob) -> str:
    # Original filename wins; the declared content type is the fallback.
    suffix = PurePosixPath(_safe_str(blob.filename).replace("\\", "/")).suffix
    ext = suffix.lstrip(".").lower()
    if ext and ext.isalnum():
        return ext
    return _EXT_BY_TYPE.get(_safe_str(blob.content_type).lower(), "bin")
