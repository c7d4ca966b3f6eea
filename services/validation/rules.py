# services/validation/rules.py
from __future__ import annotations

import re
from typing import Optional

from services.workflow.domain import (
    SLOT_AADHAAR,
    SLOT_PAN,
    FieldErrors,
    FileBlob,
    SubmissionDraft,
)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
MAX_FILE_BYTES = 5 * 1024 * 1024

DOCUMENT_LABELS = {SLOT_AADHAAR: "Aadhaar", SLOT_PAN: "PAN"}

_WS_RE = re.compile(r"\s+")
_AADHAAR_RE = re.compile(r"[0-9]{12}")
_PAN_RE = re.compile(r"[A-Z]{5}[0-9]{4}[A-Z]")


def validate_aadhaar_number(value: str) -> bool:
    return _AADHAAR_RE.fullmatch(_WS_RE.sub("", value or "")) is not None


def validate_pan_number(value: str) -> bool:
    return _PAN_RE.fullmatch((value or "").upper()) is not None


def validate_file(blob: Optional[FileBlob], label: str) -> Optional[str]:
    """
    Returns None when the file is acceptable, else a message naming `label`.
    Checks run in order: missing, type, size.
    """
    if blob is None:
        return f"{label} image is required"
    if blob.content_type not in ALLOWED_IMAGE_TYPES:
        return f"{label} must be a valid image (JPEG, PNG, WEBP)"
    if blob.size > MAX_FILE_BYTES:
        return f"{label} size must be less than 5MB"
    return None


def validate_info_step(draft: SubmissionDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if not draft.aadhaar_number:
        errors["aadhaar_number"] = "Aadhaar number is required"
    elif not validate_aadhaar_number(draft.aadhaar_number):
        errors["aadhaar_number"] = "Invalid Aadhaar number format (12 digits)"

    if not draft.pan_number:
        errors["pan_number"] = "PAN number is required"
    elif not validate_pan_number(draft.pan_number):
        errors["pan_number"] = "Invalid PAN format (e.g., ABCDE1234F)"

    if not draft.full_name.strip():
        errors["full_name"] = "Full name is required"

    if not draft.date_of_birth:
        errors["date_of_birth"] = "Date of birth is required"

    if not draft.address.strip():
        errors["address"] = "Address is required"

    return errors


def validate_documents_step(draft: SubmissionDraft) -> FieldErrors:
    errors: FieldErrors = {}
    for slot, label in DOCUMENT_LABELS.items():
        msg = validate_file(draft.file(slot), label)
        if msg:
            errors[slot] = msg
    return errors


def clear_field_error(errors: FieldErrors, key: str) -> FieldErrors:
    # Optimistic clear on edit; full revalidation only happens on a step transition.
    if key not in errors:
        return errors
    return {k: v for k, v in errors.items() if k != key}
