# services/workflow/domain.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

FieldErrors = Dict[str, str]

SLOT_AADHAAR = "aadhaar"
SLOT_PAN = "pan"
DOCUMENT_SLOTS = (SLOT_AADHAAR, SLOT_PAN)

INFO_FIELDS = ("aadhaar_number", "pan_number", "full_name", "date_of_birth", "address")


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class FileBlob:
    data: bytes
    content_type: str
    filename: str
    size: int = -1

    def __post_init__(self) -> None:
        if self.size < 0:
            object.__setattr__(self, "size", len(self.data))


@dataclass(frozen=True)
class StagedFile:
    blob: FileBlob
    preview: Optional[str]  # data URI, UI feedback only


@dataclass
class SubmissionDraft:
    aadhaar_number: str = ""
    pan_number: str = ""
    full_name: str = ""
    date_of_birth: str = ""
    address: str = ""
    documents: Dict[str, Optional[StagedFile]] = field(
        default_factory=lambda: {slot: None for slot in DOCUMENT_SLOTS}
    )
    # bumped on every staging attempt; a stale attempt must not overwrite a newer one
    revisions: Dict[str, int] = field(
        default_factory=lambda: {slot: 0 for slot in DOCUMENT_SLOTS}, repr=False
    )

    def file(self, slot: str) -> Optional[FileBlob]:
        staged = self.documents.get(slot)
        return staged.blob if staged else None

    def preview(self, slot: str) -> Optional[str]:
        staged = self.documents.get(slot)
        return staged.preview if staged else None

    def invalidate_stagings(self) -> None:
        """Any staging still decoding a preview will come back superseded."""
        for slot in self.revisions:
            self.revisions[slot] += 1


@dataclass(frozen=True)
class VerificationRecord:
    owner_id: str
    aadhaar_number: str
    pan_number: str
    full_name: str
    date_of_birth: str
    address: str
    aadhaar_image_url: str
    pan_image_url: str
    submitted_at: str
    status: VerificationStatus = VerificationStatus.PENDING
    approved_at: Optional[str] = None
    rejected_at: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass(frozen=True)
class SubmissionReceipt:
    record: VerificationRecord
    status_synced: bool = True
