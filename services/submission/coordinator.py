# services/submission/coordinator.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from services.ingestion.storage import BlobStore, RecordStore
from services.normalization.normalize import (
    file_extension,
    normalize_aadhaar_number,
    normalize_pan_number,
)
from services.validation.rules import validate_documents_step, validate_info_step
from services.validation.schema_validation import validate_with_schema
from services.workflow.domain import (
    DOCUMENT_SLOTS,
    SLOT_AADHAAR,
    SLOT_PAN,
    FileBlob,
    SubmissionDraft,
    SubmissionReceipt,
    VerificationRecord,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

KYC_COLLECTION = "kyc"
USERS_COLLECTION = "users"
RECORD_SCHEMA = "verification_record"

SUBMIT_ERROR_MESSAGE = "Failed to submit KYC documents. Please try again."


class SubmitError(RuntimeError):
    """Submission did not reach the commit point. Retryable by resubmitting."""

    user_message = SUBMIT_ERROR_MESSAGE


class UploadFailed(SubmitError):
    """A document upload failed; no record was written."""


class RecordWriteFailed(SubmitError):
    """Uploads finished but the verification record was not written."""


class SubmissionFailed(SubmitError):
    """Unclassified failure inside the submission."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionCoordinator:
    """
    Two ordered phases across two independent stores:

      1) upload both documents (concurrently) and resolve their URLs
      2) write the verification record, then mark the owner as pending

    The record write is the commit point. Nothing is written if any upload
    failed, and the follow-up status update is best effort: its failure is
    logged and reported via `SubmissionReceipt.status_synced`, never raised.
    """

    def __init__(
        self,
        *,
        blob_store: BlobStore,
        record_store: RecordStore,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.blob_store = blob_store
        self.record_store = record_store
        self.clock = clock or _utcnow

    def blob_path(self, owner_id: str, slot: str, blob: FileBlob) -> str:
        # A fresh path per attempt: retries never overwrite a previous upload.
        owner = str(owner_id).replace("\\", "_").replace("/", "_")
        stamp = int(self.clock().timestamp() * 1000)
        return f"kyc/{owner}/{slot}_{stamp}_{uuid4().hex[:8]}.{file_extension(blob)}"

    async def _upload(self, owner_id: str, slot: str, blob: FileBlob) -> str:
        path = self.blob_path(owner_id, slot, blob)
        location = await self.blob_store.put(path, blob.data, content_type=blob.content_type)
        return await self.blob_store.resolve(location)

    async def _upload_all(self, draft: SubmissionDraft, owner_id: str) -> Dict[str, str]:
        pending: List[Tuple[str, FileBlob]] = []
        for slot in DOCUMENT_SLOTS:
            blob = draft.file(slot)
            if blob is None:
                raise SubmissionFailed(f"no staged document for slot {slot!r}")
            pending.append((slot, blob))

        # return_exceptions: both uploads settle before anything is decided
        results = await asyncio.gather(
            *(self._upload(owner_id, slot, blob) for slot, blob in pending),
            return_exceptions=True,
        )

        urls: Dict[str, str] = {}
        failures = []
        for (slot, _), res in zip(pending, results):
            if isinstance(res, BaseException):
                failures.append((slot, res))
            else:
                urls[slot] = res

        if failures:
            for slot, exc in failures:
                logger.error("upload of %s document failed for owner %s: %s", slot, owner_id, exc)
            raise UploadFailed(
                "upload failed for: " + ", ".join(slot for slot, _ in failures)
            ) from failures[0][1]
        return urls

    def build_record(
        self, draft: SubmissionDraft, owner_id: str, urls: Dict[str, str], submitted_at: str
    ) -> VerificationRecord:
        return VerificationRecord(
            owner_id=owner_id,
            aadhaar_number=normalize_aadhaar_number(draft.aadhaar_number),
            pan_number=normalize_pan_number(draft.pan_number),
            full_name=draft.full_name,
            date_of_birth=draft.date_of_birth,
            address=draft.address,
            aadhaar_image_url=urls[SLOT_AADHAAR],
            pan_image_url=urls[SLOT_PAN],
            submitted_at=submitted_at,
            status=VerificationStatus.PENDING,
        )

    async def _submit(self, draft: SubmissionDraft, owner_id: str) -> SubmissionReceipt:
        if not owner_id:
            raise SubmissionFailed("owner_id is required")

        # nothing is uploaded for a draft that could never produce a valid record
        problems = {**validate_info_step(draft), **validate_documents_step(draft)}
        if problems:
            raise SubmissionFailed("draft failed validation: " + ", ".join(sorted(problems)))

        urls = await self._upload_all(draft, owner_id)

        submitted_at = self.clock().isoformat()
        record = self.build_record(draft, owner_id, urls, submitted_at)
        payload = record.to_dict()

        is_valid, msg = validate_with_schema(payload, RECORD_SCHEMA)
        if not is_valid:
            raise SubmissionFailed(f"record rejected by schema: {msg}")

        try:
            await self.record_store.write(KYC_COLLECTION, owner_id, payload)
        except Exception as e:
            logger.error("verification record write failed for owner %s: %s", owner_id, e)
            raise RecordWriteFailed(str(e)) from e

        status_synced = True
        try:
            await self.record_store.update(
                USERS_COLLECTION,
                owner_id,
                {"kyc_status": VerificationStatus.PENDING.value, "kyc_submitted_at": submitted_at},
            )
        except Exception as e:
            status_synced = False
            logger.warning("record written but owner status update failed for %s: %s", owner_id, e)

        logger.info("kyc submitted for owner %s (status_synced=%s)", owner_id, status_synced)
        return SubmissionReceipt(record=record, status_synced=status_synced)

    async def submit(self, draft: SubmissionDraft, owner_id: str) -> SubmissionReceipt:
        try:
            return await self._submit(draft, owner_id)
        except SubmitError:
            raise
        except Exception as e:
            logger.exception("unexpected kyc submission failure for owner %s", owner_id)
            raise SubmissionFailed(str(e)) from e
