from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

import services.submission.coordinator as coord_mod
from services.submission.coordinator import (
    RecordWriteFailed,
    SubmissionCoordinator,
    SubmissionFailed,
    UploadFailed,
)
from services.workflow.domain import FileBlob, StagedFile, SubmissionDraft


FIXED_NOW = datetime(2025, 3, 1, 10, 30, 0, tzinfo=timezone.utc)


class FakeBlobStore:
    def __init__(self, fail_slot=None):
        self.fail_slot = fail_slot
        self.puts = []

    async def put(self, path, data, *, content_type=None):
        if self.fail_slot and f"/{self.fail_slot}_" in path:
            raise IOError("bucket unavailable")
        self.puts.append((path, data, content_type))
        return path

    async def resolve(self, location):
        return f"https://blobs.example.test/{location}"


class FakeRecordStore:
    def __init__(self, fail_write=False, fail_update=False):
        self.fail_write = fail_write
        self.fail_update = fail_update
        self.writes = []
        self.updates = []

    async def write(self, collection, key, record):
        if self.fail_write:
            raise IOError("db down")
        self.writes.append((collection, key, record))

    async def update(self, collection, key, fields):
        if self.fail_update:
            raise KeyError(key)
        self.updates.append((collection, key, fields))


def _draft() -> SubmissionDraft:
    d = SubmissionDraft(
        aadhaar_number="1234 5678 9012",
        pan_number="abcde1234f",
        full_name="Asha Rao",
        date_of_birth="1990-04-12",
        address="12 MG Road, Bengaluru",
    )
    d.documents["aadhaar"] = StagedFile(
        blob=FileBlob(data=b"aadhaar-bytes", content_type="image/jpeg", filename="front.jpg"),
        preview="data:image/jpeg;base64,xx",
    )
    d.documents["pan"] = StagedFile(
        blob=FileBlob(data=b"pan-bytes", content_type="image/png", filename="pan.png"),
        preview=None,
    )
    return d


def _coordinator(blobs, records) -> SubmissionCoordinator:
    return SubmissionCoordinator(blob_store=blobs, record_store=records, clock=lambda: FIXED_NOW)


def test_submit_happy_path_writes_pending_record():
    blobs, records = FakeBlobStore(), FakeRecordStore()
    receipt = asyncio.run(_coordinator(blobs, records).submit(_draft(), "0xABC"))

    rec = receipt.record
    assert receipt.status_synced is True
    assert rec.status.value == "pending"
    assert rec.approved_at is None and rec.rejected_at is None and rec.rejection_reason is None
    assert rec.aadhaar_image_url.startswith("https://blobs.example.test/kyc/0xABC/aadhaar_")
    assert rec.pan_image_url.startswith("https://blobs.example.test/kyc/0xABC/pan_")
    assert rec.submitted_at == FIXED_NOW.isoformat()

    # normalized once, at submission time
    assert rec.aadhaar_number == "123456789012"
    assert rec.pan_number == "ABCDE1234F"

    assert [(c, k) for c, k, _ in records.writes] == [("kyc", "0xABC")]
    assert records.writes[0][2] == rec.to_dict()
    assert records.updates == [
        ("users", "0xABC", {"kyc_status": "pending", "kyc_submitted_at": FIXED_NOW.isoformat()})
    ]


def test_upload_paths_keep_extension_and_content_type():
    blobs = FakeBlobStore()
    asyncio.run(_coordinator(blobs, FakeRecordStore()).submit(_draft(), "0xABC"))

    by_slot = {p.split("/")[-1].split("_")[0]: (p, data, ct) for p, data, ct in blobs.puts}
    assert by_slot["aadhaar"][0].endswith(".jpg")
    assert by_slot["aadhaar"][1] == b"aadhaar-bytes"
    assert by_slot["aadhaar"][2] == "image/jpeg"
    assert by_slot["pan"][0].endswith(".png")
    assert f"_{int(FIXED_NOW.timestamp() * 1000)}_" in by_slot["pan"][0]


def test_retry_mints_fresh_paths():
    blobs = FakeBlobStore()
    c = _coordinator(blobs, FakeRecordStore())
    asyncio.run(c.submit(_draft(), "0xABC"))
    asyncio.run(c.submit(_draft(), "0xABC"))
    paths = [p for p, _, _ in blobs.puts]
    assert len(paths) == 4
    assert len(set(paths)) == 4


def test_second_upload_failure_never_writes_record():
    blobs, records = FakeBlobStore(fail_slot="pan"), FakeRecordStore()
    with pytest.raises(UploadFailed) as ei:
        asyncio.run(_coordinator(blobs, records).submit(_draft(), "0xABC"))

    assert ei.value.user_message == "Failed to submit KYC documents. Please try again."
    assert len(blobs.puts) == 1  # the aadhaar upload went through
    assert records.writes == []
    assert records.updates == []


def test_record_write_failure_is_reported_and_skips_status_update():
    records = FakeRecordStore(fail_write=True)
    with pytest.raises(RecordWriteFailed):
        asyncio.run(_coordinator(FakeBlobStore(), records).submit(_draft(), "0xABC"))
    assert records.updates == []


def test_status_update_failure_still_succeeds():
    records = FakeRecordStore(fail_update=True)
    receipt = asyncio.run(_coordinator(FakeBlobStore(), records).submit(_draft(), "0xABC"))
    assert receipt.status_synced is False
    assert len(records.writes) == 1


def test_missing_document_is_a_submission_failure():
    d = _draft()
    d.documents["pan"] = None
    blobs, records = FakeBlobStore(), FakeRecordStore()
    with pytest.raises(SubmissionFailed):
        asyncio.run(_coordinator(blobs, records).submit(d, "0xABC"))
    assert blobs.puts == []
    assert records.writes == []


def test_invalid_draft_is_rejected_before_any_upload():
    d = _draft()
    d.pan_number = "not-a-pan"
    blobs, records = FakeBlobStore(), FakeRecordStore()
    with pytest.raises(SubmissionFailed, match="pan_number"):
        asyncio.run(_coordinator(blobs, records).submit(d, "0xABC"))
    assert blobs.puts == []
    assert records.writes == []


def test_oversized_document_is_rejected_before_any_upload():
    d = _draft()
    d.documents["aadhaar"] = StagedFile(
        blob=FileBlob(data=b"x", content_type="image/jpeg", filename="big.jpg", size=6 * 1024 * 1024),
        preview=None,
    )
    blobs, records = FakeBlobStore(), FakeRecordStore()
    with pytest.raises(SubmissionFailed, match="aadhaar"):
        asyncio.run(_coordinator(blobs, records).submit(d, "0xABC"))
    assert blobs.puts == []
    assert records.writes == []


def test_unexpected_errors_become_submission_failed(monkeypatch):
    def boom(*_a, **_kw):
        raise TypeError("unexpected")

    monkeypatch.setattr(coord_mod, "validate_with_schema", boom)
    with pytest.raises(SubmissionFailed):
        asyncio.run(_coordinator(FakeBlobStore(), FakeRecordStore()).submit(_draft(), "0xABC"))
