# services/ingestion/staging.py
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Protocol

from PIL import Image, ImageOps
from starlette.concurrency import run_in_threadpool

from services.validation.rules import DOCUMENT_LABELS, validate_file
from services.workflow.domain import FileBlob, StagedFile, SubmissionDraft

logger = logging.getLogger(__name__)


class Previewer(Protocol):
    def render(self, blob: FileBlob) -> str: ...


def to_data_uri(content_type: str, data: bytes) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class DataUriPreviewer:
    """The raw bytes as a data URI, no decoding."""

    def render(self, blob: FileBlob) -> str:
        return to_data_uri(blob.content_type, blob.data)


class ThumbnailPreviewer:
    def __init__(self, max_edge: int = 480, quality: int = 80) -> None:
        self.max_edge = max_edge
        self.quality = quality

    def render(self, blob: FileBlob) -> str:
        img = Image.open(BytesIO(blob.data))
        img = ImageOps.exif_transpose(img)
        img = img.convert("RGB")
        img.thumbnail((self.max_edge, self.max_edge))

        buf = BytesIO()
        img.save(buf, format="JPEG", quality=self.quality)
        return to_data_uri("image/jpeg", buf.getvalue())


@dataclass(frozen=True)
class StageResult:
    staged: Optional[StagedFile] = None
    error: Optional[str] = None
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class FileStager:
    def __init__(self, previewer: Optional[Previewer] = None) -> None:
        self.previewer = previewer or ThumbnailPreviewer()

    def _preview(self, blob: FileBlob) -> Optional[str]:
        try:
            return self.previewer.render(blob)
        except Exception:
            # Preview is cosmetic; the original bytes are what gets uploaded.
            logger.warning("preview generation failed for %s", blob.filename, exc_info=True)
            return None

    async def stage(self, draft: SubmissionDraft, slot: str, blob: FileBlob) -> StageResult:
        if slot not in DOCUMENT_LABELS:
            raise KeyError(f"unknown document slot: {slot}")

        error = validate_file(blob, DOCUMENT_LABELS[slot])
        if error:
            return StageResult(error=error)

        draft.revisions[slot] += 1
        revision = draft.revisions[slot]

        preview = await run_in_threadpool(self._preview, blob)

        staged = StagedFile(blob=blob, preview=preview)
        if draft.revisions[slot] != revision:
            logger.debug("discarding superseded staging of %s for slot %s", blob.filename, slot)
            return StageResult(staged=staged, superseded=True)

        draft.documents[slot] = staged
        return StageResult(staged=staged)
