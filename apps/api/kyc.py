from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import APIRouter, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, ConfigDict

from services.ingestion.staging import FileStager
from services.normalization.normalize import format_aadhaar_number
from services.submission.coordinator import SubmissionCoordinator
from services.workflow.domain import DOCUMENT_SLOTS, INFO_FIELDS, FileBlob
from services.workflow.state_machine import KYCWorkflow, Outcome, Transition

logger = logging.getLogger(__name__)


class CreateSession(BaseModel):
    owner_id: str


class FieldUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    aadhaar_number: Optional[str] = None
    pan_number: Optional[str] = None
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Optional[str] = None


def _render_state(session_id: str, wf: KYCWorkflow, completion: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    draft = wf.draft
    fields = {name: getattr(draft, name) for name in INFO_FIELDS}
    fields["aadhaar_number"] = format_aadhaar_number(draft.aadhaar_number)
    fields["pan_number"] = draft.pan_number.upper()

    documents: Dict[str, Any] = {}
    for slot in DOCUMENT_SLOTS:
        staged = draft.documents.get(slot)
        documents[slot] = None if staged is None else {
            "filename": staged.blob.filename,
            "content_type": staged.blob.content_type,
            "size": staged.blob.size,
            "preview": staged.preview,
        }

    return {
        "session_id": session_id,
        "owner_id": wf.owner_id,
        "step": int(wf.step),
        "step_name": wf.step.name.lower(),
        "busy": wf.busy,
        "fields": fields,
        "errors": dict(wf.errors),
        "documents": documents,
        "warnings": list(wf.warnings),
        "submission": completion,
    }


def create_kyc_router(*, coordinator: SubmissionCoordinator, stager: FileStager) -> APIRouter:
    router = APIRouter(prefix="/kyc")

    # Each session owns its workflow; nothing is shared between sessions.
    sessions: Dict[str, KYCWorkflow] = {}
    completions: Dict[str, Dict[str, Any]] = {}

    def _get(session_id: str) -> KYCWorkflow:
        wf = sessions.get(session_id)
        if wf is None:
            raise HTTPException(status_code=404, detail="session_not_found")
        return wf

    def _respond(session_id: str, wf: KYCWorkflow, t: Transition) -> Dict[str, Any]:
        if t.outcome is Outcome.BUSY:
            raise HTTPException(status_code=409, detail="busy")
        return {"outcome": t.outcome.value, **_render_state(session_id, wf, completions.get(session_id))}

    @router.post("/sessions", status_code=201)
    def create_session(body: CreateSession):
        owner_id = body.owner_id.strip()
        if not owner_id:
            raise HTTPException(status_code=422, detail="owner_id is required")

        session_id = str(uuid4())

        def on_submitted(info: Dict[str, Any]) -> None:
            completions[session_id] = info
            logger.info("session %s submitted kyc for owner %s", session_id, owner_id)

        wf = KYCWorkflow(
            owner_id=owner_id,
            coordinator=coordinator,
            stager=stager,
            on_submitted=on_submitted,
        )
        sessions[session_id] = wf
        return _render_state(session_id, wf, None)

    @router.get("/sessions/{session_id}")
    def get_session(session_id: str):
        wf = _get(session_id)
        return _render_state(session_id, wf, completions.get(session_id))

    @router.patch("/sessions/{session_id}/fields")
    def update_fields(session_id: str, body: FieldUpdate):
        wf = _get(session_id)
        t = None
        for name, value in body.model_dump(exclude_unset=True).items():
            t = wf.set_field(name, value or "")
            if t.outcome in (Outcome.BUSY, Outcome.TERMINAL):
                break
        if t is None:
            return {"outcome": Outcome.UPDATED.value, **_render_state(session_id, wf, completions.get(session_id))}
        return _respond(session_id, wf, t)

    @router.put("/sessions/{session_id}/documents/{slot}")
    async def stage_document(session_id: str, slot: str, file: UploadFile = File(...)):
        wf = _get(session_id)
        if slot not in DOCUMENT_SLOTS:
            raise HTTPException(status_code=404, detail="slot_not_found")

        blob = FileBlob(
            data=await file.read(),
            content_type=file.content_type or "",
            filename=file.filename or "",
        )
        t = await wf.stage_file(slot, blob)
        if t.outcome is Outcome.BLOCKED:
            raise HTTPException(status_code=422, detail=t.errors.get(slot))
        return _respond(session_id, wf, t)

    @router.post("/sessions/{session_id}/advance")
    async def advance(session_id: str):
        wf = _get(session_id)
        return _respond(session_id, wf, await wf.advance())

    @router.post("/sessions/{session_id}/retreat")
    def retreat(session_id: str):
        wf = _get(session_id)
        return _respond(session_id, wf, wf.retreat())

    @router.delete("/sessions/{session_id}", status_code=204)
    def dismiss(session_id: str):
        wf = _get(session_id)
        if wf.busy:
            raise HTTPException(status_code=409, detail="busy")
        sessions.pop(session_id, None)
        completions.pop(session_id, None)
        return Response(status_code=204)

    return router
