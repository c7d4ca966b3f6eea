# services/workflow/state_machine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional

from services.ingestion.staging import FileStager, StageResult
from services.submission.coordinator import SubmissionCoordinator, SubmitError
from services.validation.rules import (
    clear_field_error,
    validate_documents_step,
    validate_info_step,
)
from services.workflow.domain import (
    INFO_FIELDS,
    FieldErrors,
    FileBlob,
    SubmissionDraft,
    SubmissionReceipt,
)

logger = logging.getLogger(__name__)

SUBMIT_ERROR_KEY = "submit"


class Step(IntEnum):
    INFORMATION = 1
    DOCUMENTS = 2
    CONFIRMATION = 3


class Outcome(str, Enum):
    ADVANCED = "advanced"
    RETREATED = "retreated"
    UPDATED = "updated"
    BLOCKED = "blocked"
    BUSY = "busy"
    FAILED = "failed"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Transition:
    outcome: Outcome
    step: Step
    errors: FieldErrors = field(default_factory=dict)

    @property
    def busy(self) -> bool:
        return self.outcome is Outcome.BUSY


CompletionCallback = Callable[[Dict[str, Any]], None]


class KYCWorkflow:
    """
    Information -> Documents -> Confirmation.

    Owns one draft for its lifetime. While a submission is in flight every
    mutating call is rejected with Outcome.BUSY.
    """

    def __init__(
        self,
        *,
        owner_id: str,
        coordinator: SubmissionCoordinator,
        stager: Optional[FileStager] = None,
        on_submitted: Optional[CompletionCallback] = None,
    ) -> None:
        self.owner_id = owner_id
        self.coordinator = coordinator
        self.stager = stager or FileStager()
        self.on_submitted = on_submitted

        self.draft = SubmissionDraft()
        self.errors: FieldErrors = {}
        self.step = Step.INFORMATION
        self.busy = False
        self.receipt: Optional[SubmissionReceipt] = None
        self.warnings: List[str] = []

    def _result(self, outcome: Outcome) -> Transition:
        return Transition(outcome=outcome, step=self.step, errors=dict(self.errors))

    # --- draft mutation ---

    def set_field(self, name: str, value: str) -> Transition:
        if name not in INFO_FIELDS:
            raise KeyError(f"unknown field: {name}")
        if self.busy:
            return self._result(Outcome.BUSY)
        if self.step is Step.CONFIRMATION:
            return self._result(Outcome.TERMINAL)

        setattr(self.draft, name, value if value is not None else "")
        self.errors = clear_field_error(self.errors, name)
        return self._result(Outcome.UPDATED)

    async def stage_file(self, slot: str, blob: FileBlob) -> Transition:
        if self.busy:
            return self._result(Outcome.BUSY)
        if self.step is Step.CONFIRMATION:
            return self._result(Outcome.TERMINAL)

        res: StageResult = await self.stager.stage(self.draft, slot, blob)
        if res.error:
            self.errors = {**self.errors, slot: res.error}
            return self._result(Outcome.BLOCKED)

        if res.superseded:
            # dropped: a newer staging or a submission started while the preview was decoding
            if self.busy:
                return self._result(Outcome.BUSY)
            if self.step is Step.CONFIRMATION:
                return self._result(Outcome.TERMINAL)
            return self._result(Outcome.UPDATED)

        self.errors = clear_field_error(self.errors, slot)
        return self._result(Outcome.UPDATED)

    # --- transitions ---

    async def advance(self) -> Transition:
        if self.busy:
            return self._result(Outcome.BUSY)

        if self.step is Step.INFORMATION:
            self.errors = validate_info_step(self.draft)
            if self.errors:
                return self._result(Outcome.BLOCKED)
            self.step = Step.DOCUMENTS
            return self._result(Outcome.ADVANCED)

        if self.step is Step.DOCUMENTS:
            self.errors = validate_documents_step(self.draft)
            if self.errors:
                return self._result(Outcome.BLOCKED)
            return await self._submit()

        return self._result(Outcome.TERMINAL)

    def retreat(self) -> Transition:
        if self.busy:
            return self._result(Outcome.BUSY)
        if self.step is Step.DOCUMENTS:
            self.step = Step.INFORMATION
            return self._result(Outcome.RETREATED)
        if self.step is Step.CONFIRMATION:
            return self._result(Outcome.TERMINAL)
        return self._result(Outcome.BLOCKED)

    async def _submit(self) -> Transition:
        self.busy = True
        # the files being uploaded are the ones that stay on the draft
        self.draft.invalidate_stagings()
        try:
            receipt = await self.coordinator.submit(self.draft, self.owner_id)
        except SubmitError as e:
            # Draft and staged files stay as they are so the user can resubmit.
            self.errors = {SUBMIT_ERROR_KEY: e.user_message}
            return self._result(Outcome.FAILED)
        finally:
            self.busy = False

        self.receipt = receipt
        if not receipt.status_synced:
            self.warnings.append("Verification submitted, but your profile status may take a while to update.")
        self.step = Step.CONFIRMATION
        self._notify(receipt)
        return self._result(Outcome.ADVANCED)

    def _notify(self, receipt: SubmissionReceipt) -> None:
        if self.on_submitted is None:
            return
        info = {
            "status": receipt.record.status.value,
            "submitted_at": receipt.record.submitted_at,
        }
        try:
            self.on_submitted(info)
        except Exception:
            # The record is already committed; a broken listener cannot undo it.
            logger.exception("completion callback failed for owner %s", self.owner_id)
