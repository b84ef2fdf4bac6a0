"""
submitter.py - Grade attestation writes.

submit_grade() is the only entry point that writes to the ledger. Each call
  - validates the payload before anything touches the network,
  - runs addGrade through the mode selector (real or simulated),
  - stores exactly one ledger_transactions row,
  - writes exactly one SUBMIT audit entry (OK, SIMULATED or ERROR).

Nothing here retries. A reverted transaction, an unfunded account or an
unknown node error goes back to the caller after being recorded.

attest_grade() is the grade-level flow used by the HTTP layer: reuse a
confirmed attestation whose content still matches, otherwise submit a new
one, then move the grade PENDING -> VERIFIED with a guarded update.
"""
import logging
from typing import Any, Optional

from .audit import AuditLog
from .errors import GradeStateConflict, LedgerError
from .hashing import attested_content, build_metadata, compute_content_hash, utc_now
from .ledger.adapter import SubmitReceipt
from .mode import ModeSelector
from .schemas import (
    AttestOut, AuditKind, AuditOutcome, ConfirmationStatus, GradePayload,
    GradeStatus, LedgerResult,
)

log = logging.getLogger("gradechain.submitter")


def result_from_row(tx: dict) -> LedgerResult:
    return LedgerResult(
        transaction_hash=tx["transaction_hash"],
        block_number=tx["block_number"],
        blockchain_grade_id=tx["blockchain_grade_id"],
        confirmation_status=ConfirmationStatus(tx["status"]),
        simulated=tx["simulated"],
    )


class TransactionSubmitter:
    def __init__(self, store, selector: ModeSelector, audit: AuditLog):
        self.store = store
        self.selector = selector
        self.audit = audit

    def _tx_row(self, record: GradePayload, grade_id: Optional[str], tx_hash: str,
                block_number: int, chain_id: Optional[str], status: ConfirmationStatus,
                simulated: bool) -> dict:
        payload = record.model_dump()
        return {
            "transaction_hash": tx_hash,
            "block_number": block_number,
            "blockchain_grade_id": chain_id,
            "grade_id": grade_id,
            "student_id": record.student_id,
            "course_id": record.course_id,
            "teacher_id": record.teacher_id,
            "payload": payload,
            "content_hash": compute_content_hash(payload),
            "simulated": simulated,
            "status": status.value,
            "confirmed_at": utc_now() if status == ConfirmationStatus.CONFIRMED else None,
        }

    async def submit_grade(self, payload: Any, actor_id: Optional[str] = None,
                           grade_id: Optional[str] = None,
                           ip_address: Optional[str] = None) -> LedgerResult:
        record = GradePayload.parse(payload)

        try:
            receipt, _ = await self.selector.execute(
                AuditKind.SUBMIT, lambda client: client.submit(record),
                actor_id, ip_address, bounded=False)
        except LedgerError as err:
            log.error("grade submission failed student=%s course=%s: %s: %s",
                      record.student_id, record.course_id, err.kind, err)
            if err.tx_hash:
                await self.store.insert_transaction(self._tx_row(
                    record, grade_id, err.tx_hash, 0, None, ConfirmationStatus.FAILED, False))
            await self.audit.record(
                AuditKind.SUBMIT, AuditOutcome.ERROR,
                f"grade={grade_id or '-'} student={record.student_id} course={record.course_id} "
                f"{err.kind}: {err}", actor_id, ip_address)
            raise

        return await self._store_receipt(record, receipt, grade_id, actor_id, ip_address)

    async def _store_receipt(self, record: GradePayload, receipt: SubmitReceipt,
                             grade_id: Optional[str], actor_id: Optional[str],
                             ip_address: Optional[str]) -> LedgerResult:
        await self.store.insert_transaction(self._tx_row(
            record, grade_id, receipt.tx_hash, receipt.block_number, receipt.grade_id,
            receipt.status, receipt.simulated))

        outcome = AuditOutcome.SIMULATED if receipt.simulated else AuditOutcome.OK
        await self.audit.record(
            AuditKind.SUBMIT, outcome,
            f"grade={grade_id or '-'} student={record.student_id} course={record.course_id} "
            f"score={record.score} tx={receipt.tx_hash} id={receipt.grade_id or '-'} "
            f"status={receipt.status.value}", actor_id, ip_address)

        log.info("grade attested tx=%s id=%s status=%s simulated=%s",
                 receipt.tx_hash, receipt.grade_id, receipt.status.value, receipt.simulated)
        return LedgerResult(
            transaction_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            blockchain_grade_id=receipt.grade_id,
            confirmation_status=receipt.status,
            simulated=receipt.simulated,
        )

    async def attest_grade(self, grade: dict, actor_id: Optional[str] = None,
                           ip_address: Optional[str] = None) -> AttestOut:
        if grade["status"] == GradeStatus.REJECTED.value:
            raise GradeStateConflict(grade["id"], grade["status"])

        latest = await self.store.latest_transaction_for_grade(grade["id"])
        already = (latest is not None
                   and latest["status"] == ConfirmationStatus.CONFIRMED.value
                   and latest["content_hash"] == compute_content_hash(grade))
        if already:
            ledger = result_from_row(latest)
            log.info("grade %s already attested tx=%s", grade["id"], ledger.transaction_hash)
        else:
            payload = {
                **attested_content(grade),
                "metadata": build_metadata(GradeStatus.VERIFIED.value, gradeId=grade["id"]),
            }
            ledger = await self.submit_grade(payload, actor_id, grade["id"], ip_address)

        status = GradeStatus(grade["status"])
        if ledger.confirmation_status == ConfirmationStatus.CONFIRMED and status == GradeStatus.PENDING:
            moved = await self.store.transition_grade_status(
                grade["id"], [GradeStatus.PENDING.value], GradeStatus.VERIFIED.value)
            if not moved:
                current = await self.store.get_grade(grade["id"])
                raise GradeStateConflict(grade["id"], current["status"] if current else "missing")
            status = GradeStatus.VERIFIED

        return AttestOut(grade_id=grade["id"], grade_status=status,
                         already_attested=already, ledger=ledger)
