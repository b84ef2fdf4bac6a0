"""
verifier.py - Cross-check a stored attestation against expected grade content.

A missing or different record is a result (VERIFICATION_FAILED), never an
exception. Identifiers that are not 64 hex characters are unknown, and an
unknown id never produces a compatibility entry.

Ids minted by the simulation are checked against the simulation even when
the node is reachable; real ids go through the mode selector like any other
ledger read.
"""
import logging
from typing import Any, Optional

from pydantic import ValidationError

from .audit import AuditLog
from .errors import InvalidInput
from .hashing import ATTESTED_FIELDS, attested_content
from .ledger.adapter import normalize_grade_id
from .mode import ModeSelector
from .schemas import AuditKind, AuditOutcome, ExpectedGrade, VerificationResult, VerificationStatus

log = logging.getLogger("gradechain.verifier")


def compare_fields(expected: dict, stored: dict) -> list[str]:
    """Names of attested fields whose values differ."""
    want, got = attested_content(expected), attested_content(stored)
    return [f for f in ATTESTED_FIELDS if want[f] != got[f]]


class RecordVerifier:
    def __init__(self, store, selector: ModeSelector, audit: AuditLog):
        self.store = store
        self.selector = selector
        self.audit = audit

    async def verify_grade(self, blockchain_grade_id: str, expected: Any,
                           actor_id: Optional[str] = None,
                           ip_address: Optional[str] = None) -> VerificationResult:
        try:
            expected = ExpectedGrade.model_validate(expected)
        except ValidationError as exc:
            raise InvalidInput(f"invalid expected grade: {exc.error_count()} error(s)") from exc

        gid = normalize_grade_id(blockchain_grade_id)
        stored, simulated = None, False
        if gid is not None:
            known = await self.store.get_transaction_by_chain_id(gid)
            if known is not None and known["simulated"]:
                client = self.selector.simulated
                stored = await client.get_record(gid)
            else:
                stored, client = await self.selector.execute(
                    AuditKind.VERIFY, lambda c: c.get_record(gid), actor_id, ip_address)
            simulated = client.simulated

        if stored is None:
            result = VerificationResult(
                blockchain_grade_id=gid or blockchain_grade_id, exists=False, matches=False,
                status=VerificationStatus.VERIFICATION_FAILED, simulated=simulated)
        else:
            mismatched = compare_fields(expected.model_dump(), stored)
            result = VerificationResult(
                blockchain_grade_id=gid, exists=True, matches=not mismatched,
                status=(VerificationStatus.VERIFICATION_FAILED if mismatched
                        else VerificationStatus.VERIFIED),
                simulated=simulated, stored_record=stored, mismatched_fields=mismatched)

        detail = (f"id={result.blockchain_grade_id} exists={result.exists} "
                  f"matches={result.matches}")
        if result.mismatched_fields:
            detail += f" mismatched={','.join(result.mismatched_fields)}"
        await self.audit.record(
            AuditKind.VERIFY, AuditOutcome.SIMULATED if simulated else AuditOutcome.OK,
            detail, actor_id, ip_address)
        log.info("verification %s", detail)
        return result

    async def verify_stored_grade(self, grade: dict, actor_id: Optional[str] = None,
                                  ip_address: Optional[str] = None) -> Optional[VerificationResult]:
        """Verify a grade's latest attestation against its current content.

        Returns None when the grade has no attestation with a ledger id yet.
        """
        tx = await self.store.latest_transaction_for_grade(grade["id"])
        if tx is None or not tx["blockchain_grade_id"]:
            return None
        return await self.verify_grade(tx["blockchain_grade_id"], attested_content(grade),
                                       actor_id, ip_address)
