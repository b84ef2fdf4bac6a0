"""
ledger/simulated.py - Local simulation of the GradeRecord contract.

Used when mock mode is forced, when the node is unreachable and when the node
cannot run the contract. Identifiers have the same shape as real ones, so
nothing downstream needs to know which path produced them:

  blockchain grade id = keccak256(abi.encodePacked(fields..., metadata, ns, seq))
  transaction hash    = 0x + keccak256(grade id, "tx")

The simulation keeps no state of its own: simulated attestations are rows in
ledger_transactions flagged simulated, and reads go back to the store.
"""
import itertools
import logging
import time
from decimal import Decimal
from typing import Optional

from web3 import Web3

from ..schemas import ConfirmationStatus, GradePayload
from .adapter import LedgerClient, SubmitReceipt

log = logging.getLogger("gradechain.ledger.simulated")

SIMULATED_BALANCE = Decimal("1000.0")

_sequence = itertools.count(1)


def derive_identifiers(record: GradePayload, nonce_ns: int, seq: int) -> tuple[str, str, int]:
    """Return (tx_hash, grade_id, block_number) for a simulated submission."""
    grade_id = Web3.solidity_keccak(
        ["string", "string", "uint256", "string", "string", "string", "uint256", "uint256"],
        [*record.contract_args(), nonce_ns, seq],
    ).hex()
    grade_id = grade_id[2:] if grade_id.startswith("0x") else grade_id
    tx_hash = Web3.solidity_keccak(["bytes32", "string"], [bytes.fromhex(grade_id), "tx"]).hex()
    tx_hash = tx_hash if tx_hash.startswith("0x") else "0x" + tx_hash
    block_number = int(grade_id[:8], 16) % 10_000_000 + 1
    return tx_hash.lower(), grade_id.lower(), block_number


class SimulatedClient(LedgerClient):
    simulated = True

    def __init__(self, store):
        self.store = store

    async def ping(self) -> int:
        return 0

    async def submit(self, record: GradePayload) -> SubmitReceipt:
        tx_hash, grade_id, block = derive_identifiers(record, time.time_ns(), next(_sequence))
        log.info("simulated addGrade student=%s course=%s grade_id=%s",
                 record.student_id, record.course_id, grade_id[:16])
        return SubmitReceipt(tx_hash, block, grade_id, ConfirmationStatus.CONFIRMED, simulated=True)

    async def get_record(self, grade_id: str) -> Optional[dict]:
        tx = await self.store.get_transaction_by_chain_id(grade_id)
        if tx is None or not tx["simulated"]:
            return None
        payload = tx["payload"]
        return {
            "student_id": payload["student_id"],
            "course_id": payload["course_id"],
            "score": int(payload["score"]),
            "semester": payload.get("semester", ""),
            "teacher_id": payload.get("teacher_id", ""),
            "metadata": payload.get("metadata", ""),
            "timestamp": int(tx["submitted_at"].timestamp()),
        }

    async def get_receipt(self, tx_hash: str) -> Optional[SubmitReceipt]:
        tx = await self.store.get_transaction_by_hash(tx_hash)
        if tx is None or not tx["simulated"]:
            return None
        return SubmitReceipt(tx["transaction_hash"], tx["block_number"], tx["blockchain_grade_id"],
                             ConfirmationStatus(tx["status"]), simulated=True)

    async def get_student_grade_ids(self, student_id: str) -> list[str]:
        return await self.store.chain_ids_for_student(student_id, simulated=True)

    async def get_balance(self) -> Decimal:
        return SIMULATED_BALANCE
