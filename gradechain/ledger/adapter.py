"""
ledger/adapter.py - Ledger client interface.

Callers hold a LedgerClient without knowing whether it is the real
EthereumClient or the SimulatedClient. The mode selector picks one per call;
nothing else branches on a mock flag.

Identifier shapes (identical for both variants):
  transaction hash     - "0x" + 64 lowercase hex
  blockchain grade id  - 64 lowercase hex (bytes32, no prefix)
"""
import re
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from ..schemas import ConfirmationStatus, GradePayload

_GRADE_ID_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{64})$")


def normalize_grade_id(value: Optional[str]) -> Optional[str]:
    """Return the canonical 64-hex form of a grade id, or None if malformed."""
    if not value:
        return None
    m = _GRADE_ID_RE.match(value.strip())
    return m.group(1).lower() if m else None


class SubmitReceipt:
    __slots__ = ("tx_hash", "block_number", "grade_id", "status", "simulated")

    def __init__(self, tx_hash: str, block_number: int,
                 grade_id: Optional[str] = None,
                 status: ConfirmationStatus = ConfirmationStatus.CONFIRMED,
                 simulated: bool = False):
        self.tx_hash = tx_hash
        self.block_number = block_number
        self.grade_id = grade_id
        self.status = status
        self.simulated = simulated

    def __repr__(self) -> str:
        return (f"<SubmitReceipt tx={self.tx_hash[:14]} block={self.block_number} "
                f"status={self.status.value} simulated={self.simulated}>")


class LedgerClient(ABC):
    """Read/write access to the GradeRecord contract."""

    simulated: bool = False

    @abstractmethod
    async def ping(self) -> int:
        """Liveness probe. Returns the current block height."""

    @abstractmethod
    async def submit(self, record: GradePayload) -> SubmitReceipt:
        """Write a grade record and wait for inclusion."""

    @abstractmethod
    async def get_record(self, grade_id: str) -> Optional[dict]:
        """Stored record for a normalised grade id, or None if absent."""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[SubmitReceipt]:
        """Re-read the inclusion receipt of a submitted transaction."""

    @abstractmethod
    async def get_student_grade_ids(self, student_id: str) -> list[str]:
        """All grade ids recorded for a student."""

    @abstractmethod
    async def get_balance(self) -> Decimal:
        """Signing account balance in ether."""
