"""
errors.py - Ledger error taxonomy.

Only InvalidInput, InsufficientResources and unclassified failures reach the
HTTP layer. ConnectionUnavailable (and LedgerTimeout) and CompatibilityError
are absorbed by the mode selector, which falls back to simulation.

Every class carries a public_message: the raw node error stays in the log
and the audit trail, clients only see the summary.
"""
import asyncio
import concurrent.futures
from typing import Iterable, Optional

import requests
from web3.exceptions import ProviderConnectionError, TimeExhausted


class LedgerError(Exception):
    """Base class for all ledger integration errors."""
    public_message = "Ledger operation failed"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConnectionUnavailable(LedgerError):
    public_message = "Ledger node unavailable"


class LedgerTimeout(ConnectionUnavailable):
    public_message = "Ledger node did not answer in time"


class CompatibilityError(LedgerError):
    public_message = "Ledger node is incompatible with the deployed contract"


class InvalidInput(LedgerError):
    public_message = "Invalid grade data"


class InsufficientResources(LedgerError):
    public_message = "Signing account has insufficient funds for this transaction"


class TransactionFailed(LedgerError):
    public_message = "Ledger transaction failed"


class GradeStateConflict(Exception):
    """A guarded grade status transition found the row in another state."""

    def __init__(self, grade_id: str, status: str):
        super().__init__(f"grade {grade_id} is {status}")
        self.grade_id = grade_id
        self.status = status


_TIMEOUT_TYPES = (
    TimeExhausted,
    asyncio.TimeoutError,
    concurrent.futures.TimeoutError,
    requests.exceptions.Timeout,
)
_CONNECTION_TYPES = (
    ProviderConnectionError,
    requests.exceptions.ConnectionError,
    ConnectionError,
)
_FUNDS_MARKERS = ("insufficient funds", "sender doesn't have enough funds")


def matches_signature(message: str, signatures: Iterable[str]) -> Optional[str]:
    """Return the first recognised incompatibility signature found in message."""
    lowered = message.lower()
    for sig in signatures:
        if sig and sig.lower() in lowered:
            return sig
    return None


def classify(exc: BaseException, signatures: Iterable[str]) -> LedgerError:
    """Map a raw web3 / transport exception to the ledger taxonomy.

    Order matters: a compatibility signature wins over everything else,
    because nodes report opcode failures through the same RPC error types
    as any other failure.
    """
    if isinstance(exc, LedgerError) and not isinstance(exc, TransactionFailed):
        return exc
    message = str(exc) or type(exc).__name__
    tx_hash = getattr(exc, "tx_hash", None)
    if matches_signature(message, signatures):
        return CompatibilityError(message, tx_hash=tx_hash)
    if isinstance(exc, TransactionFailed):
        return exc
    if any(marker in message.lower() for marker in _FUNDS_MARKERS):
        return InsufficientResources(message, tx_hash=tx_hash)
    if isinstance(exc, _TIMEOUT_TYPES):
        return LedgerTimeout(message, tx_hash=tx_hash)
    if isinstance(exc, _CONNECTION_TYPES):
        return ConnectionUnavailable(message, tx_hash=tx_hash)
    return TransactionFailed(message, tx_hash=tx_hash)
