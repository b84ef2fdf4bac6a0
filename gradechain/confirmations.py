"""
confirmations.py - Follow-up on real transactions left PENDING.

A submission stays PENDING when the node did not include it within
LEDGER_CONFIRM_TIMEOUT or when the receipt carried no GradeAdded event.
Runs as an asyncio background task. Every CONFIRM_POLL_SECONDS:
  1. Skip if mock mode is forced or the node is unreachable
  2. Pull real PENDING rows from ledger_transactions
  3. Re-read each receipt
  4. Event found    -> CONFIRMED with the grade id, grade PENDING -> VERIFIED
  5. Status 0       -> FAILED
  6. Anything else  -> left PENDING for the next round
"""
import asyncio
import logging

from .connection import ConnectionManager
from .schemas import AuditKind, AuditOutcome, ConfirmationStatus, GradeStatus

log = logging.getLogger("gradechain.confirmations")


async def confirmation_worker(store, connection: ConnectionManager):
    """Main confirmation loop. Runs until cancelled."""
    log.info("confirmation worker started: interval=%ds",
             connection.settings.confirm_poll_seconds)
    while True:
        await asyncio.sleep(connection.settings.confirm_poll_seconds)
        try:
            await refresh_pending(store, connection)
        except Exception as exc:
            log.error("confirmation worker error: %s", exc)


async def refresh_pending(store, connection: ConnectionManager, limit: int = 100) -> dict:
    """One follow-up round. Returns counts per outcome."""
    counts = {"confirmed": 0, "failed": 0, "pending": 0}
    if connection.state.forced_mock:
        return counts

    pending = await store.pending_transactions(limit)
    if not pending or not await connection.check_connection():
        counts["pending"] = len(pending)
        return counts

    client = connection.client()
    for tx in pending:
        tx_hash = tx["transaction_hash"]
        receipt = await client.get_receipt(tx_hash)

        if receipt is not None and receipt.status == ConfirmationStatus.CONFIRMED:
            if await store.confirm_transaction(tx_hash, receipt.block_number, receipt.grade_id):
                counts["confirmed"] += 1
                if tx["grade_id"]:
                    await store.transition_grade_status(
                        tx["grade_id"], [GradeStatus.PENDING.value], GradeStatus.VERIFIED.value)
                await connection.audit.record(
                    AuditKind.SUBMIT, AuditOutcome.OK,
                    f"grade={tx['grade_id'] or '-'} tx={tx_hash} confirmed "
                    f"block={receipt.block_number} id={receipt.grade_id}")
                log.info("confirmed tx=%s block=%s id=%s",
                         tx_hash, receipt.block_number, receipt.grade_id)
        elif receipt is not None and receipt.status == ConfirmationStatus.FAILED:
            if await store.fail_transaction(tx_hash):
                counts["failed"] += 1
                await connection.audit.record(
                    AuditKind.SUBMIT, AuditOutcome.ERROR,
                    f"grade={tx['grade_id'] or '-'} tx={tx_hash} reverted")
                log.warning("tx=%s reverted, marked FAILED", tx_hash)
        else:
            counts["pending"] += 1

    if counts["confirmed"] or counts["failed"]:
        log.info("confirmation round: %s", counts)
    return counts
