"""
Unit tests for the PENDING transaction follow-up.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

from gradechain.confirmations import refresh_pending
from gradechain.ledger.adapter import SubmitReceipt
from gradechain.schemas import ConfirmationStatus

from fakes import GRADE, make_services


def _pending_attestation(services, fake):
    fake.submit_status = ConfirmationStatus.PENDING
    asyncio.run(services.store.insert_grade({"id": "g1", **GRADE}))
    grade = asyncio.run(services.store.get_grade("g1"))
    out = asyncio.run(services.submitter.attest_grade(grade, "t1"))
    assert out.grade_status == "PENDING"
    return out.ledger.transaction_hash


def test_confirmed_receipt_completes_attestation():
    services, fake = make_services()
    tx_hash = _pending_attestation(services, fake)
    fake.receipts[tx_hash] = SubmitReceipt(tx_hash, 55, "cc" * 32)

    counts = asyncio.run(refresh_pending(services.store, services.connection))
    assert counts == {"confirmed": 1, "failed": 0, "pending": 0}

    row = asyncio.run(services.store.get_transaction_by_hash(tx_hash))
    assert row["status"] == "CONFIRMED"
    assert row["block_number"] == 55
    assert row["blockchain_grade_id"] == "cc" * 32
    assert asyncio.run(services.store.get_grade("g1"))["status"] == "VERIFIED"


def test_reverted_receipt_marks_failed():
    services, fake = make_services()
    tx_hash = _pending_attestation(services, fake)
    fake.receipts[tx_hash] = SubmitReceipt(tx_hash, 55, status=ConfirmationStatus.FAILED)

    counts = asyncio.run(refresh_pending(services.store, services.connection))
    assert counts["failed"] == 1
    assert asyncio.run(services.store.get_transaction_by_hash(tx_hash))["status"] == "FAILED"
    assert asyncio.run(services.store.get_grade("g1"))["status"] == "PENDING"


def test_unmined_transaction_stays_pending():
    services, fake = make_services()
    _pending_attestation(services, fake)
    counts = asyncio.run(refresh_pending(services.store, services.connection))
    assert counts == {"confirmed": 0, "failed": 0, "pending": 1}


def test_skipped_when_node_is_down():
    services, fake = make_services()
    _pending_attestation(services, fake)
    fake.ping_error = ConnectionRefusedError(111, "Connection refused")
    counts = asyncio.run(refresh_pending(services.store, services.connection))
    assert counts["pending"] == 1
    assert fake.calls["get_receipt"] == 0


def test_skipped_in_forced_mock_mode():
    services, fake = make_services(force_mock_mode=True)
    asyncio.run(refresh_pending(services.store, services.connection))
    assert fake.calls["ping"] == 0


def test_confirmed_rows_are_immutable():
    services, fake = make_services()
    tx_hash = _pending_attestation(services, fake)
    fake.receipts[tx_hash] = SubmitReceipt(tx_hash, 55, "cc" * 32)
    asyncio.run(refresh_pending(services.store, services.connection))

    assert asyncio.run(services.store.confirm_transaction(tx_hash, 99, "dd" * 32)) is False
    assert asyncio.run(services.store.fail_transaction(tx_hash)) is False
    row = asyncio.run(services.store.get_transaction_by_hash(tx_hash))
    assert (row["status"], row["block_number"]) == ("CONFIRMED", 55)
