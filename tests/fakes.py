"""
Test doubles shared by the test modules.

FakeLedger stands in for EthereumClient: it counts calls, keeps submitted
records in a dict and raises whatever error a test plants on it.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from decimal import Decimal

from gradechain.config import LedgerSettings
from gradechain.db import MemoryStore
from gradechain.ledger.adapter import LedgerClient, SubmitReceipt
from gradechain.schemas import ConfirmationStatus
from gradechain.services import build_services

ACCOUNT = "0x" + "11" * 20
CONTRACT = "0x" + "22" * 20


def ledger_settings(**overrides) -> LedgerSettings:
    values = dict(
        rpc_url="http://node:8545",
        account_address=ACCOUNT,
        contract_address=CONTRACT,
        rpc_timeout=2.0,
        confirm_timeout=2.0,
    )
    values.update(overrides)
    return LedgerSettings(**values)


class FakeLedger(LedgerClient):
    simulated = False

    def __init__(self):
        self.address = ACCOUNT
        self.calls = {"ping": 0, "submit": 0, "get_record": 0, "get_receipt": 0,
                      "get_student_grade_ids": 0, "get_balance": 0}
        self.records: dict[str, dict] = {}
        self.receipts: dict[str, SubmitReceipt] = {}
        self.ping_error = None
        self.submit_error = None
        self.read_error = None
        self.submit_status = ConfirmationStatus.CONFIRMED
        self.ping_delay = 0
        self.submit_delay = 0
        self._n = 0

    async def ping(self) -> int:
        self.calls["ping"] += 1
        if self.ping_delay:
            await asyncio.sleep(self.ping_delay)
        if self.ping_error is not None:
            raise self.ping_error
        return 42

    async def submit(self, record) -> SubmitReceipt:
        self.calls["submit"] += 1
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_error is not None:
            raise self.submit_error
        self._n += 1
        tx_hash = "0x" + f"{self._n + 1000:064x}"
        if self.submit_status != ConfirmationStatus.CONFIRMED:
            return SubmitReceipt(tx_hash, 0, status=self.submit_status)
        grade_id = f"{self._n:064x}"
        self.records[grade_id] = {
            "student_id": record.student_id, "course_id": record.course_id,
            "score": record.score, "semester": record.semester,
            "teacher_id": record.teacher_id, "metadata": record.metadata,
            "timestamp": 1_700_000_000,
        }
        return SubmitReceipt(tx_hash, 100 + self._n, grade_id)

    async def get_record(self, grade_id: str):
        self.calls["get_record"] += 1
        if self.read_error is not None:
            raise self.read_error
        return self.records.get(grade_id)

    async def get_receipt(self, tx_hash: str):
        self.calls["get_receipt"] += 1
        return self.receipts.get(tx_hash)

    async def get_student_grade_ids(self, student_id: str) -> list[str]:
        self.calls["get_student_grade_ids"] += 1
        return [gid for gid, r in self.records.items() if r["student_id"] == student_id]

    async def get_balance(self) -> Decimal:
        self.calls["get_balance"] += 1
        return Decimal("12.5")


def make_services(fake: FakeLedger = None, **overrides):
    """Services over a MemoryStore whose real client is the given fake."""
    settings = ledger_settings(**overrides)
    fake = fake or FakeLedger()
    services = build_services(MemoryStore(), settings,
                              client_factory=lambda s: fake,
                              settings_loader=lambda: settings)
    return services, fake


def actions(store) -> list[str]:
    return [entry["action"] for entry in store.logs]


GRADE = {
    "student_id": "s1",
    "course_id": "c1",
    "score": 85,
    "semester": "2024-1",
    "teacher_id": "t1",
}
