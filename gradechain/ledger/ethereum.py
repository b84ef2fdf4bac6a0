"""
ledger/ethereum.py - GradeRecord contract client using web3.py.

Connects to the node via JSON-RPC, loads the GradeRecord contract and calls
addGrade(studentId, courseId, score, semester, teacherId, metadata).

The ABI ships with the package (grade_record_abi.json). A deployed.json
({"abi": [...], "address": "0x..."}) at CONTRACT_ABI_PATH overrides it, and
supplies the address when ETHEREUM_CONTRACT_ADDRESS is empty.

With ETHEREUM_PRIVATE_KEY set, transactions are signed locally; otherwise
the node is asked to sign for ETHEREUM_ACCOUNT (unlocked dev accounts).
Submissions from one account are serialised so nonces never collide; the
account lock is held until the executor thread returns, even when the
caller is cancelled. Each RPC is bounded by the provider's request timeout
and the receipt wait by LEDGER_CONFIRM_TIMEOUT. Once a transaction is sent,
a wait that runs out or loses the node leaves it PENDING.

web3 calls are blocking; every one of them runs in the default executor.
"""
import asyncio
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound
from web3.logs import DISCARD
from web3.middleware import ExtraDataToPOAMiddleware

from ..config import LedgerSettings
from ..errors import ConnectionUnavailable, InsufficientResources, TransactionFailed
from ..schemas import ConfirmationStatus, GradePayload
from .adapter import LedgerClient, SubmitReceipt

log = logging.getLogger("gradechain.ledger.ethereum")

BUNDLED_ABI_PATH = Path(__file__).with_name("grade_record_abi.json")

# One submission lock per signing address, shared by every client instance
# so a config reload cannot open a second nonce stream for the same account.
_account_locks: dict[str, asyncio.Lock] = {}


def _account_lock(address: str) -> asyncio.Lock:
    key = address.lower()
    lock = _account_locks.get(key)
    if lock is None:
        lock = _account_locks[key] = asyncio.Lock()
    return lock


def load_contract_abi(settings: LedgerSettings) -> tuple[list, str]:
    """Return (abi, address) for the GradeRecord contract."""
    address = settings.contract_address
    abi = None

    if settings.contract_abi_path:
        path = Path(settings.contract_abi_path)
        if path.exists():
            deployed = json.loads(path.read_text())
            abi = deployed.get("abi")
            if not address:
                address = deployed.get("address", "")
        else:
            log.warning("CONTRACT_ABI_PATH %s not found, using bundled ABI", path)

    if abi is None:
        abi = json.loads(BUNDLED_ABI_PATH.read_text())
    if not address:
        raise ConnectionUnavailable("ETHEREUM_CONTRACT_ADDRESS not configured")
    return abi, address


def _hex(value) -> str:
    """bytes32 / HexBytes / hex str -> lowercase hex without 0x."""
    s = value if isinstance(value, str) else bytes(value).hex()
    s = s.lower()
    return s[2:] if s.startswith("0x") else s


def _tx_hex(value) -> str:
    return "0x" + _hex(value)


class EthereumClient(LedgerClient):
    simulated = False

    def __init__(self, settings: LedgerSettings, w3: Optional[Web3] = None, contract=None):
        self.settings = settings
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(settings.rpc_url,
                                        request_kwargs={"timeout": settings.rpc_timeout}))
            if settings.poa:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3

        if contract is None:
            abi, address = load_contract_abi(settings)
            contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        self.contract = contract

        self._account = w3.eth.account.from_key(settings.private_key) if settings.private_key else None
        if self._account is not None:
            self.address = self._account.address
        else:
            self.address = Web3.to_checksum_address(settings.account_address)

        log.info("ethereum client ready: rpc=%s account=%s signing=%s",
                 settings.rpc_url, self.address, "local" if self._account else "node")

    async def _run(self, fn):
        return await asyncio.get_event_loop().run_in_executor(None, fn)

    async def ping(self) -> int:
        return await self._run(lambda: int(self.w3.eth.block_number))

    async def submit(self, record: GradePayload) -> SubmitReceipt:
        fn = self.contract.functions.addGrade(*record.contract_args())
        async with _account_lock(self.address):
            work = asyncio.get_event_loop().run_in_executor(
                None, lambda: self._submit_blocking(fn, record))
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                # The executor thread cannot be stopped; the nonce stays ours until it returns.
                await asyncio.wait([work])
                if not work.cancelled() and work.exception() is None:
                    log.warning("addGrade caller cancelled after send tx=%s, left %s",
                                work.result().tx_hash, work.result().status.value)
                raise

    def _submit_blocking(self, fn, record: GradePayload) -> SubmitReceipt:
        base_tx = {"from": self.address}

        estimate = int(fn.estimate_gas(base_tx))
        gas = min(int(estimate * self.settings.gas_margin), self.settings.gas_limit)
        if gas < estimate:
            raise TransactionFailed(
                f"gas estimate {estimate} exceeds ETHEREUM_GAS_LIMIT {self.settings.gas_limit}")

        gas_price = int(self.w3.eth.gas_price)
        balance = int(self.w3.eth.get_balance(self.address))
        required = gas * gas_price
        if balance < required:
            raise InsufficientResources(
                f"account {self.address} balance {balance} wei < {required} wei "
                f"(gas={gas} gasPrice={gas_price})")

        tx_params = {**base_tx, "gas": gas, "gasPrice": gas_price}
        if self._account is not None:
            tx_params["nonce"] = self.w3.eth.get_transaction_count(self.address, "pending")
            signed = self._account.sign_transaction(fn.build_transaction(tx_params))
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        else:
            tx_hash = fn.transact(tx_params)

        tx_hex = _tx_hex(tx_hash)
        log.info("addGrade sent tx=%s student=%s course=%s gas=%d (estimate=%d)",
                 tx_hex, record.student_id, record.course_id, gas, estimate)

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.confirm_timeout)
        except TimeExhausted:
            # Broadcast but not yet included; the confirmation worker picks it up.
            log.warning("addGrade not included after %ss tx=%s, leaving PENDING",
                        self.settings.confirm_timeout, tx_hex)
            return SubmitReceipt(tx_hex, 0, status=ConfirmationStatus.PENDING)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            log.warning("receipt wait lost the node after send tx=%s, leaving PENDING: %s",
                        tx_hex, exc)
            return SubmitReceipt(tx_hex, 0, status=ConfirmationStatus.PENDING)
        result = self._parse_receipt(receipt, tx_hex)
        if result.status == ConfirmationStatus.FAILED:
            raise TransactionFailed(f"transaction reverted: {tx_hex}", tx_hash=tx_hex)
        return result

    def _parse_receipt(self, receipt, tx_hex: str) -> SubmitReceipt:
        block = int(receipt["blockNumber"])
        if int(receipt["status"]) != 1:
            log.warning("addGrade reverted tx=%s block=%s gasUsed=%s",
                        tx_hex, block, receipt.get("gasUsed"))
            return SubmitReceipt(tx_hex, block, status=ConfirmationStatus.FAILED)

        events = self.contract.events.GradeAdded().process_receipt(receipt, errors=DISCARD)
        if not events:
            log.warning("GradeAdded event missing in tx=%s block=%s, leaving PENDING", tx_hex, block)
            return SubmitReceipt(tx_hex, block, status=ConfirmationStatus.PENDING)

        grade_id = _hex(events[0]["args"]["gradeId"])
        log.info("grade recorded tx=%s block=%s grade_id=%s", tx_hex, block, grade_id)
        return SubmitReceipt(tx_hex, block, grade_id, ConfirmationStatus.CONFIRMED)

    async def get_receipt(self, tx_hash: str) -> Optional[SubmitReceipt]:
        def read():
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None
            return self._parse_receipt(receipt, _tx_hex(tx_hash))
        return await self._run(read)

    async def get_record(self, grade_id: str) -> Optional[dict]:
        gid = bytes.fromhex(grade_id)

        def read():
            if not self.contract.functions.verifyGrade(gid).call():
                return None
            student_id, course_id, score, semester, ts, teacher_id, metadata = \
                self.contract.functions.getGrade(gid).call()
            return {
                "student_id": student_id,
                "course_id": course_id,
                "score": int(score),
                "semester": semester,
                "teacher_id": teacher_id,
                "metadata": metadata,
                "timestamp": int(ts),
            }
        return await self._run(read)

    async def get_student_grade_ids(self, student_id: str) -> list[str]:
        ids = await self._run(
            lambda: self.contract.functions.getStudentGradeIds(student_id).call())
        return [_hex(i) for i in ids]

    async def get_balance(self) -> Decimal:
        wei = await self._run(lambda: self.w3.eth.get_balance(self.address))
        return Decimal(str(Web3.from_wei(wei, "ether")))
