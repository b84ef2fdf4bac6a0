"""
db.py - Data access layer.

Tables (see models.py):
  grades              - authoritative grade records
  ledger_transactions - attestation references, real and simulated
  system_logs         - append-only audit trail

Two stores with the same async interface:
  PostgresStore - asyncpg pool, raw SQL; the DDL is compiled from models.py
  MemoryStore   - in-process dicts, for local runs and tests

A store is created once at startup (open_store) and passed to every
component; nothing in the package holds a module-level connection.
"""
import json
import logging
from datetime import datetime
from typing import Iterable, Optional

import asyncpg
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

from .hashing import utc_now
from .models import Base
from .schemas import ConfirmationStatus

log = logging.getLogger("gradechain.db")

_JSON_COLUMNS = ("metadata", "payload")


def schema_statements() -> list[str]:
    """CREATE TABLE / CREATE INDEX statements for every model, in FK order."""
    dialect = postgresql.dialect()
    stmts = []
    for table in Base.metadata.sorted_tables:
        stmts.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda i: i.name):
            stmts.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)).strip())
    return stmts


def _row(record) -> Optional[dict]:
    if record is None:
        return None
    d = dict(record)
    for col in _JSON_COLUMNS:
        if d.get(col) is not None and isinstance(d[col], str):
            d[col] = json.loads(d[col])
    return d


def _json(value):
    return json.dumps(value) if value is not None else None


#  PostgreSQL

class PostgresStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @classmethod
    async def connect(cls, dsn: str, min_size: int = 2, max_size: int = 10) -> "PostgresStore":
        pool = await asyncpg.create_pool(dsn, min_size=min_size, max_size=max_size)
        return cls(pool)

    @property
    def backend(self) -> str:
        return "postgres"

    async def init(self):
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                for stmt in schema_statements():
                    await conn.execute(stmt)
        log.info("database schema initialised")

    async def close(self):
        await self._pool.close()

    # Grades

    async def insert_grade(self, grade: dict) -> dict:
        now = utc_now()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO grades
                  (id, student_id, course_id, teacher_id, score, semester,
                   status, metadata, created_at, updated_at)
                VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$9)
                RETURNING *
            """,
                grade["id"], grade["student_id"], grade["course_id"], grade["teacher_id"],
                grade["score"], grade.get("semester", ""),
                grade.get("status", "PENDING"), _json(grade.get("metadata")), now,
            )
        return _row(row)

    async def get_grade(self, grade_id: str) -> Optional[dict]:
        async with self._pool.acquire() as conn:
            return _row(await conn.fetchrow("SELECT * FROM grades WHERE id=$1", grade_id))

    async def transition_grade_status(self, grade_id: str, from_statuses: Iterable[str],
                                      to_status: str) -> bool:
        """Row-level guarded update. Returns False if the grade was not in from_statuses."""
        async with self._pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE grades SET status=$2, updated_at=$4
                WHERE id=$1 AND status = ANY($3::text[])
            """, grade_id, to_status, list(from_statuses), utc_now())
        return result.endswith(" 1")

    # Ledger transactions

    async def insert_transaction(self, tx: dict) -> dict:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO ledger_transactions
                  (transaction_hash, block_number, blockchain_grade_id, grade_id,
                   student_id, course_id, teacher_id, payload, content_hash,
                   simulated, status, submitted_at, confirmed_at)
                VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13)
                RETURNING *
            """,
                tx["transaction_hash"], tx["block_number"], tx.get("blockchain_grade_id"),
                tx.get("grade_id"), tx["student_id"], tx["course_id"], tx["teacher_id"],
                _json(tx["payload"]), tx["content_hash"], tx["simulated"], tx["status"],
                tx.get("submitted_at") or utc_now(), tx.get("confirmed_at"),
            )
        return _row(row)

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[dict]:
        async with self._pool.acquire() as conn:
            return _row(await conn.fetchrow(
                "SELECT * FROM ledger_transactions WHERE transaction_hash=$1", tx_hash))

    async def get_transaction_by_chain_id(self, chain_id: str) -> Optional[dict]:
        async with self._pool.acquire() as conn:
            return _row(await conn.fetchrow("""
                SELECT * FROM ledger_transactions WHERE blockchain_grade_id=$1
                ORDER BY submitted_at DESC LIMIT 1
            """, chain_id))

    async def latest_transaction_for_grade(self, grade_id: str) -> Optional[dict]:
        async with self._pool.acquire() as conn:
            return _row(await conn.fetchrow("""
                SELECT * FROM ledger_transactions WHERE grade_id=$1
                ORDER BY submitted_at DESC, id DESC LIMIT 1
            """, grade_id))

    async def pending_transactions(self, limit: int = 100) -> list[dict]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM ledger_transactions
                WHERE status='PENDING' AND simulated=FALSE
                ORDER BY submitted_at LIMIT $1
            """, limit)
        return [_row(r) for r in rows]

    async def confirm_transaction(self, tx_hash: str, block_number: int,
                                  blockchain_grade_id: str) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE ledger_transactions
                SET status='CONFIRMED', block_number=$2, blockchain_grade_id=$3, confirmed_at=$4
                WHERE transaction_hash=$1 AND status='PENDING'
            """, tx_hash, block_number, blockchain_grade_id, utc_now())
        return result.endswith(" 1")

    async def fail_transaction(self, tx_hash: str) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE ledger_transactions SET status='FAILED'
                WHERE transaction_hash=$1 AND status='PENDING'
            """, tx_hash)
        return result.endswith(" 1")

    async def chain_ids_for_student(self, student_id: str, simulated: Optional[bool] = None) -> list[str]:
        sql = """SELECT blockchain_grade_id FROM ledger_transactions
                 WHERE student_id=$1 AND status='CONFIRMED' AND blockchain_grade_id IS NOT NULL"""
        params = [student_id]
        if simulated is not None:
            sql += " AND simulated=$2"
            params.append(simulated)
        sql += " ORDER BY submitted_at DESC"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [r["blockchain_grade_id"] for r in rows]

    # System logs

    async def insert_log(self, entry: dict) -> dict:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO system_logs (user_id, action, details, ip_address, created_at)
                VALUES ($1,$2,$3,$4,$5) RETURNING *
            """, entry["user_id"], entry["action"], entry["details"],
                entry["ip_address"], entry.get("created_at") or utc_now())
        return _row(row)

    async def recent_logs(self, actions: Optional[Iterable[str]], since: datetime,
                          limit: int = 50) -> list[dict]:
        where, params = ["created_at >= $1"], [since]
        if actions is not None:
            where.append("action = ANY($2::text[])")
            params.append(list(actions))
        params.append(limit)
        sql = (f"SELECT * FROM system_logs WHERE {' AND '.join(where)} "
               f"ORDER BY created_at DESC, id DESC LIMIT ${len(params)}")
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [_row(r) for r in rows]


#  In-memory

class MemoryStore:
    """Same interface as PostgresStore, backed by dicts. Single event loop only."""

    def __init__(self):
        self.grades: dict[str, dict] = {}
        self.transactions: list[dict] = []
        self.logs: list[dict] = []

    @property
    def backend(self) -> str:
        return "memory"

    async def init(self):
        log.info("memory store ready")

    async def close(self):
        pass

    async def insert_grade(self, grade: dict) -> dict:
        now = utc_now()
        row = {
            "id": grade["id"], "student_id": grade["student_id"],
            "course_id": grade["course_id"], "teacher_id": grade["teacher_id"],
            "score": grade["score"], "semester": grade.get("semester", ""),
            "status": grade.get("status", "PENDING"), "metadata": grade.get("metadata"),
            "created_at": now, "updated_at": now,
        }
        self.grades[row["id"]] = row
        return dict(row)

    async def get_grade(self, grade_id: str) -> Optional[dict]:
        row = self.grades.get(grade_id)
        return dict(row) if row else None

    async def transition_grade_status(self, grade_id: str, from_statuses: Iterable[str],
                                      to_status: str) -> bool:
        row = self.grades.get(grade_id)
        if row is None or row["status"] not in set(from_statuses):
            return False
        row["status"] = to_status
        row["updated_at"] = utc_now()
        return True

    async def insert_transaction(self, tx: dict) -> dict:
        if any(t["transaction_hash"] == tx["transaction_hash"] for t in self.transactions):
            raise ValueError(f"duplicate transaction_hash {tx['transaction_hash']}")
        row = {
            "id": len(self.transactions) + 1,
            "transaction_hash": tx["transaction_hash"],
            "block_number": tx["block_number"],
            "blockchain_grade_id": tx.get("blockchain_grade_id"),
            "grade_id": tx.get("grade_id"),
            "student_id": tx["student_id"], "course_id": tx["course_id"],
            "teacher_id": tx["teacher_id"],
            "payload": dict(tx["payload"]), "content_hash": tx["content_hash"],
            "simulated": tx["simulated"], "status": tx["status"],
            "submitted_at": tx.get("submitted_at") or utc_now(),
            "confirmed_at": tx.get("confirmed_at"),
        }
        self.transactions.append(row)
        return dict(row)

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[dict]:
        for t in self.transactions:
            if t["transaction_hash"] == tx_hash:
                return dict(t)
        return None

    async def get_transaction_by_chain_id(self, chain_id: str) -> Optional[dict]:
        for t in reversed(self.transactions):
            if t["blockchain_grade_id"] == chain_id:
                return dict(t)
        return None

    async def latest_transaction_for_grade(self, grade_id: str) -> Optional[dict]:
        for t in reversed(self.transactions):
            if t["grade_id"] == grade_id:
                return dict(t)
        return None

    async def pending_transactions(self, limit: int = 100) -> list[dict]:
        rows = [t for t in self.transactions
                if t["status"] == ConfirmationStatus.PENDING.value and not t["simulated"]]
        return [dict(t) for t in rows[:limit]]

    async def confirm_transaction(self, tx_hash: str, block_number: int,
                                  blockchain_grade_id: str) -> bool:
        for t in self.transactions:
            if t["transaction_hash"] == tx_hash and t["status"] == ConfirmationStatus.PENDING.value:
                t.update(status=ConfirmationStatus.CONFIRMED.value, block_number=block_number,
                         blockchain_grade_id=blockchain_grade_id, confirmed_at=utc_now())
                return True
        return False

    async def fail_transaction(self, tx_hash: str) -> bool:
        for t in self.transactions:
            if t["transaction_hash"] == tx_hash and t["status"] == ConfirmationStatus.PENDING.value:
                t["status"] = ConfirmationStatus.FAILED.value
                return True
        return False

    async def chain_ids_for_student(self, student_id: str, simulated: Optional[bool] = None) -> list[str]:
        return [
            t["blockchain_grade_id"] for t in reversed(self.transactions)
            if t["student_id"] == student_id
            and t["status"] == ConfirmationStatus.CONFIRMED.value
            and t["blockchain_grade_id"]
            and (simulated is None or t["simulated"] == simulated)
        ]

    async def insert_log(self, entry: dict) -> dict:
        row = {
            "id": len(self.logs) + 1,
            "user_id": entry["user_id"], "action": entry["action"],
            "details": entry["details"], "ip_address": entry["ip_address"],
            "created_at": entry.get("created_at") or utc_now(),
        }
        self.logs.append(row)
        return dict(row)

    async def recent_logs(self, actions: Optional[Iterable[str]], since: datetime,
                          limit: int = 50) -> list[dict]:
        wanted = set(actions) if actions is not None else None
        rows = [entry for entry in self.logs
                if entry["created_at"] >= since and (wanted is None or entry["action"] in wanted)]
        rows.sort(key=lambda entry: (entry["created_at"], entry["id"]), reverse=True)
        return [dict(entry) for entry in rows[:limit]]


async def open_store(backend: str, dsn: str):
    """Create and initialise the store selected by STORE_BACKEND."""
    if backend == "memory":
        store = MemoryStore()
    else:
        store = await PostgresStore.connect(dsn)
    await store.init()
    return store
