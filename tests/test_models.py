"""
Unit tests for the table definitions and the generated DDL.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from gradechain.db import schema_statements
from gradechain.models import Base, Grade, LedgerTransaction, SystemLog


def test_tables():
    assert set(Base.metadata.tables) == {"grades", "ledger_transactions", "system_logs"}
    assert Grade.__table__.c["metadata"] is not None
    assert LedgerTransaction.__table__.c.transaction_hash.unique
    assert LedgerTransaction.__table__.c.blockchain_grade_id.nullable
    assert not SystemLog.__table__.c.details.nullable


def test_ddl_is_idempotent_and_ordered():
    stmts = schema_statements()
    tables = [s for s in stmts if s.startswith("CREATE TABLE")]
    assert all("IF NOT EXISTS" in s for s in stmts)
    names = [s.split("IF NOT EXISTS")[1].split()[0] for s in tables]
    assert names.index("grades") < names.index("ledger_transactions")


def test_ddl_types():
    ddl = "\n".join(schema_statements())
    assert "JSONB" in ddl
    assert "ck_grades_score" in ddl
    assert "REFERENCES grades (id)" in ddl
    assert "CREATE INDEX IF NOT EXISTS" in ddl
