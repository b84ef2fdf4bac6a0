"""
Database models for the grade attestation service.

Three tables:
  grades               - authoritative off-chain grade records
  ledger_transactions  - one row per attestation attempt that produced a
                         transaction reference (real or simulated)
  system_logs          - append-only audit trail read by the log viewer

The ledger stores the five attested fields; Postgres stores everything
else. A grade is never deleted once attested, and an edit after attestation
produces a new ledger_transactions row rather than touching the old one.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, DateTime,
    ForeignKey, Integer, String, Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

from .schemas import ConfirmationStatus, GradeStatus


class Base(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


class Grade(Base):
    __tablename__ = "grades"

    id          = Column(String(64), primary_key=True)
    student_id  = Column(String(64), nullable=False, index=True)
    course_id   = Column(String(64), nullable=False, index=True)
    teacher_id  = Column(String(64), nullable=False, index=True)
    score       = Column(Integer, nullable=False)
    semester    = Column(String(32), nullable=False, default="")
    status      = Column(String(16), nullable=False, default=GradeStatus.PENDING.value)
    metadata_   = Column("metadata", JSONB, nullable=True)
    created_at  = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at  = Column(DateTime(timezone=True), nullable=False, default=_now)

    transactions = relationship("LedgerTransaction", back_populates="grade")

    __table_args__ = (
        CheckConstraint("score BETWEEN 0 AND 100", name="ck_grades_score"),
        CheckConstraint("status IN ('PENDING','VERIFIED','REJECTED')", name="ck_grades_status"),
    )

    def __repr__(self) -> str:
        return f"<Grade {self.id} student={self.student_id} score={self.score} status={self.status}>"


class LedgerTransaction(Base):
    """A transaction reference for one attestation of a grade.

    blockchain_grade_id is NULL while the inclusion event has not been seen;
    it is never invented. Rows are immutable once CONFIRMED.
    """
    __tablename__ = "ledger_transactions"

    id                  = Column(Integer, primary_key=True, autoincrement=True)
    transaction_hash    = Column(String(66), nullable=False, unique=True, index=True)
    block_number        = Column(BigInteger, nullable=False, default=0)
    blockchain_grade_id = Column(String(64), nullable=True, index=True)
    grade_id            = Column(String(64), ForeignKey("grades.id"), nullable=True, index=True)

    student_id          = Column(String(64), nullable=False, index=True)
    course_id           = Column(String(64), nullable=False)
    teacher_id          = Column(String(64), nullable=False)
    payload             = Column(JSONB, nullable=False)       # five fields + metadata as submitted
    content_hash        = Column(String(64), nullable=False)  # SHA256(canonical attested content)

    simulated           = Column(Boolean, nullable=False, default=False)
    status              = Column(String(16), nullable=False,
                                 default=ConfirmationStatus.PENDING.value)
    submitted_at        = Column(DateTime(timezone=True), nullable=False, default=_now)
    confirmed_at        = Column(DateTime(timezone=True), nullable=True)

    grade               = relationship("Grade", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("status IN ('PENDING','CONFIRMED','FAILED')", name="ck_ltx_status"),
        CheckConstraint("length(content_hash) = 64", name="ck_ltx_hash_len"),
    )

    def __repr__(self) -> str:
        return (f"<LedgerTransaction {self.transaction_hash[:12]} grade={self.grade_id} "
                f"status={self.status} simulated={self.simulated}>")


class SystemLog(Base):
    __tablename__ = "system_logs"

    id          = Column(Integer, primary_key=True, autoincrement=True)
    user_id     = Column(String(64), nullable=False, index=True)
    action      = Column(String(64), nullable=False, index=True)
    details     = Column(Text, nullable=False, default="")
    ip_address  = Column(String(64), nullable=False, default="localhost")
    created_at  = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)

    def __repr__(self) -> str:
        return f"<SystemLog {self.action} user={self.user_id}>"
