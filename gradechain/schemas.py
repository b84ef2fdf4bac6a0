"""
schemas.py - Grade attestation data contracts.

Field names are snake_case in Python and camelCase on the wire
(studentId, blockchainGradeId, mockMode, ...), matching what the grade UI
and the ledger contract already use.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import InvalidInput


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GradeStatus(str, Enum):
    PENDING  = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class ConfirmationStatus(str, Enum):
    PENDING   = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED    = "FAILED"


class AuditKind(str, Enum):
    SUBMIT           = "SUBMIT"
    VERIFY           = "VERIFY"
    CONNECT          = "CONNECT"
    COMPAT_DOWNGRADE = "COMPAT_DOWNGRADE"


class AuditOutcome(str, Enum):
    OK        = "OK"
    SIMULATED = "SIMULATED"
    ERROR     = "ERROR"


class VerificationStatus(str, Enum):
    VERIFIED            = "VERIFIED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


class GradeContent(CamelModel):
    """The five attested fields, in contract order."""
    student_id: str = Field(..., min_length=1, max_length=64)
    course_id:  str = Field(..., min_length=1, max_length=64)
    score:      int = Field(..., ge=0, le=100, strict=True)
    semester:   str = Field(default="", max_length=32)
    teacher_id: str = Field(default="", max_length=64)


class GradePayload(GradeContent):
    """Input to submit_grade. metadata is already serialised by the caller."""
    metadata: str = Field(default="", max_length=4096)

    @classmethod
    def parse(cls, data: Any) -> "GradePayload":
        """Validate caller input, raising InvalidInput before any network call."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
            raise InvalidInput(f"invalid grade payload: {fields}") from exc

    def contract_args(self) -> tuple:
        """Positional arguments of GradeRecord.addGrade, in ABI order."""
        return (self.student_id, self.course_id, self.score,
                self.semester, self.teacher_id, self.metadata)


class ExpectedGrade(GradeContent):
    """Expected content when verifying an existing attestation."""


class LedgerResult(CamelModel):
    transaction_hash:    str
    block_number:        int
    blockchain_grade_id: Optional[str] = None
    confirmation_status: ConfirmationStatus
    simulated:           bool = False


class VerificationResult(CamelModel):
    blockchain_grade_id: str
    exists:              bool
    matches:             bool
    status:              VerificationStatus
    simulated:           bool = False
    stored_record:       Optional[dict[str, Any]] = None
    mismatched_fields:   list[str] = Field(default_factory=list)


class StatusOut(CamelModel):
    connected:           bool
    mock_mode:           bool
    compatibility_error: Optional[str] = None


class ReloadIn(CamelModel):
    force_mock_mode: Optional[bool] = None


class VerifyIn(CamelModel):
    blockchain_grade_id: str = Field(..., min_length=1, max_length=80)
    expected:            ExpectedGrade


class AttestOut(CamelModel):
    grade_id:         str
    grade_status:     GradeStatus
    already_attested: bool = False
    ledger:           LedgerResult


class GradeChainOut(CamelModel):
    grade_id:            str
    on_chain:            bool
    transaction_hash:    Optional[str] = None
    block_number:        Optional[int] = None
    blockchain_grade_id: Optional[str] = None
    confirmation_status: Optional[ConfirmationStatus] = None
    simulated:           Optional[bool] = None
    submitted_at:        Optional[datetime] = None
    in_sync:             Optional[bool] = None


class AccountOut(CamelModel):
    account_address: str
    balance_eth:     str
    simulated:       bool


class AuditEntryOut(CamelModel):
    user_id:    str
    action:     str
    details:    str
    ip_address: str
    created_at: datetime
