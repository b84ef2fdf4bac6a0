"""
roles.py - Role-based access control.

Roles:
  ADMIN   - operates the ledger link; every operation
  TEACHER - attests and verifies grades of their own courses
  STUDENT - reads and verifies their own attestations

Ownership (a teacher's own grade, a student's own record) is checked in the
route once the grade is loaded: see ensure_grade_access().
"""
from fastapi import Depends, HTTPException

from .session import Role, Session, current_session

PERMISSIONS: dict[Role, set[str]] = {
    Role.ADMIN:   {"read_ledger_status", "reload_config", "read_ledger_account",
                   "read_ledger_logs", "attest_grade", "read_grade_chain", "verify_grade"},
    Role.TEACHER: {"attest_grade", "read_grade_chain", "verify_grade"},
    Role.STUDENT: {"read_grade_chain", "verify_grade"},
}


def allowed_roles(operation: str) -> list[Role]:
    return [r for r, p in PERMISSIONS.items() if operation in p]


def require(operation: str):
    def _dep(session: Session = Depends(current_session)) -> Session:
        if operation not in PERMISSIONS.get(session.role, set()):
            raise HTTPException(403, detail={
                "error": "access_denied", "operation": operation, "role": session.role,
                "allowed_roles": allowed_roles(operation),
            })
        return session
    return _dep


def ensure_grade_access(session: Session, grade: dict):
    """Teachers reach their own grades, students their own, admins all."""
    if session.role == Role.ADMIN:
        return
    owner = grade["teacher_id"] if session.role == Role.TEACHER else grade["student_id"]
    if owner != session.id:
        raise HTTPException(403, detail={
            "error": "access_denied", "grade_id": grade["id"], "role": session.role,
        })


def ensure_student_access(session: Session, student_id: str):
    if session.role == Role.STUDENT and session.id != student_id:
        raise HTTPException(403, detail={
            "error": "access_denied", "student_id": student_id, "role": session.role,
        })
