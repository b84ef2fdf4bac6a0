"""
main.py - Grade attestation REST API.

Architecture position: grade routes call into this service, which anchors
grade content on the GradeRecord contract (or its simulation) and keeps
Postgres and the ledger reconciled.
  grade → POST /grades/{id}/attest → mode selector → node | simulation
        → ledger_transactions + system_logs → grade VERIFIED

Identity comes from the user_session cookie. Ledger operations (status,
reload, account, logs) are ADMIN only; grade routes also check ownership.

Raw node errors never leave the process: they are in the log and the audit
trail, responses carry the summary of the error class.
"""
import asyncio
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .audit import LEDGER_ACTIONS
from .config import DATABASE_URL, STORE_BACKEND
from .confirmations import confirmation_worker
from .db import open_store
from .errors import GradeStateConflict, InsufficientResources, InvalidInput, LedgerError
from .hashing import compute_content_hash
from .roles import PERMISSIONS, ensure_grade_access, ensure_student_access, require
from .schemas import (
    AccountOut, AttestOut, AuditEntryOut, AuditKind, GradeChainOut, ReloadIn,
    StatusOut, VerificationResult, VerifyIn,
)
from .services import Services, build_services
from .session import Session

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("gradechain.api")

app = FastAPI(
    title="Grade Attestation",
    description=(
        "Blockchain attestation of student grades.\n\n"
        "**Flow**: grade → GradeRecord.addGrade → ledger_transactions → VERIFIED\n\n"
        "Falls back to a simulated ledger when the node is down, incompatible, "
        "or mock mode is forced."
    ),
    version="1.0.0",
)

app.add_middleware(CORSMiddleware, allow_origins=["*"],
                   allow_methods=["*"], allow_headers=["*"], allow_credentials=True)


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "localhost"


#  Startup / Shutdown

@app.on_event("startup")
async def startup():
    if getattr(app.state, "services", None) is None:
        for attempt in range(30):
            try:
                store = await open_store(STORE_BACKEND, DATABASE_URL)
                break
            except Exception as exc:
                log.warning("store not ready (attempt %d): %s", attempt + 1, exc)
                await asyncio.sleep(2)
        else:
            log.error("Postgres not available after 60s")
            raise RuntimeError("Database unavailable")
        app.state.services = build_services(store)

    services = app.state.services
    await services.connection.check_connection()
    app.state.worker = asyncio.create_task(
        confirmation_worker(services.store, services.connection))
    log.info("grade attestation started - store=%s mock=%s",
             services.store.backend, services.connection.state.mock_mode)


@app.on_event("shutdown")
async def shutdown():
    worker = getattr(app.state, "worker", None)
    if worker is not None:
        worker.cancel()
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.store.close()


#  Error mapping

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if isinstance(exc, InvalidInput):
        status = 400
    elif isinstance(exc, InsufficientResources):
        status = 402
    else:
        status = 502
    return JSONResponse(status_code=status,
                        content={"error": exc.kind, "message": exc.public_message})


@app.exception_handler(GradeStateConflict)
async def grade_conflict_handler(request: Request, exc: GradeStateConflict):
    return JSONResponse(status_code=409, content={
        "error": "grade_state_conflict", "grade_id": exc.grade_id, "status": exc.status,
    })


#  System endpoints

@app.get("/health", tags=["system"])
async def health(services: Services = Depends(get_services)):
    state = services.connection.state
    return {
        "status": "ok",
        "store_backend": services.store.backend,
        "mock_mode": state.mock_mode,
        "forced_mock": state.forced_mock,
        "connected": state.connected,
    }


@app.get("/roles", tags=["system"])
async def list_roles():
    return {r.value: sorted(p) for r, p in PERMISSIONS.items()}


#  Ledger operations - ADMIN only

@app.get("/blockchain/status", tags=["ledger"], response_model=StatusOut,
         dependencies=[Depends(require("read_ledger_status"))])
async def blockchain_status(services: Services = Depends(get_services)):
    return await services.connection.status()


@app.post("/config/reload", tags=["ledger"], response_model=StatusOut)
async def reload_config(
    request: Request,
    body: Optional[ReloadIn] = None,
    session: Session = Depends(require("reload_config")),
    services: Services = Depends(get_services),
):
    forced = body.force_mock_mode if body is not None else None
    log.info("config reload requested by %s force_mock_mode=%s", session.id, forced)
    await services.connection.reload_config(forced)
    return await services.connection.status()


@app.get("/blockchain/account", tags=["ledger"], response_model=AccountOut)
async def blockchain_account(
    request: Request,
    session: Session = Depends(require("read_ledger_account")),
    services: Services = Depends(get_services),
):
    balance, client = await services.selector.execute(
        AuditKind.CONNECT, lambda c: c.get_balance(), session.id, client_ip(request))
    address = getattr(client, "address", None) or services.connection.settings.account_address
    return AccountOut(account_address=address or "-", balance_eth=str(balance),
                      simulated=client.simulated)


@app.get("/blockchain/logs", tags=["ledger"], response_model=list[AuditEntryOut],
         dependencies=[Depends(require("read_ledger_logs"))])
async def blockchain_logs(
    hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    return await services.audit.recent(hours, LEDGER_ACTIONS, limit)


#  Grade attestation

async def _load_grade(services: Services, grade_id: str, session: Session) -> dict:
    grade = await services.store.get_grade(grade_id)
    if not grade:
        raise HTTPException(404, detail=f"Grade {grade_id} not found")
    ensure_grade_access(session, grade)
    return grade


@app.post("/grades/{grade_id}/attest", tags=["grades"], response_model=AttestOut)
async def attest_grade(
    grade_id: str,
    request: Request,
    session: Session = Depends(require("attest_grade")),
    services: Services = Depends(get_services),
):
    """Anchor a grade on the ledger and mark it VERIFIED.

    Re-attesting an unchanged grade returns the existing transaction.
    A grade edited after attestation gets a new record; the old one stays.
    """
    grade = await _load_grade(services, grade_id, session)
    return await services.submitter.attest_grade(grade, session.id, client_ip(request))


@app.get("/grades/{grade_id}/blockchain", tags=["grades"], response_model=GradeChainOut)
async def grade_chain(
    grade_id: str,
    session: Session = Depends(require("read_grade_chain")),
    services: Services = Depends(get_services),
):
    grade = await _load_grade(services, grade_id, session)
    tx = await services.store.latest_transaction_for_grade(grade_id)
    if tx is None:
        return GradeChainOut(grade_id=grade_id, on_chain=False)
    return GradeChainOut(
        grade_id=grade_id,
        on_chain=tx["status"] == "CONFIRMED",
        transaction_hash=tx["transaction_hash"],
        block_number=tx["block_number"],
        blockchain_grade_id=tx["blockchain_grade_id"],
        confirmation_status=tx["status"],
        simulated=tx["simulated"],
        submitted_at=tx["submitted_at"],
        in_sync=tx["content_hash"] == compute_content_hash(grade),
    )


@app.get("/grades/{grade_id}/blockchain/verify", tags=["grades"],
         response_model=VerificationResult)
async def verify_stored_grade(
    grade_id: str,
    request: Request,
    session: Session = Depends(require("verify_grade")),
    services: Services = Depends(get_services),
):
    grade = await _load_grade(services, grade_id, session)
    result = await services.verifier.verify_stored_grade(grade, session.id, client_ip(request))
    if result is None:
        raise HTTPException(404, detail=f"Grade {grade_id} has no ledger record yet")
    return result


@app.post("/grades/blockchain/verify", tags=["grades"], response_model=VerificationResult)
async def verify_grade(
    body: VerifyIn,
    request: Request,
    session: Session = Depends(require("verify_grade")),
    services: Services = Depends(get_services),
):
    return await services.verifier.verify_grade(
        body.blockchain_grade_id, body.expected, session.id, client_ip(request))


@app.get("/students/{student_id}/blockchain-grades", tags=["grades"])
async def student_chain_grades(
    student_id: str,
    request: Request,
    session: Session = Depends(require("read_grade_chain")),
    services: Services = Depends(get_services),
):
    ensure_student_access(session, student_id)
    ids, client = await services.selector.execute(
        AuditKind.VERIFY, lambda c: c.get_student_grade_ids(student_id),
        session.id, client_ip(request))
    if not client.simulated:
        # Simulated attestations never reach the node.
        ids = ids + await services.store.chain_ids_for_student(student_id, simulated=True)
    return {"studentId": student_id, "gradeIds": ids, "simulated": client.simulated}
