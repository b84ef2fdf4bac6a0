"""
audit.py - Append-only log of ledger interactions.

Every attempt (real, simulated or failed) becomes one system_logs row with
the shape the log viewer already reads: user_id, action, details,
ip_address, created_at. The action label encodes kind and outcome, e.g.
BLOCKCHAIN_SUBMIT_SIMULATED or BLOCKCHAIN_COMPAT_DOWNGRADE_ERROR.

A failing audit write is logged and does not fail the ledger operation that
triggered it: the grade path must not depend on the log table.
"""
import logging
from datetime import timedelta
from typing import Iterable, Optional

from .hashing import utc_now
from .schemas import AuditKind, AuditOutcome

log = logging.getLogger("gradechain.audit")

SYSTEM_USER = "system"
LOCAL_IP = "localhost"
_MAX_DETAIL = 2000


def action_label(kind: AuditKind, outcome: AuditOutcome) -> str:
    return f"BLOCKCHAIN_{kind.value}_{outcome.value}"


LEDGER_ACTIONS = [action_label(k, o) for k in AuditKind for o in AuditOutcome]
COMPAT_ACTIONS = [action_label(AuditKind.COMPAT_DOWNGRADE, o) for o in AuditOutcome]


class AuditLog:
    def __init__(self, store):
        self.store = store

    async def record(self, kind: AuditKind, outcome: AuditOutcome, detail: str,
                     actor_id: Optional[str] = None, ip_address: Optional[str] = None) -> Optional[dict]:
        entry = {
            "user_id": actor_id or SYSTEM_USER,
            "action": action_label(kind, outcome),
            "details": detail[:_MAX_DETAIL],
            "ip_address": ip_address or LOCAL_IP,
            "created_at": utc_now(),
        }
        try:
            return await self.store.insert_log(entry)
        except Exception as exc:
            log.error("audit write failed action=%s: %s", entry["action"], exc)
            return None

    async def recent(self, hours: int, actions: Optional[Iterable[str]] = None,
                     limit: int = 50) -> list[dict]:
        since = utc_now() - timedelta(hours=hours)
        return await self.store.recent_logs(
            LEDGER_ACTIONS if actions is None else actions, since, limit)

    async def latest_compatibility_error(self, hours: int) -> Optional[str]:
        """Details of the most recent compatibility downgrade inside the window."""
        rows = await self.recent(hours, COMPAT_ACTIONS, limit=1)
        return rows[0]["details"] if rows else None
