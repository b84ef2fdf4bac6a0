"""
mode.py - Real vs simulated path, decided per call.

Decision order:
  1. FORCE_MOCK_MODE (or a persistent downgrade)  -> simulation, no network
  2. check_connection() is False                  -> simulation, CONNECT/SIMULATED
  3. real call; on failure classify():
       CompatibilityError    -> simulation, COMPAT_DOWNGRADE/ERROR
       ConnectionUnavailable -> simulation, CONNECT/ERROR (timeouts labelled),
                                unless the error carries a sent tx hash
       anything else         -> raised to the caller

The selector keeps no state; it reads ConnectionState and hands back the
client that produced the result so callers can tell the paths apart.

Calls that broadcast a transaction run unbounded (bounded=False): the
client bounds every RPC itself, and once a transaction is sent it must
not be abandoned for a simulated copy of the same grade.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .audit import AuditLog
from .connection import ConnectionManager
from .errors import CompatibilityError, ConnectionUnavailable, LedgerTimeout, classify
from .ledger.adapter import LedgerClient
from .schemas import AuditKind, AuditOutcome

log = logging.getLogger("gradechain.mode")

T = TypeVar("T")
LedgerCall = Callable[[LedgerClient], Awaitable[T]]


class ModeSelector:
    def __init__(self, connection: ConnectionManager, simulated: LedgerClient, audit: AuditLog):
        self.connection = connection
        self.simulated = simulated
        self.audit = audit

    async def execute(self, kind: AuditKind, call: LedgerCall,
                      actor_id: Optional[str] = None, ip_address: Optional[str] = None,
                      timeout: Optional[float] = None,
                      bounded: bool = True) -> tuple[T, LedgerClient]:
        """Run call against the client chosen for this request.

        Returns (result, client). Only errors that have no simulated
        fallback propagate.
        """
        state = self.connection.state
        if state.forced_mock or state.downgraded:
            log.debug("%s routed to simulation (forced=%s downgraded=%s)",
                      kind.value, state.forced_mock, state.downgraded)
            return await call(self.simulated), self.simulated

        if not await self.connection.check_connection():
            reason = self.connection.state.last_error or "ledger not reachable"
            log.warning("%s routed to simulation: %s", kind.value, reason)
            await self.audit.record(AuditKind.CONNECT, AuditOutcome.SIMULATED,
                                    f"{kind.value} degraded to simulation: {reason}",
                                    actor_id, ip_address)
            return await call(self.simulated), self.simulated

        settings = self.connection.settings
        try:
            client = self.connection.client()
            pending = call(client)
            if bounded:
                pending = asyncio.wait_for(pending, timeout=timeout or settings.rpc_timeout)
            result = await pending
        except Exception as exc:
            err = classify(exc, settings.compat_signatures)

            if isinstance(err, CompatibilityError):
                log.error("ledger incompatibility during %s, falling back to simulation: %s",
                          kind.value, err)
                self.connection.note_compatibility_error(str(err))
                await self.audit.record(AuditKind.COMPAT_DOWNGRADE, AuditOutcome.ERROR,
                                        f"{kind.value} on {settings.rpc_url}: {err}",
                                        actor_id, ip_address)
                return await call(self.simulated), self.simulated

            if isinstance(err, ConnectionUnavailable) and not err.tx_hash:
                label = "timed out" if isinstance(err, LedgerTimeout) else "lost connection"
                log.warning("%s %s on %s, falling back to simulation: %s",
                            kind.value, label, settings.rpc_url, err)
                await self.audit.record(AuditKind.CONNECT, AuditOutcome.ERROR,
                                        f"{kind.value} {label} on {settings.rpc_url}: {err}",
                                        actor_id, ip_address)
                return await call(self.simulated), self.simulated

            if err is exc:
                raise
            raise err from exc
        return result, client
