"""
connection.py - Link to the ledger node.

Owns the process-wide ConnectionState and the cached EthereumClient.
ConnectionState is frozen; every update builds a new one and replaces the
reference in a single assignment, so a concurrent reader sees either the
old state or the new one, never a mix.

An unreachable node is not an error here: check_connection() reports it as
connected=False and the mode selector routes calls to the simulation.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from .audit import AuditLog
from .config import LedgerSettings, load_settings
from .errors import ConnectionUnavailable, classify
from .hashing import utc_now
from .ledger.adapter import LedgerClient
from .ledger.ethereum import EthereumClient
from .schemas import AuditKind, AuditOutcome, StatusOut

log = logging.getLogger("gradechain.connection")


@dataclass(frozen=True)
class ConnectionState:
    connected: bool = False
    mock_mode: bool = False            # calls currently resolve to the simulation
    forced_mock: bool = False          # operator set FORCE_MOCK_MODE
    downgraded: bool = False           # persistent downgrade after a compatibility error
    last_error: Optional[str] = None
    compatibility_error: Optional[str] = None
    checked_at: Optional[datetime] = None


def _initial_state(settings: LedgerSettings) -> ConnectionState:
    return ConnectionState(mock_mode=settings.force_mock_mode,
                           forced_mock=settings.force_mock_mode)


class ConnectionManager:
    def __init__(self, settings: LedgerSettings, audit: AuditLog,
                 client_factory: Callable[[LedgerSettings], LedgerClient] = EthereumClient,
                 settings_loader: Callable[[], LedgerSettings] = load_settings):
        self._settings = settings
        self._client_factory = client_factory
        self._settings_loader = settings_loader
        self._client: Optional[LedgerClient] = None
        self._state = _initial_state(settings)
        self.audit = audit

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _swap(self, **changes):
        self._state = replace(self._state, **changes)

    def client(self) -> LedgerClient:
        """The cached real client, built on first use after (re)configuration."""
        if self._client is None:
            if not self._settings.is_configured:
                raise ConnectionUnavailable(
                    "ledger not configured (ETHEREUM_RPC_URL, ETHEREUM_ACCOUNT, "
                    "ETHEREUM_CONTRACT_ADDRESS)")
            self._client = self._client_factory(self._settings)
        return self._client

    async def check_connection(self) -> bool:
        """Liveness probe against the configured node. Never raises."""
        settings = self._settings
        try:
            height = await asyncio.wait_for(self.client().ping(), timeout=settings.rpc_timeout)
        except Exception as exc:
            err = classify(exc, settings.compat_signatures)
            message = f"{err.kind}: {err}"
            if settings is not self._settings:
                return False
            # Read after the await: concurrent probes must see each other's result.
            first_probe = self._state.checked_at is None
            was_connected = self._state.connected
            self._swap(connected=False, mock_mode=True, last_error=message, checked_at=utc_now())
            log.warning("ledger probe failed rpc=%s: %s", settings.rpc_url, message)
            if was_connected or first_probe:
                await self.audit.record(AuditKind.CONNECT, AuditOutcome.ERROR,
                                        f"ledger node unreachable at {settings.rpc_url}: {message}")
            return False

        if settings is not self._settings:
            return True
        state = self._state
        was_connected = state.connected
        self._swap(connected=True, mock_mode=state.forced_mock or state.downgraded,
                   last_error=None, checked_at=utc_now())
        if not was_connected:
            log.info("ledger connected rpc=%s block=%s", settings.rpc_url, height)
            await self.audit.record(AuditKind.CONNECT, AuditOutcome.OK,
                                    f"connected to {settings.rpc_url} at block {height}")
        return True

    async def reload_config(self, force_mock_mode: Optional[bool] = None) -> ConnectionState:
        """Re-read configuration, drop the cached client and reset the state.

        With force_mock_mode given, the operator's choice is written back to
        the environment so later reloads keep it.
        """
        settings = self._settings_loader()
        if force_mock_mode is not None:
            os.environ["FORCE_MOCK_MODE"] = "true" if force_mock_mode else "false"
            settings = settings.with_forced_mock(force_mock_mode)

        self._settings = settings
        self._client = None
        self._state = _initial_state(settings)

        log.info("ledger configuration reloaded: forced_mock=%s rpc=%s",
                 settings.force_mock_mode, settings.rpc_url)
        await self.audit.record(AuditKind.CONNECT, AuditOutcome.OK,
                                f"configuration reloaded, forced mock mode="
                                f"{'on' if settings.force_mock_mode else 'off'}")
        return self._state

    def note_compatibility_error(self, message: str):
        """Remember an incompatibility; enter mock mode if downgrades persist."""
        if self._settings.persistent_downgrade:
            self._swap(compatibility_error=message, downgraded=True, mock_mode=True)
            log.warning("persistent downgrade to mock mode until next reload")
        else:
            self._swap(compatibility_error=message)

    async def status(self) -> StatusOut:
        connected = await self.check_connection()
        compat = await self.audit.latest_compatibility_error(self._settings.compat_window_hours)
        return StatusOut(connected=connected, mock_mode=self._state.mock_mode,
                         compatibility_error=compat)
