"""
services.py - Wiring of the attestation components around one store.

Built once at startup and kept on app.state; tests build their own with a
MemoryStore and a stub client factory.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from .audit import AuditLog
from .config import LedgerSettings, load_settings
from .connection import ConnectionManager
from .ledger.adapter import LedgerClient
from .ledger.ethereum import EthereumClient
from .ledger.simulated import SimulatedClient
from .mode import ModeSelector
from .submitter import TransactionSubmitter
from .verifier import RecordVerifier


@dataclass
class Services:
    store: object
    audit: AuditLog
    connection: ConnectionManager
    selector: ModeSelector
    submitter: TransactionSubmitter
    verifier: RecordVerifier


def build_services(store, settings: Optional[LedgerSettings] = None,
                   client_factory: Callable[[LedgerSettings], LedgerClient] = EthereumClient,
                   settings_loader: Callable[[], LedgerSettings] = load_settings) -> Services:
    settings = settings if settings is not None else settings_loader()
    audit = AuditLog(store)
    connection = ConnectionManager(settings, audit, client_factory, settings_loader)
    selector = ModeSelector(connection, SimulatedClient(store), audit)
    return Services(
        store=store,
        audit=audit,
        connection=connection,
        selector=selector,
        submitter=TransactionSubmitter(store, selector, audit),
        verifier=RecordVerifier(store, selector, audit),
    )
