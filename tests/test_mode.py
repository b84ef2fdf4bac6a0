"""
Unit tests for the real/simulated mode selector.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest

from gradechain.errors import LedgerTimeout, TransactionFailed
from gradechain.schemas import AuditKind, GradePayload

from fakes import GRADE, actions, make_services

RECORD = GradePayload(**GRADE, metadata="{}")


def _submit(services):
    return asyncio.run(services.selector.execute(
        AuditKind.SUBMIT, lambda c: c.submit(RECORD), actor_id="t1"))


def test_forced_mock_never_touches_node():
    services, fake = make_services(force_mock_mode=True)
    receipt, client = _submit(services)
    assert client is services.selector.simulated
    assert receipt.simulated
    assert fake.calls["ping"] == 0
    assert fake.calls["submit"] == 0


def test_unreachable_node_degrades_to_simulation():
    services, fake = make_services()
    fake.ping_error = ConnectionRefusedError(111, "Connection refused")
    receipt, client = _submit(services)
    assert client.simulated
    assert fake.calls["submit"] == 0
    assert "BLOCKCHAIN_CONNECT_SIMULATED" in actions(services.store)
    simulated_entry = [e for e in services.store.logs
                       if e["action"] == "BLOCKCHAIN_CONNECT_SIMULATED"][0]
    assert simulated_entry["user_id"] == "t1"


def test_real_path_when_connected():
    services, fake = make_services()
    receipt, client = _submit(services)
    assert client is fake
    assert not receipt.simulated
    assert fake.calls["submit"] == 1


def test_compatibility_error_falls_back_for_one_call():
    services, fake = make_services()
    fake.submit_error = ValueError("VM Exception while processing transaction: invalid opcode: MCOPY")

    receipt, client = _submit(services)
    assert client.simulated and receipt.simulated
    compat = [a for a in actions(services.store) if a.startswith("BLOCKCHAIN_COMPAT_DOWNGRADE")]
    assert compat == ["BLOCKCHAIN_COMPAT_DOWNGRADE_ERROR"]
    entry = [e for e in services.store.logs if e["action"] == compat[0]][0]
    assert "invalid opcode: MCOPY" in entry["details"]
    assert services.connection.state.mock_mode is False

    fake.submit_error = None
    receipt, client = _submit(services)
    assert client is fake


def test_persistent_downgrade_keeps_simulating():
    services, fake = make_services(persistent_downgrade=True)
    fake.submit_error = ValueError("invalid opcode: PUSH0")
    _submit(services)
    assert services.connection.state.mock_mode is True

    fake.submit_error = None
    _, client = _submit(services)
    assert client.simulated
    assert fake.calls["submit"] == 1


def test_configured_signature_is_recognised():
    services, fake = make_services(compat_signatures=("stack underflow",))
    fake.submit_error = ValueError("stack underflow (0 <=> 1)")
    _, client = _submit(services)
    assert client.simulated


def test_timeout_falls_back_and_is_labelled():
    services, fake = make_services()
    fake.submit_error = asyncio.TimeoutError()
    _, client = _submit(services)
    assert client.simulated
    errors = [e for e in services.store.logs if e["action"] == "BLOCKCHAIN_CONNECT_ERROR"]
    assert len(errors) == 1
    assert "timed out" in errors[0]["details"]


def test_slow_node_is_bounded_by_timeout():
    services, fake = make_services()

    async def slow(client):
        if client.simulated:
            return "simulated"
        await asyncio.sleep(5)
        return "real"

    result, client = asyncio.run(services.selector.execute(AuditKind.VERIFY, slow, timeout=0.05))
    assert result == "simulated"


def test_unrecognised_error_propagates():
    services, fake = make_services()
    fake.submit_error = RuntimeError("execution reverted: only owner")
    with pytest.raises(TransactionFailed, match="only owner"):
        _submit(services)
    assert not any(a.startswith("BLOCKCHAIN_COMPAT") for a in actions(services.store))


def test_unbounded_submission_outlives_rpc_timeout():
    services, fake = make_services(rpc_timeout=0.05)
    fake.submit_delay = 0.2
    receipt, client = asyncio.run(services.selector.execute(
        AuditKind.SUBMIT, lambda c: c.submit(RECORD), bounded=False))
    assert client is fake
    assert receipt.simulated is False
    assert "BLOCKCHAIN_CONNECT_ERROR" not in actions(services.store)


def test_connection_error_after_send_is_not_simulated():
    services, fake = make_services()
    fake.submit_error = LedgerTimeout("receipt wait failed", tx_hash="0x" + "aa" * 32)
    with pytest.raises(LedgerTimeout):
        _submit(services)
    assert "BLOCKCHAIN_CONNECT_ERROR" not in actions(services.store)
