"""
Unit tests for ledger error classification.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest
import requests
from web3.exceptions import ProviderConnectionError, TimeExhausted

from gradechain.config import DEFAULT_COMPAT_SIGNATURES
from gradechain.errors import (
    CompatibilityError, ConnectionUnavailable, InsufficientResources, InvalidInput,
    LedgerTimeout, TransactionFailed, classify, matches_signature,
)

SIGS = DEFAULT_COMPAT_SIGNATURES


def test_opcode_error_is_compatibility():
    err = classify(ValueError("VM Exception: invalid opcode: MCOPY"), SIGS)
    assert isinstance(err, CompatibilityError)
    assert "MCOPY" in str(err)


def test_signature_match_is_case_insensitive():
    assert matches_signature("INVALID OPCODE: push0", SIGS) == "invalid opcode: PUSH0"
    assert matches_signature("out of gas", SIGS) is None


def test_signatures_are_configurable():
    err = classify(ValueError("stack underflow (0 <=> 1)"), ("stack underflow",))
    assert isinstance(err, CompatibilityError)
    assert not isinstance(classify(ValueError("invalid opcode: MCOPY"), ()), CompatibilityError)


def test_signature_wins_over_transaction_failed():
    err = classify(TransactionFailed("invalid opcode: MCOPY", tx_hash="0xabc"), SIGS)
    assert isinstance(err, CompatibilityError)
    assert err.tx_hash == "0xabc"


def test_insufficient_funds():
    err = classify(ValueError("insufficient funds for gas * price + value"), SIGS)
    assert isinstance(err, InsufficientResources)


@pytest.mark.parametrize("exc", [
    TimeExhausted("no receipt"),
    asyncio.TimeoutError(),
    requests.exceptions.ReadTimeout("read timed out"),
])
def test_timeouts(exc):
    err = classify(exc, SIGS)
    assert isinstance(err, LedgerTimeout)
    assert isinstance(err, ConnectionUnavailable)


@pytest.mark.parametrize("exc", [
    ProviderConnectionError("cannot connect"),
    requests.exceptions.ConnectionError("refused"),
    ConnectionRefusedError(111, "refused"),
])
def test_connection_errors(exc):
    err = classify(exc, SIGS)
    assert isinstance(err, ConnectionUnavailable)
    assert not isinstance(err, LedgerTimeout)


def test_unknown_error_is_transaction_failed():
    err = classify(RuntimeError("something odd"), SIGS)
    assert isinstance(err, TransactionFailed)
    assert str(err) == "something odd"


def test_ledger_errors_pass_through():
    original = InvalidInput("score")
    assert classify(original, SIGS) is original


def test_public_messages_do_not_leak_detail():
    err = InsufficientResources("account 0xabc balance 0 wei")
    assert "0xabc" not in err.public_message
    assert err.kind == "InsufficientResources"
