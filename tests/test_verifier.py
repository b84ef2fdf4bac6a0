"""
Unit tests for record verification.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest

from gradechain.errors import InvalidInput
from gradechain.schemas import VerificationStatus

from fakes import GRADE, actions, make_services

PAYLOAD = {**GRADE, "metadata": "{}"}


def _submit(services, grade_id=None):
    return asyncio.run(services.submitter.submit_grade(PAYLOAD, "t1", grade_id))


def _verify(services, chain_id, expected=GRADE):
    return asyncio.run(services.verifier.verify_grade(chain_id, expected, "t1"))


def test_round_trip_simulated():
    services, _ = make_services(force_mock_mode=True)
    result = _verify(services, _submit(services).blockchain_grade_id)
    assert result.exists and result.matches
    assert result.status == VerificationStatus.VERIFIED
    assert result.simulated is True
    assert result.stored_record["score"] == 85


def test_round_trip_real():
    services, fake = make_services()
    result = _verify(services, _submit(services).blockchain_grade_id)
    assert result.exists and result.matches
    assert result.simulated is False
    assert fake.calls["get_record"] == 1
    assert "BLOCKCHAIN_VERIFY_OK" in actions(services.store)


def test_verification_is_idempotent():
    services, _ = make_services(force_mock_mode=True)
    chain_id = _submit(services).blockchain_grade_id
    first, second = _verify(services, chain_id), _verify(services, chain_id)
    assert (first.exists, first.matches) == (second.exists, second.matches)
    assert first == second
    assert len(services.store.transactions) == 1


def test_mismatch_is_a_result_not_an_error():
    services, _ = make_services(force_mock_mode=True)
    chain_id = _submit(services).blockchain_grade_id
    result = _verify(services, chain_id, {**GRADE, "score": 95, "semester": "2024-2"})
    assert result.exists is True
    assert result.matches is False
    assert result.status == VerificationStatus.VERIFICATION_FAILED
    assert result.mismatched_fields == ["score", "semester"]


@pytest.mark.parametrize("chain_id", ["00" * 32, "not-an-id", "0x1234"])
def test_unknown_id(chain_id):
    services, _ = make_services()
    result = _verify(services, chain_id)
    assert result.exists is False
    assert result.matches is False
    assert result.stored_record is None
    assert not any(a.startswith("BLOCKCHAIN_COMPAT") for a in actions(services.store))


def test_prefixed_upper_case_id_is_normalised():
    services, _ = make_services(force_mock_mode=True)
    chain_id = _submit(services).blockchain_grade_id
    result = _verify(services, "0x" + chain_id.upper())
    assert result.matches
    assert result.blockchain_grade_id == chain_id


def test_simulated_record_checked_locally_when_node_is_up():
    services, fake = make_services()
    fake.ping_error = ConnectionRefusedError(111, "Connection refused")
    chain_id = _submit(services).blockchain_grade_id

    fake.ping_error = None
    result = _verify(services, chain_id)
    assert result.matches and result.simulated
    assert fake.calls["get_record"] == 0


def test_invalid_expected_content():
    services, _ = make_services(force_mock_mode=True)
    with pytest.raises(InvalidInput):
        _verify(services, "00" * 32, {**GRADE, "score": 500})


def test_verify_stored_grade_tracks_edits():
    services, _ = make_services(force_mock_mode=True)
    asyncio.run(services.store.insert_grade({"id": "g1", **GRADE}))
    grade = asyncio.run(services.store.get_grade("g1"))
    assert asyncio.run(services.verifier.verify_stored_grade(grade)) is None

    asyncio.run(services.submitter.attest_grade(grade, "t1"))
    grade = asyncio.run(services.store.get_grade("g1"))
    assert asyncio.run(services.verifier.verify_stored_grade(grade)).matches is True

    services.store.grades["g1"]["score"] = 40
    grade = asyncio.run(services.store.get_grade("g1"))
    result = asyncio.run(services.verifier.verify_stored_grade(grade))
    assert result.exists and not result.matches
    assert result.mismatched_fields == ["score"]
