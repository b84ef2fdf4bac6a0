"""
Unit tests for the hashing module.

Tests canonical JSON determinism and content hash consistency.
Run with: pytest tests/
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json

from gradechain.hashing import (
    ATTESTED_FIELDS, attested_content, build_metadata, canonical_json,
    compute_content_hash,
)

GRADE = {"student_id": "s1", "course_id": "c1", "score": 85,
         "semester": "2024-1", "teacher_id": "t1"}


def test_canonical_json_is_deterministic():
    p1 = {"b": 2, "a": 1, "c": {"z": 26, "y": 25}}
    p2 = {"c": {"y": 25, "z": 26}, "a": 1, "b": 2}
    assert canonical_json(p1) == canonical_json(p2)


def test_canonical_json_sorts_keys():
    result = canonical_json({"z": 1, "a": 2})
    assert result.index('"a"') < result.index('"z"')


def test_canonical_json_has_no_whitespace():
    assert canonical_json({"a": [1, 2], "b": "x"}) == '{"a":[1,2],"b":"x"}'


def test_content_hash_is_consistent():
    assert compute_content_hash(GRADE) == compute_content_hash(dict(reversed(GRADE.items())))
    assert len(compute_content_hash(GRADE)) == 64


def test_content_hash_changes_on_score_edit():
    assert compute_content_hash(GRADE) != compute_content_hash({**GRADE, "score": 84})


def test_content_hash_ignores_non_attested_fields():
    row = {**GRADE, "id": "g1", "status": "VERIFIED", "metadata": {"note": "x"}}
    assert compute_content_hash(row) == compute_content_hash(GRADE)


def test_attested_content_normalises_types():
    content = attested_content({**GRADE, "semester": None, "score": "85"})
    assert list(content) == ATTESTED_FIELDS
    assert content["score"] == 85
    assert content["semester"] == ""


def test_build_metadata_is_canonical_json():
    meta = json.loads(build_metadata("VERIFIED", gradeId="g1"))
    assert meta["status"] == "VERIFIED"
    assert meta["gradeId"] == "g1"
    assert "createdAt" in meta
