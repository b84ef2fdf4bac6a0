"""
Canonical hashing for grade records.

The content hash of a grade is what tells us whether the off-chain row still
says what was attested. Two records with the same field values always hash
the same, regardless of key order.

Canonicalisation rules:
  - Keys sorted alphabetically (recursive)
  - No extra whitespace
  - Unicode normalised to NFC
  - Encoding: UTF-8
"""
import hashlib
import json
import unicodedata
from datetime import datetime, timezone

# Fields covered by the content hash. metadata is excluded: it carries the
# status/timestamp context of the submission, not the grade itself.
ATTESTED_FIELDS = ["student_id", "course_id", "score", "semester", "teacher_id"]


def _sort_keys_recursive(obj):
    if isinstance(obj, dict):
        return {k: _sort_keys_recursive(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, list):
        return [_sort_keys_recursive(v) for v in obj]
    return obj


def canonical_json(payload: dict) -> str:
    """Return the canonical JSON string of a payload dict."""
    normalised = _sort_keys_recursive(payload)
    raw = json.dumps(normalised, separators=(",", ":"), ensure_ascii=False)
    return unicodedata.normalize("NFC", raw)


def attested_content(record: dict) -> dict:
    """Return the subset of a grade record that goes on-chain, as strings/int."""
    return {
        "student_id": str(record.get("student_id") or ""),
        "course_id": str(record.get("course_id") or ""),
        "score": int(record.get("score")),
        "semester": str(record.get("semester") or ""),
        "teacher_id": str(record.get("teacher_id") or ""),
    }


def compute_content_hash(record: dict) -> str:
    """SHA-256 hex digest of the canonical attested content of a grade."""
    return hashlib.sha256(
        canonical_json(attested_content(record)).encode("utf-8")
    ).hexdigest()


def build_metadata(status: str, **extra) -> str:
    """Serialise the metadata blob sent alongside a grade."""
    return canonical_json({"status": status, "createdAt": utc_now_iso(), **extra})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")
