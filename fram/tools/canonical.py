"""Canonical JSON + hashing helpers used for versions, loop detection and idempotency keys."""
import hashlib
import json
from typing import Any


def canonical_json(value: Any) -> str:
    """Sorted-key, whitespace-free JSON. Equal values always serialize identically."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_args(args: Any) -> str:
    """Short stable hash of tool arguments (key order does not matter)."""
    return sha256_hex(canonical_json(args if args is not None else {}))[:16]
