"""Idempotency keys for proposed tool calls."""
from typing import Any, Optional

from .canonical import canonical_json, sha256_hex


def idempotency_key(tool_id: str, args: Any, turn: int, call_id: Optional[str] = None,
                    stable_id: bool = True) -> str:
    """``call:<id>`` when the provider id is stable, else a hash scoped to the turn."""
    if call_id and stable_id:
        return f"call:{call_id}"
    payload = canonical_json({"tool": tool_id, "args": args if args is not None else {}, "turn": turn})
    return f"args:{sha256_hex(payload)}"
