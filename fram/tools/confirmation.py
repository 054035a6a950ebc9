"""Confirmation tokens for tools that declare requiresConfirmation."""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .canonical import hash_args

logger = logging.getLogger(__name__)

TOKEN_ARG = "confirmation_token"
DEFAULT_TTL_SECONDS = 300
PREVIEW_VALUE_CHARS = 80


@dataclass(frozen=True)
class PendingConfirmation:
    token: str
    tool_id: str
    args: Dict[str, Any]
    preview: str
    expires_at: float

    @property
    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()

    def to_request(self) -> Dict[str, Any]:
        return {"token": self.token, "preview": self.preview, "expiresAt": self.expires_at_iso}


class ConfirmationRejected(Exception):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def split_token(args: Any) -> Tuple[Any, Optional[str]]:
    """Remove the reserved token argument. Returns (clean_args, token)."""
    if not isinstance(args, dict) or TOKEN_ARG not in args:
        return args, None
    clean = {k: v for k, v in args.items() if k != TOKEN_ARG}
    token = args[TOKEN_ARG]
    return clean, token if isinstance(token, str) and token else None


def build_preview(tool_id: str, description: str, args: Dict[str, Any]) -> str:
    parts = []
    for key in sorted(args or {}):
        value = str(args[key])
        if len(value) > PREVIEW_VALUE_CHARS:
            value = value[:PREVIEW_VALUE_CHARS - 3] + "..."
        parts.append(f"{key}={value}")
    head = f"{tool_id}: {description}" if description else tool_id
    return f"{head} ({', '.join(parts)})" if parts else head


class ConfirmationStore:
    """Pending confirmations for one session, keyed by token."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._pending: Dict[str, PendingConfirmation] = {}

    def __len__(self):
        return len(self._pending)

    def issue(self, tool_id: str, args: Dict[str, Any], description: str = "") -> PendingConfirmation:
        self._purge()
        pending = PendingConfirmation(
            token=secrets.token_urlsafe(16),
            tool_id=tool_id,
            args=dict(args or {}),
            preview=build_preview(tool_id, description, args),
            expires_at=self.clock() + self.ttl_seconds,
        )
        self._pending[pending.token] = pending
        logger.info(f"Confirmation requested for {tool_id}, expires {pending.expires_at_iso}")
        return pending

    def peek(self, token: str) -> Optional[PendingConfirmation]:
        return self._pending.get(token)

    def redeem(self, token: str, tool_id: Optional[str] = None, args: Any = None) -> PendingConfirmation:
        """Consume a token. Raises ConfirmationRejected if unknown, expired or for another call."""
        pending = self._pending.get(token)
        if pending is None:
            raise ConfirmationRejected("unknown", "Confirmation token is unknown or already used")
        if self.clock() >= pending.expires_at:
            del self._pending[token]
            raise ConfirmationRejected("expired", "Confirmation token has expired")
        if tool_id is not None and (
            tool_id != pending.tool_id or hash_args(args or {}) != hash_args(pending.args)
        ):
            raise ConfirmationRejected("mismatch", "Confirmation token does not match this call")
        del self._pending[token]
        return pending

    def _purge(self):
        now = self.clock()
        for token in [t for t, p in self._pending.items() if now >= p.expires_at]:
            del self._pending[token]
