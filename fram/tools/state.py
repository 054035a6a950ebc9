"""Session state controller: the only writer of per-session state.

Lifecycle:
  active -> pending end (END_SESSION after=current_turn) -> ended on complete_turn()
  active -> ended (END_SESSION after=immediate, or deactivate())
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .definition import Mode
from .intents import (
    END_IMMEDIATE,
    EndSession,
    Intent,
    RecordTimeout,
    SetPendingMessage,
    SuppressAudio,
    SuppressTranscript,
    parse_intent,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 64


@dataclass
class SessionState:
    mode: Mode
    is_active: bool = True
    turn: int = 0
    total_calls_this_turn: int = 0
    retrieval_calls_this_turn: int = 0
    suppress_audio: bool = False
    suppress_transcript: bool = False
    pending_end: Optional[str] = None
    ended_reason: Optional[str] = None
    closing_message: Optional[str] = None
    pending_message: Optional[str] = None
    timeout_until: Optional[float] = None
    idempotency_cache: "OrderedDict[str, Any]" = field(default_factory=OrderedDict)


class StateController:
    def __init__(self, mode, session_id: str = "", cache_size: int = DEFAULT_CACHE_SIZE):
        self._state = SessionState(mode=Mode(mode))
        self.session_id = session_id
        self.cache_size = max(1, cache_size)

    # ──── Reads ────

    @property
    def mode(self) -> Mode:
        return self._state.mode

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def turn(self) -> int:
        return self._state.turn

    def get(self, key: str) -> Any:
        if key == "idempotency_cache" or not hasattr(self._state, key):
            raise KeyError(key)
        return getattr(self._state, key)

    def view(self) -> Mapping[str, Any]:
        """Read-only snapshot for handlers and logs (cache excluded)."""
        data = {
            f.name: getattr(self._state, f.name)
            for f in fields(self._state)
            if f.name != "idempotency_cache"
        }
        data["mode"] = self._state.mode.value
        return MappingProxyType(data)

    def is_timed_out(self, now: Optional[float] = None) -> bool:
        until = self._state.timeout_until
        return until is not None and (now if now is not None else time.time()) < until

    # ──── Intents ────

    def apply(self, intent) -> bool:
        """Apply one intent. Returns False for illegal transitions and ignored intents."""
        try:
            intent = parse_intent(intent)
        except ValueError as e:
            logger.warning(f"[{self.session_id}] Dropping malformed intent: {e}")
            return False

        s = self._state

        if isinstance(intent, EndSession):
            if not s.is_active:
                logger.warning(f"[{self.session_id}] END_SESSION on inactive session ignored")
                return False
            s.ended_reason = intent.reason or "ended"
            if intent.closing_message:
                s.closing_message = intent.closing_message
            if intent.after == END_IMMEDIATE:
                s.is_active = False
                s.pending_end = None
                logger.info(f"[{self.session_id}] Session ended immediately ({s.ended_reason})")
            else:
                s.pending_end = intent.after
                logger.info(f"[{self.session_id}] Session will end after this turn ({s.ended_reason})")
            return True

        if isinstance(intent, SuppressAudio):
            s.suppress_audio = intent.value
            return True

        if isinstance(intent, SuppressTranscript):
            s.suppress_transcript = intent.value
            return True

        if isinstance(intent, SetPendingMessage):
            if not intent.message:
                logger.warning(f"[{self.session_id}] SET_PENDING_MESSAGE without message ignored")
                return False
            s.pending_message = intent.message
            return True

        if isinstance(intent, RecordTimeout):
            s.timeout_until = intent.until
            logger.info(f"[{self.session_id}] Timeout recorded for {intent.duration_seconds}s")
            return True

        logger.warning(f"[{self.session_id}] Unknown intent type {intent.type!r} ignored")
        return False

    def apply_all(self, intents) -> int:
        return sum(1 for i in intents if self.apply(i))

    # ──── Turn bookkeeping ────

    def begin_turn(self) -> int:
        s = self._state
        s.turn += 1
        s.total_calls_this_turn = 0
        s.retrieval_calls_this_turn = 0
        return s.turn

    def count_call(self, is_retrieval: bool):
        self._state.total_calls_this_turn += 1
        if is_retrieval:
            self._state.retrieval_calls_this_turn += 1

    def complete_turn(self) -> bool:
        """Close the turn. Returns True if the session ended because of a pending end."""
        s = self._state
        s.suppress_audio = False
        s.suppress_transcript = False
        if s.pending_end and s.is_active:
            s.is_active = False
            s.pending_end = None
            logger.info(f"[{self.session_id}] Session ended after turn {s.turn} ({s.ended_reason})")
            return True
        return False

    def take_pending_message(self) -> Optional[str]:
        msg, self._state.pending_message = self._state.pending_message, None
        return msg

    def deactivate(self, reason: str = "disconnected"):
        s = self._state
        if s.is_active:
            s.is_active = False
            s.pending_end = None
            s.ended_reason = s.ended_reason or reason
            logger.info(f"[{self.session_id}] Session deactivated ({reason})")

    # ──── Idempotency cache ────

    def recall(self, key: str):
        cache = self._state.idempotency_cache
        if key not in cache:
            return None
        cache.move_to_end(key)
        return cache[key]

    def remember(self, key: str, value: Any):
        cache = self._state.idempotency_cache
        cache[key] = value
        cache.move_to_end(key)
        while len(cache) > self.cache_size:
            evicted, _ = cache.popitem(last=False)
            logger.debug(f"[{self.session_id}] Evicted idempotency entry {evicted}")
