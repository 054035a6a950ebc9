"""Intents: declarative session state changes returned by tool handlers.

Handlers never touch session state; they return intents inside their
ToolResponse and the StateController applies them.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class IntentType(str, Enum):
    END_SESSION = "END_SESSION"
    SUPPRESS_AUDIO = "SUPPRESS_AUDIO"
    SUPPRESS_TRANSCRIPT = "SUPPRESS_TRANSCRIPT"
    SET_PENDING_MESSAGE = "SET_PENDING_MESSAGE"
    RECORD_TIMEOUT = "RECORD_TIMEOUT"


END_IMMEDIATE = "immediate"
END_AFTER_TURN = "current_turn"


@dataclass(frozen=True)
class EndSession:
    after: str = END_AFTER_TURN
    reason: Optional[str] = None
    closing_message: Optional[str] = None
    type = IntentType.END_SESSION

    def to_dict(self) -> Dict[str, Any]:
        out = {"type": self.type.value, "after": self.after}
        if self.reason:
            out["reason"] = self.reason
        if self.closing_message:
            out["closing_message"] = self.closing_message
        return out


@dataclass(frozen=True)
class SuppressAudio:
    value: bool = True
    type = IntentType.SUPPRESS_AUDIO

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class SuppressTranscript:
    value: bool = True
    type = IntentType.SUPPRESS_TRANSCRIPT

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class SetPendingMessage:
    message: str
    type = IntentType.SET_PENDING_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "message": self.message}


@dataclass(frozen=True)
class RecordTimeout:
    until: float
    duration_seconds: int = 0
    type = IntentType.RECORD_TIMEOUT

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "until": self.until, "duration_seconds": self.duration_seconds}


@dataclass(frozen=True)
class UnknownIntent:
    """Anything with a type string we don't recognise. Kept so it can be logged and ignored."""
    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.params}


Intent = Union[EndSession, SuppressAudio, SuppressTranscript, SetPendingMessage, RecordTimeout, UnknownIntent]


def parse_intent(raw: Union[Intent, Dict[str, Any]]) -> Intent:
    """Convert a handler-supplied dict into a typed intent.

    Raises ValueError when the payload has no type string at all.
    """
    if not isinstance(raw, dict):
        if hasattr(raw, "to_dict"):
            return raw
        raise ValueError(f"Intent must be a dict, got {type(raw).__name__}")

    itype = raw.get("type")
    if not isinstance(itype, str) or not itype:
        raise ValueError("Intent must have a type string")

    params = {k: v for k, v in raw.items() if k != "type"}

    if itype == IntentType.END_SESSION:
        after = params.get("after")
        if after not in (END_IMMEDIATE, END_AFTER_TURN):
            logger.warning(f"END_SESSION intent with after={after!r}, defaulting to immediate")
            after = END_IMMEDIATE
        return EndSession(after=after, reason=params.get("reason"),
                          closing_message=params.get("closing_message"))

    if itype in (IntentType.SUPPRESS_AUDIO, IntentType.SUPPRESS_TRANSCRIPT):
        value = params.get("value", True)
        if not isinstance(value, bool):
            logger.warning(f"{itype} intent with non-boolean value {value!r}, defaulting to True")
            value = True
        cls = SuppressAudio if itype == IntentType.SUPPRESS_AUDIO else SuppressTranscript
        return cls(value=value)

    if itype == IntentType.SET_PENDING_MESSAGE:
        return SetPendingMessage(message=params.get("message") or "")

    if itype == IntentType.RECORD_TIMEOUT:
        try:
            until = float(params["until"])
        except (KeyError, TypeError, ValueError):
            return UnknownIntent(type=itype, params=params)
        return RecordTimeout(until=until, duration_seconds=int(params.get("duration_seconds") or 0))

    return UnknownIntent(type=itype, params=params)
