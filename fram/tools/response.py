"""ToolResponse: the single envelope every tool execution returns.

Invariants:
  - ok=True carries no error; ok=False always carries an error with
    type, message and retryable
  - intents may ride on both success and failure
  - meta is always present once the registry has seen the response
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from .errors import ErrorType
from .intents import Intent, parse_intent

RESPONSE_SCHEMA_VERSION = "1.0.0"


@dataclass(frozen=True)
class ToolFailure:
    type: str
    message: str
    retryable: bool = False
    partial_side_effects: bool = False
    details: Optional[Dict[str, Any]] = None
    confirmation_request: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "type": self.type,
            "message": self.message,
            "retryable": self.retryable,
            "partialSideEffects": self.partial_side_effects,
        }
        if self.details is not None:
            out["details"] = self.details
        if self.confirmation_request is not None:
            out["confirmation_request"] = self.confirmation_request
        return out


@dataclass(frozen=True)
class ToolResponse:
    ok: bool
    data: Any = None
    error: Optional[ToolFailure] = None
    intents: List[Intent] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.ok and self.error is not None:
            raise ValueError("ToolResponse with ok=True must not carry an error")
        if not self.ok and self.error is None:
            raise ValueError("ToolResponse with ok=False must carry an error")

    @classmethod
    def success(cls, data: Any = None, intents: Optional[List[Any]] = None) -> "ToolResponse":
        return cls(ok=True, data=data, intents=[parse_intent(i) for i in intents or []])

    @classmethod
    def failure(
        cls,
        error_type: Union[ErrorType, str],
        message: str,
        retryable: bool = False,
        partial_side_effects: bool = False,
        details: Optional[Dict[str, Any]] = None,
        confirmation_request: Optional[Dict[str, Any]] = None,
        intents: Optional[List[Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "ToolResponse":
        error = ToolFailure(
            type=ErrorType(error_type).value if isinstance(error_type, ErrorType) else str(error_type),
            message=message,
            retryable=retryable,
            partial_side_effects=partial_side_effects,
            details=details,
            confirmation_request=confirmation_request,
        )
        return cls(ok=False, error=error, intents=[parse_intent(i) for i in intents or []], meta=dict(meta or {}))

    @property
    def error_type(self) -> Optional[str]:
        return self.error.type if self.error else None

    def with_meta(self, **fields) -> "ToolResponse":
        return replace(self, meta={**self.meta, **fields})

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok}
        if self.ok:
            out["data"] = self.data
        else:
            out["error"] = self.error.to_dict()
        out["intents"] = [i.to_dict() for i in self.intents]
        out["meta"] = dict(self.meta)
        return out

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ToolResponse":
        """Build from a handler's plain-dict return value. Raises ValueError on a malformed envelope."""
        validate_tool_response(payload)
        intents = [parse_intent(i) for i in payload.get("intents") or []]
        meta = dict(payload.get("meta") or {})
        if payload["ok"]:
            return cls(ok=True, data=payload.get("data"), intents=intents, meta=meta)
        err = payload["error"]
        return cls(
            ok=False,
            error=ToolFailure(
                type=err["type"],
                message=err["message"],
                retryable=err["retryable"],
                partial_side_effects=bool(err.get("partialSideEffects", False)),
                details=err.get("details"),
                confirmation_request=err.get("confirmation_request"),
            ),
            intents=intents,
            meta=meta,
        )


def validate_tool_response(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise ValueError("ToolResponse must be an object")
    if not isinstance(payload.get("ok"), bool):
        raise ValueError("ToolResponse.ok must be boolean")

    if payload["ok"] is False:
        err = payload.get("error")
        if not isinstance(err, dict):
            raise ValueError("ToolResponse with ok=false must have an error object")
        if not isinstance(err.get("type"), str) or not err["type"]:
            raise ValueError("ToolResponse.error must have a type string")
        if not isinstance(err.get("message"), str) or not err["message"]:
            raise ValueError("ToolResponse.error must have a message string")
        if not isinstance(err.get("retryable"), bool):
            raise ValueError("ToolResponse.error must have a retryable boolean")
    elif "error" in payload and payload["error"] is not None:
        raise ValueError("ToolResponse with ok=true must not have an error")

    intents = payload.get("intents")
    if intents is not None:
        if not isinstance(intents, list):
            raise ValueError("ToolResponse.intents must be a list")
        for intent in intents:
            if not isinstance(intent, dict) or not isinstance(intent.get("type"), str):
                raise ValueError("Each intent must be an object with a type string")

    if payload.get("meta") is not None and not isinstance(payload["meta"], dict):
        raise ValueError("ToolResponse.meta must be an object")
