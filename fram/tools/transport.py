"""Provider boundary: extract proposed calls, deliver ToolResponses.

Every transport delivers the full envelope (ok, data/error, intents, meta),
never just ``data``, so the model can see error types and retryability.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .response import ToolResponse

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class ProposedCall:
    id: str
    name: str
    args: Optional[Dict[str, Any]]  # None when the provider sent unparseable arguments
    stable_id: bool = True
    raw_arguments: Optional[str] = None


def parse_arguments(raw: Any, tool_name: str = "") -> Optional[Dict[str, Any]]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse arguments for {tool_name}: {e}")
        return None
    return value if isinstance(value, dict) else None


def envelope_json(response: ToolResponse) -> str:
    return json.dumps(response.to_dict(), ensure_ascii=False, default=str)


def _field(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class ToolTransport(ABC):
    @abstractmethod
    def extract_calls(self, message: Any) -> List[ProposedCall]:
        ...

    @abstractmethod
    async def deliver(self, call: ProposedCall, response: ToolResponse):
        ...


class OpenAIChatTransport(ToolTransport):
    """Chat-completions: calls come on the assistant message, results go into the history."""

    def __init__(self, history: Optional[List[Dict[str, Any]]] = None):
        self.history = history if history is not None else []

    def extract_calls(self, message) -> List[ProposedCall]:
        calls = []
        for tc in _field(message, "tool_calls") or []:
            fn = _field(tc, "function")
            name = _field(fn, "name", "")
            raw = _field(fn, "arguments")
            calls.append(ProposedCall(
                id=_field(tc, "id"),
                name=name,
                args=parse_arguments(raw, name),
                raw_arguments=raw if isinstance(raw, str) else None,
            ))
        return calls

    async def deliver(self, call: ProposedCall, response: ToolResponse):
        self.history.append({
            "role": "tool",
            "tool_call_id": call.id,
            "content": envelope_json(response),
        })


class OpenAIRealtimeTransport(ToolTransport):
    CALL_EVENT = "response.function_call_arguments.done"

    def __init__(self, send: Sender, request_response: bool = True):
        self.send = send
        self.request_response = request_response

    def extract_calls(self, event) -> List[ProposedCall]:
        if not isinstance(event, dict) or event.get("type") != self.CALL_EVENT:
            return []
        call_id, name = event.get("call_id"), event.get("name")
        if not call_id or not name:
            return []
        raw = event.get("arguments")
        return [ProposedCall(
            id=call_id,
            name=name,
            args=parse_arguments(raw, name),
            raw_arguments=raw if isinstance(raw, str) else None,
        )]

    async def deliver(self, call: ProposedCall, response: ToolResponse):
        await self.send({
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call.id,
                "output": envelope_json(response),
            },
        })
        if self.request_response:
            await self.send({"type": "response.create"})


class GeminiLiveTransport(ToolTransport):
    """Gemini Live: ``toolCall.functionCalls`` in, ``toolResponse.functionResponses`` out."""

    def __init__(self, send: Sender):
        self.send = send

    def extract_calls(self, event) -> List[ProposedCall]:
        if not isinstance(event, dict):
            return []
        tool_call = event.get("toolCall") or event.get("tool_call") or {}
        calls = []
        for fc in tool_call.get("functionCalls") or tool_call.get("function_calls") or []:
            name = fc.get("name")
            if not name:
                continue
            call_id = fc.get("id")
            calls.append(ProposedCall(
                id=call_id or name,
                name=name,
                args=parse_arguments(fc.get("args"), name),
                stable_id=bool(call_id),
            ))
        return calls

    async def deliver(self, call: ProposedCall, response: ToolResponse):
        function_response = {"name": call.name, "response": response.to_dict()}
        if call.stable_id:
            function_response["id"] = call.id
        await self.send({"toolResponse": {"functionResponses": [function_response]}})
