"""Execution context handed to tool handlers.

Capabilities only: a handler can read the session, query its tool memory,
send a message to the client and write audit events. It never sees the
transport or the state controller.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from .definition import Mode, ToolMetadata
from .memory import ToolMemory

audit_logger = logging.getLogger("fram.audit")

Messenger = Callable[[dict], Awaitable[None]]


@dataclass(frozen=True)
class ExecutionContext:
    session_id: str
    mode: Mode
    session: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    tool: Optional[ToolMetadata] = None
    messenger: Optional[Messenger] = None
    memory: Optional[ToolMemory] = None

    async def send_message(self, message: dict) -> bool:
        """Deliver a message to the client. Returns False when no channel is attached."""
        if self.messenger is None:
            return False
        await self.messenger(message)
        return True

    def audit(self, event: str, **fields):
        record = {
            "ts": round(time.time(), 3),
            "event": event,
            "session": self.session_id,
            "mode": Mode(self.mode).value,
        }
        if self.tool is not None:
            record["tool"] = self.tool.tool_id
        record.update(fields)
        audit_logger.info(json.dumps(record, default=str, ensure_ascii=False))

    def for_tool(self, tool: ToolMetadata) -> "ExecutionContext":
        return ExecutionContext(
            session_id=self.session_id,
            mode=self.mode,
            session=self.session,
            tool=tool,
            messenger=self.messenger,
            memory=self.memory,
        )
