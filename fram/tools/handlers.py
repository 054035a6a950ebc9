"""Explicit handler table: tool id -> async handler.

Handlers register themselves with ``@BUILTIN_HANDLERS.register("kb_search")``
when their module is imported; ``fram.tools.builtin`` imports all of them.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable]


class HandlerTable:
    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def register(self, tool_id: str):
        """Decorator to bind a handler function to a tool id."""
        def decorator(func):
            if tool_id in self._handlers and self._handlers[tool_id] is not func:
                raise ValueError(f"Handler for {tool_id} already registered")
            self._handlers[tool_id] = func
            logger.debug(f"Registered handler: {tool_id}")
            return func
        return decorator

    def add(self, tool_id: str, func: Handler):
        self.register(tool_id)(func)

    def get(self, tool_id: str) -> Optional[Handler]:
        return self._handlers.get(tool_id)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._handlers


BUILTIN_HANDLERS = HandlerTable()
