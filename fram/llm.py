"""Text-channel model driver: chat completions with registry tools."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import settings
from .session import Session
from .tools.orchestrator import TurnResult
from .tools.response import ToolResponse
from .tools.transport import OpenAIChatTransport, envelope_json

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Fram, the assistant on a personal portfolio site. You answer questions about the owner's projects, experience and writing, and help visitors get in touch.
Today's date/time: {current_datetime}

Tools available in this chat:
{tool_summaries}

Rules:
- Look things up with kb_search before answering questions about the owner; never invent projects or dates.
- Tool results are JSON envelopes. When "ok" is false, read error.type: fix your arguments after VALIDATION, do not repeat a call after LOOP_DETECTED or BUDGET_EXCEEDED, and answer with what you already know.
- When error.type is CONFIRMATION_REQUIRED, show the preview to the user and wait for them to confirm.
- Keep answers short and in the user's language."""


def _get_client() -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )


def _field(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def message_to_history(message: Any) -> Dict[str, Any]:
    """Assistant message (SDK object or dict) -> chat history entry."""
    entry: Dict[str, Any] = {"role": "assistant", "content": _field(message, "content") or ""}
    tool_calls = _field(message, "tool_calls") or []
    if tool_calls:
        entry["tool_calls"] = [
            {
                "id": _field(tc, "id"),
                "type": "function",
                "function": {
                    "name": _field(_field(tc, "function"), "name"),
                    "arguments": _field(_field(tc, "function"), "arguments") or "{}",
                },
            }
            for tc in tool_calls
        ]
    return entry


class TextAgent:
    """One per text session. Owns the chat history the transport writes tool results into."""

    def __init__(self, session: Session, client: Optional[AsyncOpenAI] = None,
                 model: Optional[str] = None, max_history: Optional[int] = None):
        if not isinstance(session.orchestrator.transport, OpenAIChatTransport):
            raise ValueError("TextAgent needs a session built on OpenAIChatTransport")
        self.session = session
        self.history: List[Dict[str, Any]] = session.orchestrator.transport.history
        self._client = client
        self.model = model or settings.openai_chat_model
        self.max_history = max_history or settings.max_history
        self.tools = session.registry.get_provider_schemas("openai", mode=session.mode)

    @property
    def client(self) -> AsyncOpenAI:
        """Built on first use so a missing API key fails the turn, not session creation."""
        if self._client is None:
            self._client = _get_client()
        return self._client

    def system_prompt(self) -> str:
        now_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S (%A)")
        summaries = self.session.registry.get_summaries(mode=self.session.mode) or "(none)"
        return SYSTEM_PROMPT.replace("{current_datetime}", now_str).replace("{tool_summaries}", summaries)

    def _trim(self):
        """Drop whole exchanges from the front; never split a tool call from its results."""
        while len(self.history) > self.max_history:
            cut = next((i for i, m in enumerate(self.history) if i > 0 and m.get("role") == "user"), None)
            if cut is None:
                break
            del self.history[:cut]

    async def complete(self, tools_enabled: bool):
        messages = [{"role": "system", "content": self.system_prompt()}] + self.history
        kwargs: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self.tools:
            kwargs["tools"] = self.tools
            if not tools_enabled:
                kwargs["tool_choice"] = "none"

        response = await self.client.chat.completions.create(**kwargs)
        message = response.choices[0].message
        self.history.append(message_to_history(message))

        n_calls = len(_field(message, "tool_calls") or [])
        logger.info(f"[{self.session.session_id}] Model replied ({n_calls} tool calls, tools={'on' if tools_enabled else 'off'})")
        return message

    async def reply(self, text: str) -> TurnResult:
        self.history.append({"role": "user", "content": text})
        self._trim()
        return await self.session.orchestrator.run_text_turn(self.complete)

    def record_confirmation(self, tool_id: str, response: ToolResponse):
        self.history.append({
            "role": "system",
            "content": f"The user confirmed {tool_id} outside the chat. Result: {envelope_json(response)}",
        })
