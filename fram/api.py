"""REST API routes: text chat, confirmations, tool listing."""
import logging
import time
from typing import Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from .config import settings
from .llm import TextAgent
from .protocol import (
    ChatRequest, ChatResponse, ConfirmRequest, ConfirmResponse, ToolCallSummary, ToolsResponse,
)
from .session import Session
from .tools.definition import Mode
from .tools.errors import ErrorType
from .tools.registry import ToolRegistry
from .tools.transport import OpenAIChatTransport

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


# ── Text sessions ─────────────────────────────────────────────

class TextSessionStore:
    """In-memory text sessions, expired after a period of inactivity."""

    def __init__(self, registry: ToolRegistry, idle_seconds: float = settings.text_session_idle_s,
                 agent_factory: Callable[[Session], TextAgent] = TextAgent):
        self.registry = registry
        self.idle_seconds = idle_seconds
        self.agent_factory = agent_factory
        self._agents: Dict[str, TextAgent] = {}

    def __len__(self):
        return len(self._agents)

    def create(self) -> TextAgent:
        self.purge_idle()
        session = Session(Mode.TEXT, self.registry.snapshot(), OpenAIChatTransport())
        agent = self.agent_factory(session)
        self._agents[session.session_id] = agent
        logger.info(f"[{session.session_id}] Text session created (registry v{session.registry.version})")
        return agent

    def get(self, session_id: str) -> Optional[TextAgent]:
        self.purge_idle()
        return self._agents.get(session_id)

    def end(self, session_id: str, reason: str = "closed") -> bool:
        agent = self._agents.pop(session_id, None)
        if agent is None:
            return False
        agent.session.close(reason)
        return True

    def purge_idle(self):
        for sid in [s for s, a in self._agents.items() if a.session.idle_seconds() > self.idle_seconds]:
            logger.info(f"[{sid}] Text session expired after inactivity")
            self.end(sid, reason="idle")


def get_store(request: Request) -> TextSessionStore:
    return request.app.state.text_sessions


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


def _require_agent(store: TextSessionStore, session_id: str) -> TextAgent:
    agent = store.get(session_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Unknown or expired session")
    return agent


# ── Chat ──────────────────────────────────────────────────────

@router.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest, store: TextSessionStore = Depends(get_store)):
    agent = _require_agent(store, req.session_id) if req.session_id else store.create()
    session = agent.session

    if not session.is_active:
        if session.state.is_timed_out():
            raise HTTPException(status_code=403, detail="This conversation is paused. Please come back later.")
        raise HTTPException(status_code=410, detail="Session has ended")

    session.touch()
    try:
        result = await agent.reply(req.message)
    except Exception as e:
        logger.error(f"[{session.session_id}] Chat turn failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="The assistant is unavailable right now")

    calls = [
        ToolCallSummary(
            tool=o.call.name,
            ok=o.response.ok,
            error_type=o.response.error_type,
            cache_hit=bool(o.response.meta.get("cacheHit")),
        )
        for o in result.calls
    ]
    voice_requested = any(
        o.call.name == "start_voice_session" and o.response.ok for o in result.calls
    )
    timeout_until = session.state.get("timeout_until")
    return ChatResponse(
        session_id=session.session_id,
        reply=result.text,
        depth_limited=result.depth_limited,
        tool_calls=calls,
        confirmation_request=result.confirmation_request,
        voice_session_requested=voice_requested,
        pending_message=session.state.take_pending_message(),
        session_active=result.session_active,
        timeout_until=timeout_until if timeout_until and timeout_until > time.time() else None,
    )


@router.post("/confirm", response_model=ConfirmResponse)
async def confirm(req: ConfirmRequest, store: TextSessionStore = Depends(get_store)):
    agent = _require_agent(store, req.session_id)
    agent.session.touch()

    response = await agent.session.orchestrator.confirm(req.token)
    if response.error_type == ErrorType.CONFIRMATION_REQUIRED.value:
        raise HTTPException(status_code=409, detail=response.error.message)

    tool_id = response.meta.get("toolId", "")
    agent.record_confirmation(tool_id, response)
    logger.info(f"[{req.session_id}] Confirmed {tool_id}: ok={response.ok}")
    return ConfirmResponse(session_id=req.session_id, result=response.to_dict())


@router.delete("/sessions/{session_id}")
async def end_session(session_id: str, store: TextSessionStore = Depends(get_store)):
    if not store.end(session_id, reason="client_closed"):
        raise HTTPException(status_code=404, detail="Unknown or expired session")
    return {"ok": True}


# ── Tools ─────────────────────────────────────────────────────

@router.get("/tools", response_model=ToolsResponse)
async def list_tools(mode: Mode = Mode.TEXT, registry: ToolRegistry = Depends(get_registry)):
    snap = registry.snapshot()
    tools = [t for t in snap.tool_ids if snap.get_metadata(t).allows(mode)]
    return ToolsResponse(
        registry_version=snap.version,
        source_revision=snap.source_revision,
        mode=mode.value,
        tools=tools,
        summaries=snap.get_summaries(mode=mode),
    )
