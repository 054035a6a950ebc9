from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

# ── HTTP: text channel ────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=8000)
    session_id: Optional[str] = None

class ToolCallSummary(BaseModel):
    tool: str
    ok: bool
    error_type: Optional[str] = None
    cache_hit: bool = False

class ChatResponse(BaseModel):
    session_id: str
    reply: str
    depth_limited: bool = False
    tool_calls: List[ToolCallSummary] = []
    confirmation_request: Optional[Dict[str, Any]] = None
    voice_session_requested: bool = False
    pending_message: Optional[str] = None
    session_active: bool = True
    timeout_until: Optional[float] = None

class ConfirmRequest(BaseModel):
    session_id: str
    token: str

class ConfirmResponse(BaseModel):
    session_id: str
    result: Dict[str, Any]

class ToolsResponse(BaseModel):
    registry_version: str
    source_revision: Optional[str] = None
    mode: str
    tools: List[str]
    summaries: str

# ── WebSocket: voice client ───────────────────────────────────

class Hello(BaseModel):
    type: Literal["hello"]
    client_id: Optional[str] = None
    pending_message: Optional[str] = None

class SessionReady(BaseModel):
    type: Literal["session_ready"] = "session_ready"
    session_id: str
    provider: str
    registry_version: str

class SessionEnded(BaseModel):
    type: Literal["session_ended"] = "session_ended"
    session_id: str
    reason: Optional[str] = None

class ErrorMsg(BaseModel):
    type: Literal["error"] = "error"
    message: str
