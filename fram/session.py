"""Session wiring: one state controller + one orchestrator per conversation."""
import time
import uuid
from typing import Optional

from .config import settings
from .tools.definition import Mode
from .tools.policy import TurnBudget
from .tools.registry import RegistrySnapshot
from .tools.state import StateController
from .tools.orchestrator import Orchestrator
from .tools.transport import ToolTransport


def budget_for(mode) -> TurnBudget:
    if Mode(mode) == Mode.VOICE:
        return TurnBudget(settings.voice_max_retrieval_calls, settings.voice_max_total_calls)
    return TurnBudget(settings.text_max_retrieval_calls, settings.text_max_total_calls)


class Session:
    """Per-conversation state. Mode is fixed at creation."""

    def __init__(self, mode, registry: RegistrySnapshot, transport: ToolTransport,
                 client_id: str = "", messenger=None, budget: Optional[TurnBudget] = None):
        self.session_id = str(uuid.uuid4())[:8]
        self.client_id = client_id
        self.mode = Mode(mode)
        self.registry = registry
        self.state = StateController(self.mode, session_id=self.session_id,
                                     cache_size=settings.idempotency_cache_size)
        self.orchestrator = Orchestrator(
            registry,
            self.state,
            transport,
            budget=budget or budget_for(self.mode),
            messenger=messenger,
            confirmation_ttl=settings.confirmation_ttl_s,
            retry_delay=settings.text_retry_delay_s,
        )

        # Activity tracking
        now = time.monotonic()
        self.first_activity_time = now
        self.last_activity_time = now

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity_time = time.monotonic()

    def idle_seconds(self) -> float:
        """Seconds since last activity."""
        return time.monotonic() - self.last_activity_time

    def close(self, reason: str = "closed"):
        self.state.deactivate(reason)
