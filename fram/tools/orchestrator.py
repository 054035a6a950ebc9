"""Per-session orchestrator: gates, executes and folds back proposed tool calls.

Gate order for every proposed call:
  session active -> tool known / mode allowed -> idempotency cache ->
  loop detection -> turn budgets -> confirmation -> execute (+retry) ->
  cache and memory write -> intents

Text turns chain calls until the model stops, a chain-stopping error comes
back, or the call budget runs out. Voice serves one call per provider
tool-call event and hands control straight back.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from .confirmation import ConfirmationRejected, ConfirmationStore, DEFAULT_TTL_SECONDS, split_token
from .context import ExecutionContext, Messenger
from .definition import Mode, ToolMetadata
from .errors import ErrorType
from .idempotency import idempotency_key
from .loop_detector import LoopDetector
from .memory import ToolMemory
from .policy import DEPTH_LIMIT_NOTICE, TurnBudget, default_budget, stops_chain
from .registry import RegistrySnapshot
from .response import RESPONSE_SCHEMA_VERSION, ToolResponse
from .retry import DEFAULT_DELAY_SECONDS, execute_with_retry
from .state import StateController
from .transport import ProposedCall, ToolTransport

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("fram.audit")

Completer = Callable[[bool], Awaitable[Any]]


@dataclass
class CallOutcome:
    call: ProposedCall
    response: ToolResponse
    executed: bool = False
    discarded: bool = False


@dataclass
class TurnResult:
    text: str = ""
    depth_limited: bool = False
    calls: List[CallOutcome] = field(default_factory=list)
    confirmation_request: Optional[dict] = None
    session_active: bool = True


def message_text(message: Any) -> str:
    if message is None:
        return ""
    if isinstance(message, dict):
        return message.get("content") or ""
    return getattr(message, "content", None) or ""


class Orchestrator:
    def __init__(
        self,
        registry: RegistrySnapshot,
        state: StateController,
        transport: ToolTransport,
        budget: Optional[TurnBudget] = None,
        messenger: Optional[Messenger] = None,
        confirmation_ttl: float = DEFAULT_TTL_SECONDS,
        retry_delay: float = DEFAULT_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.state = state
        self.transport = transport
        self.budget = budget or default_budget(state.mode)
        self.messenger = messenger
        self.retry_delay = retry_delay
        self.loops = LoopDetector()
        self.confirmations = ConfirmationStore(ttl_seconds=confirmation_ttl, clock=clock)
        self.memory = ToolMemory(clock=clock)

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def mode(self) -> Mode:
        return self.state.mode

    # ──── Turn lifecycle ────

    def begin_turn(self) -> int:
        self.loops.reset()
        return self.state.begin_turn()

    def end_turn(self) -> bool:
        """Close the turn. Returns True if a pending END_SESSION took effect."""
        return self.state.complete_turn()

    def chain_exhausted(self) -> bool:
        return self.state.get("total_calls_this_turn") >= self.budget.max_total_calls

    # ──── Gates ────

    def _reject(self, call: ProposedCall, error_type: ErrorType, message: str,
                tool: Optional[ToolMetadata] = None, **kwargs) -> ToolResponse:
        return ToolResponse.failure(error_type, message, partial_side_effects=False, **kwargs).with_meta(
            toolId=call.name,
            toolVersion=tool.version if tool else None,
            registryVersion=self.registry.version,
            durationMs=0,
            responseSchemaVersion=RESPONSE_SCHEMA_VERSION,
        )

    def _context(self) -> ExecutionContext:
        return ExecutionContext(
            session_id=self.session_id,
            mode=self.mode,
            session=self.state.view(),
            messenger=self.messenger,
            memory=self.memory,
        )

    async def _process(self, call: ProposedCall, token: Optional[str] = None,
                       confirmed: bool = False) -> CallOutcome:
        sid = self.session_id

        if not self.state.is_active:
            response = self._reject(call, ErrorType.SESSION_INACTIVE, "Session is no longer active")
            return CallOutcome(call, response, discarded=True)

        tool = self.registry.get_metadata(call.name)
        if tool is None:
            return CallOutcome(call, self._reject(call, ErrorType.NOT_FOUND, f"Tool {call.name} not found"))
        if not tool.allows(self.mode):
            return CallOutcome(call, self._reject(
                call, ErrorType.MODE_RESTRICTED,
                f"Tool {call.name} is not available in {self.mode.value} mode", tool,
            ))
        if call.args is None:
            return CallOutcome(call, self._reject(
                call, ErrorType.VALIDATION, "Invalid parameters: arguments are not a JSON object", tool,
            ))

        args, arg_token = split_token(call.args)
        token = token or arg_token

        key = idempotency_key(call.name, args, self.state.turn, call.id, call.stable_id)
        cached = self.state.recall(key)
        if cached is not None:
            logger.info(f"[{sid}] {call.name} served from idempotency cache ({key})")
            return CallOutcome(call, cached.with_meta(cacheHit=True))

        verdict = self.loops.check(call.name, args)
        if verdict is not None:
            logger.warning(f"[{sid}] Loop detected: {verdict.kind} for {call.name}")
            return CallOutcome(call, self._reject(
                call, ErrorType.LOOP_DETECTED, verdict.message, tool,
                details={"kind": verdict.kind, "count": verdict.count},
            ))

        if tool.is_retrieval and self.state.get("retrieval_calls_this_turn") >= self.budget.max_retrieval_calls:
            return CallOutcome(call, self._reject(
                call, ErrorType.BUDGET_EXCEEDED,
                f"Retrieval budget of {self.budget.max_retrieval_calls} calls per turn reached. "
                "Answer with what you already know.", tool,
            ))
        if self.chain_exhausted():
            return CallOutcome(call, self._reject(
                call, ErrorType.BUDGET_EXCEEDED,
                f"Tool call budget of {self.budget.max_total_calls} calls per turn reached.", tool,
            ))

        if tool.requires_confirmation and not confirmed:
            if token is None:
                pending = self.confirmations.issue(call.name, args, tool.description)
                return CallOutcome(call, self._reject(
                    call, ErrorType.CONFIRMATION_REQUIRED,
                    f"{call.name} needs the user's confirmation. Show the preview and wait.",
                    tool, confirmation_request=pending.to_request(),
                ))
            try:
                self.confirmations.redeem(token, call.name, args)
            except ConfirmationRejected as e:
                logger.info(f"[{sid}] Confirmation for {call.name} rejected: {e.reason}")
                return CallOutcome(call, self._reject(
                    call, ErrorType.CONFIRMATION_REQUIRED, e.message, tool,
                    details={"reason": e.reason},
                ))

        self.state.count_call(tool.is_retrieval)
        ctx = self._context()
        response = await execute_with_retry(
            lambda: self.registry.execute(call.name, args, ctx),
            self.mode, tool, delay=self.retry_delay,
        )
        self.loops.record(call.name, args, response)

        duration = response.meta.get("durationMs") or 0
        if duration > tool.latency_budget_ms:
            logger.warning(
                f"[{sid}] {call.name} took {duration}ms, over its {tool.latency_budget_ms}ms budget"
            )

        if not self.state.is_active:
            logger.info(f"[{sid}] Session went inactive during {call.name}; result discarded")
            return CallOutcome(call, response, executed=True, discarded=True)

        self.state.remember(key, response)
        self.memory.record(call.id, call.name, args, response, self.state.turn)
        self.state.apply_all(response.intents)
        return CallOutcome(call, response, executed=True)

    def _audit(self, outcome: CallOutcome):
        r = outcome.response
        audit_logger.info(json.dumps({
            "ts": round(time.time(), 3),
            "event": "tool_call",
            "session": self.session_id,
            "mode": self.mode.value,
            "turn": self.state.turn,
            "tool": outcome.call.name,
            "callId": outcome.call.id,
            "ok": r.ok,
            "errorType": r.error_type,
            "executed": outcome.executed,
            "discarded": outcome.discarded,
            "cacheHit": bool(r.meta.get("cacheHit")),
            "durationMs": r.meta.get("durationMs"),
        }, default=str))

    async def handle_call(self, call: ProposedCall, confirmation_token: Optional[str] = None) -> ToolResponse:
        """Run one proposed call through every gate. Does not deliver."""
        outcome = await self._process(call, token=confirmation_token)
        self._audit(outcome)
        return outcome.response

    async def confirm(self, token: str) -> ToolResponse:
        """Redeem a token presented out of band and run the call it was issued for."""
        try:
            pending = self.confirmations.redeem(token)
        except ConfirmationRejected as e:
            logger.info(f"[{self.session_id}] Out-of-band confirmation rejected: {e.reason}")
            return ToolResponse.failure(
                ErrorType.CONFIRMATION_REQUIRED, e.message, details={"reason": e.reason},
            ).with_meta(registryVersion=self.registry.version, responseSchemaVersion=RESPONSE_SCHEMA_VERSION)
        call = ProposedCall(id=f"confirm:{token}", name=pending.tool_id, args=pending.args)
        outcome = await self._process(call, confirmed=True)
        self._audit(outcome)
        return outcome.response

    # ──── Voice ────

    async def serve_voice_event(self, event: Any) -> List[CallOutcome]:
        """Serve the first proposed call in a provider event; extra calls are refused."""
        calls = self.transport.extract_calls(event)
        outcomes = []
        for i, call in enumerate(calls):
            if i == 0:
                outcome = await self._process(call)
            else:
                outcome = CallOutcome(call, self._reject(
                    call, ErrorType.BUDGET_EXCEEDED, "Only one tool call is served per voice turn",
                ))
            self._audit(outcome)
            if not outcome.discarded:
                await self.transport.deliver(call, outcome.response)
            outcomes.append(outcome)
        return outcomes

    # ──── Text ────

    async def run_text_turn(self, complete: Completer,
                            text_of: Callable[[Any], str] = message_text) -> TurnResult:
        """Drive one text turn.

        ``complete(tools_enabled)`` asks the model for its next message (and
        records it in the conversation); tool results go back through the
        transport. Returns the final reply with the depth notice appended
        when the chain cap cut off a proposed call.
        """
        result = TurnResult()
        if not self.state.is_active:
            result.session_active = False
            return result

        self.begin_turn()
        halt: Optional[str] = None
        tools_enabled = True
        message = await complete(True)

        while True:
            calls = self.transport.extract_calls(message)
            if not calls:
                break
            for call in calls:
                if halt is not None:
                    outcome = CallOutcome(call, self._reject(
                        call, ErrorType.BUDGET_EXCEEDED, "No further tool calls this turn",
                    ))
                else:
                    outcome = await self._process(call)
                    if outcome.discarded:
                        self._audit(outcome)
                        result.session_active = False
                        return result
                    etype = outcome.response.error_type
                    if etype == ErrorType.BUDGET_EXCEEDED.value:
                        halt = "depth"
                    elif stops_chain(etype):
                        halt = "error"
                self._audit(outcome)
                await self.transport.deliver(call, outcome.response)
                result.calls.append(outcome)
                err = outcome.response.error
                if err is not None and err.confirmation_request:
                    result.confirmation_request = err.confirmation_request

            if not tools_enabled or not self.state.is_active:
                break
            tools_enabled = halt is None
            message = await complete(tools_enabled)

        text = text_of(message)
        if halt == "depth":
            result.depth_limited = True
            text = f"{text}\n\n{DEPTH_LIMIT_NOTICE}" if text else DEPTH_LIMIT_NOTICE
            logger.info(f"[{self.session_id}] Chain depth limit reached in turn {self.state.turn}")
        result.text = text
        self.end_turn()
        result.session_active = self.state.is_active
        return result
