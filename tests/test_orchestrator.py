"""Tests for fram/tools/orchestrator.py: gates, budgets, chaining, voice serving."""
import json
from unittest.mock import AsyncMock

import pytest

from fram.tools.errors import ErrorType, ToolError
from fram.tools.intents import EndSession, SuppressAudio
from fram.tools.policy import DEPTH_LIMIT_NOTICE, TurnBudget, default_budget
from fram.tools.response import ToolResponse
from fram.tools.transport import GeminiLiveTransport, OpenAIChatTransport, OpenAIRealtimeTransport, ProposedCall

META_KEYS = {"toolId", "toolVersion", "registryVersion", "durationMs", "responseSchemaVersion"}


def call(name, call_id="c1", **args):
    return ProposedCall(id=call_id, name=name, args=args)


def tool_message(name, call_id, **args):
    return {
        "role": "assistant",
        "content": None,
        "tool_calls": [{"id": call_id, "type": "function",
                        "function": {"name": name, "arguments": json.dumps(args)}}],
    }


def scripted_model(*messages, final="Done"):
    """Completer that replays tool-call messages, then answers with text."""
    queue = list(messages)
    seen = []

    async def complete(tools_enabled):
        seen.append(tools_enabled)
        if tools_enabled and queue:
            return queue.pop(0)
        return {"role": "assistant", "content": final}

    complete.seen = seen
    return complete


class TestGates:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_orchestrator, tool_entry):
        orch = make_orchestrator(tool_entry("kb_search"))
        r = await orch.handle_call(call("nope", query="x"))
        assert r.error_type == "NOT_FOUND"
        assert set(r.meta) == META_KEYS

    @pytest.mark.asyncio
    async def test_voice_only_tool_refused_in_text(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("end_voice_session", category="action", modes=("voice",)))
        r = await orch.handle_call(call("end_voice_session", query="x"))
        assert r.error_type == "MODE_RESTRICTED"
        assert handlers.count() == 0

    @pytest.mark.asyncio
    async def test_text_only_tool_refused_in_voice(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("web_search", modes=("text",)), mode="voice")
        r = await orch.handle_call(call("web_search", query="x"))
        assert r.error_type == "MODE_RESTRICTED"
        assert handlers.count() == 0

    @pytest.mark.asyncio
    async def test_unparseable_arguments(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"))
        r = await orch.handle_call(ProposedCall(id="c1", name="kb_search", args=None, raw_arguments="{oops"))
        assert r.error_type == "VALIDATION"
        assert handlers.count() == 0

    @pytest.mark.asyncio
    async def test_inactive_session(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"))
        orch.state.deactivate("disconnected")
        r = await orch.handle_call(call("kb_search", query="x"))
        assert r.error_type == "SESSION_INACTIVE"
        assert handlers.count() == 0


class TestIdempotencyAndLoops:
    @pytest.mark.asyncio
    async def test_same_call_id_served_from_cache(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"))
        orch.begin_turn()
        first = await orch.handle_call(call("kb_search", "c1", query="x"))
        again = await orch.handle_call(call("kb_search", "c1", query="x"))
        assert first.ok and again.ok
        assert again.meta["cacheHit"] is True
        assert again.data == first.data
        assert handlers.count() == 1

    @pytest.mark.asyncio
    async def test_repeated_call_rejected(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"))
        orch.begin_turn()
        await orch.handle_call(call("kb_search", "c1", query="x"))
        r = await orch.handle_call(call("kb_search", "c2", query="x"))
        assert r.error_type == "LOOP_DETECTED"
        assert r.error.details == {"kind": "SAME_CALL_REPEATED", "count": 2}
        assert handlers.count() == 1

    @pytest.mark.asyncio
    async def test_repeat_without_stable_id_served_from_cache(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice")
        orch.begin_turn()
        first = await orch.handle_call(ProposedCall(id="g1", name="kb_search", args={"query": "x"}, stable_id=False))
        again = await orch.handle_call(ProposedCall(id="g2", name="kb_search", args={"query": "x"}, stable_id=False))
        assert again.ok
        assert again.meta["cacheHit"] is True
        assert again.data == first.data
        assert handlers.count() == 1

    @pytest.mark.asyncio
    async def test_loop_state_resets_each_turn(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"))
        orch.begin_turn()
        await orch.handle_call(call("kb_search", "c1", query="x"))
        orch.end_turn()
        orch.begin_turn()
        r = await orch.handle_call(call("kb_search", "c2", query="x"))
        assert r.ok
        assert handlers.count() == 2

    @pytest.mark.asyncio
    async def test_empty_results_stop_tool(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("kb_search", ToolResponse.success({"results": []}))
        orch = make_orchestrator(tool_entry("kb_search"))
        orch.begin_turn()
        await orch.handle_call(call("kb_search", "c1", query="a"))
        await orch.handle_call(call("kb_search", "c2", query="b"))
        r = await orch.handle_call(call("kb_search", "c3", query="c"))
        assert r.error.details["kind"] == "EMPTY_RESULTS_REPEATED"
        assert handlers.count() == 2


class TestBudgets:
    @pytest.mark.asyncio
    async def test_voice_retrieval_budget(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice")
        orch.begin_turn()
        results = [await orch.handle_call(call("kb_search", f"c{i}", query=f"q{i}")) for i in range(3)]
        assert [r.ok for r in results] == [True, True, False]
        assert results[2].error_type == "BUDGET_EXCEEDED"
        assert handlers.count() == 2

    @pytest.mark.asyncio
    async def test_total_budget(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("lookup", category="action"), budget=TurnBudget(4, 2))
        orch.begin_turn()
        results = [await orch.handle_call(call("lookup", f"c{i}", query=f"q{i}")) for i in range(3)]
        assert results[2].error_type == "BUDGET_EXCEEDED"
        assert orch.chain_exhausted()
        assert handlers.count() == 2

    @pytest.mark.asyncio
    async def test_rejections_do_not_count(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice")
        orch.begin_turn()
        await orch.handle_call(call("kb_search", "c1", query="x"))
        await orch.handle_call(call("kb_search", "c2", query="x"))  # loop
        r = await orch.handle_call(call("kb_search", "c3", query="y"))
        assert r.ok
        assert orch.state.get("retrieval_calls_this_turn") == 2


class TestConfirmation:
    def entry(self, tool_entry):
        params = {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
            "additionalProperties": False,
        }
        return tool_entry("leave_message", category="action", side_effects="writes", idempotent=False,
                          requires_confirmation=True, modes=("text",), parameters=params)

    @pytest.mark.asyncio
    async def test_token_issued_then_redeemed_inline(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(self.entry(tool_entry))
        orch.begin_turn()
        r = await orch.handle_call(call("leave_message", "c1", message="hi"))
        assert r.error_type == "CONFIRMATION_REQUIRED"
        token = r.error.confirmation_request["token"]
        assert "message=hi" in r.error.confirmation_request["preview"]
        assert handlers.count() == 0

        ok = await orch.handle_call(call("leave_message", "c2", message="hi", confirmation_token=token))
        assert ok.ok
        assert handlers.calls[0][1] == {"message": "hi"}

    @pytest.mark.asyncio
    async def test_out_of_band_confirm(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(self.entry(tool_entry))
        orch.begin_turn()
        r = await orch.handle_call(call("leave_message", "c1", message="hi"))
        ok = await orch.confirm(r.error.confirmation_request["token"])
        assert ok.ok
        assert handlers.count("leave_message") == 1

        again = await orch.confirm(r.error.confirmation_request["token"])
        assert again.error_type == "CONFIRMATION_REQUIRED"
        assert again.error.details == {"reason": "unknown"}
        assert handlers.count("leave_message") == 1

    @pytest.mark.asyncio
    async def test_expired_token(self, make_orchestrator, tool_entry, handlers, clock):
        orch = make_orchestrator(self.entry(tool_entry))
        orch.begin_turn()
        r = await orch.handle_call(call("leave_message", "c1", message="hi"))
        clock.advance(301)
        expired = await orch.handle_call(call(
            "leave_message", "c2", message="hi", confirmation_token=r.error.confirmation_request["token"],
        ))
        assert expired.error_type == "CONFIRMATION_REQUIRED"
        assert expired.error.details == {"reason": "expired"}
        assert expired.error.confirmation_request is None
        assert handlers.count() == 0

    @pytest.mark.asyncio
    async def test_token_for_other_args(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(self.entry(tool_entry))
        orch.begin_turn()
        r = await orch.handle_call(call("leave_message", "c1", message="hi"))
        token = r.error.confirmation_request["token"]
        swapped = await orch.handle_call(call("leave_message", "c2", message="send money", confirmation_token=token))
        assert swapped.error.details == {"reason": "mismatch"}
        assert handlers.count() == 0


class TestIntentsAndCancellation:
    @pytest.mark.asyncio
    async def test_intents_applied(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("mute", ToolResponse.success({"muted": True}, intents=[SuppressAudio(True)]))
        orch = make_orchestrator(tool_entry("mute", category="action"), mode="voice")
        orch.begin_turn()
        await orch.handle_call(call("mute", query="x"))
        assert orch.state.get("suppress_audio") is True
        orch.end_turn()
        assert orch.state.get("suppress_audio") is False

    @pytest.mark.asyncio
    async def test_result_discarded_when_session_ends_mid_call(self, make_orchestrator, tool_entry, handlers):
        holder = {}

        def hang_up(args, ctx):
            holder["orch"].state.deactivate("client_disconnected")
            return ToolResponse.success({"results": [1]})

        handlers.bind("kb_search", hang_up)
        send = AsyncMock()
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice", transport=OpenAIRealtimeTransport(send))
        holder["orch"] = orch
        orch.begin_turn()

        outcomes = await orch.serve_voice_event({
            "type": "response.function_call_arguments.done",
            "call_id": "c1", "name": "kb_search", "arguments": '{"query": "x"}',
        })
        assert outcomes[0].executed and outcomes[0].discarded
        send.assert_not_awaited()
        assert orch.state.recall("call:c1") is None


class TestToolMemory:
    @pytest.mark.asyncio
    async def test_executed_calls_recorded(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice")
        orch.begin_turn()
        await orch.handle_call(call("kb_search", "c1", query="robots"))
        await orch.handle_call(call("kb_search", "c2", query="robots"))  # loop, not executed
        await orch.handle_call(call("nope", "c3"))

        (record,) = orch.memory.query()
        assert record.call_id == "c1"
        assert record.turn == 1
        assert record.full_response["ok"] is True

    @pytest.mark.asyncio
    async def test_handlers_see_memory(self, make_orchestrator, tool_entry, handlers):
        seen = []
        handlers.bind("recall", lambda args, ctx: seen.append([r.call_id for r in ctx.memory.query()]))
        orch = make_orchestrator(tool_entry("kb_search"), tool_entry("recall", category="utility"))
        model = scripted_model(tool_message("kb_search", "c1", query="robots"),
                               tool_message("recall", "c2", query="what did I search"))
        await orch.run_text_turn(model)

        assert seen == [["c1"]]
        assert [r.call_id for r in orch.memory.query()] == ["c2", "c1"]


class TestVoice:
    @pytest.mark.asyncio
    async def test_one_call_per_event(self, make_orchestrator, tool_entry, handlers):
        send = AsyncMock()
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice", transport=GeminiLiveTransport(send))
        orch.begin_turn()
        outcomes = await orch.serve_voice_event({"toolCall": {"functionCalls": [
            {"id": "g1", "name": "kb_search", "args": {"query": "a"}},
            {"id": "g2", "name": "kb_search", "args": {"query": "b"}},
        ]}})
        assert [o.response.ok for o in outcomes] == [True, False]
        assert outcomes[1].response.error_type == "BUDGET_EXCEEDED"
        assert handlers.count() == 1
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_realtime_delivery(self, make_orchestrator, tool_entry):
        send = AsyncMock()
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice", transport=OpenAIRealtimeTransport(send))
        orch.begin_turn()
        await orch.serve_voice_event({
            "type": "response.function_call_arguments.done",
            "call_id": "c9", "name": "kb_search", "arguments": '{"query": "x"}',
        })
        item = send.await_args_list[0].args[0]
        assert item["type"] == "conversation.item.create"
        assert item["item"]["call_id"] == "c9"
        assert json.loads(item["item"]["output"])["ok"] is True
        assert send.await_args_list[1].args[0] == {"type": "response.create"}

    @pytest.mark.asyncio
    async def test_voice_does_not_retry(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("kb_search", ToolError(ErrorType.TRANSIENT, "blip"))
        orch = make_orchestrator(tool_entry("kb_search"), mode="voice", transport=OpenAIRealtimeTransport(AsyncMock()))
        orch.begin_turn()
        r = await orch.handle_call(call("kb_search", query="x"))
        assert r.error_type == "TRANSIENT"
        assert handlers.count() == 1


class TestTextTurn:
    @pytest.mark.asyncio
    async def test_plain_answer(self, make_orchestrator, tool_entry):
        orch = make_orchestrator(tool_entry("kb_search"))
        result = await orch.run_text_turn(scripted_model(final="Hello!"))
        assert result.text == "Hello!"
        assert result.calls == []
        assert orch.state.turn == 1

    @pytest.mark.asyncio
    async def test_chain_then_answer(self, make_orchestrator, tool_entry, handlers):
        transport = OpenAIChatTransport()
        orch = make_orchestrator(tool_entry("kb_search"), transport=transport)
        model = scripted_model(tool_message("kb_search", "c1", query="robots"), final="Found it.")
        result = await orch.run_text_turn(model)

        assert result.text == "Found it."
        assert not result.depth_limited
        assert handlers.count() == 1
        assert model.seen == [True, True]
        assert transport.history[0]["role"] == "tool"
        assert transport.history[0]["tool_call_id"] == "c1"
        assert json.loads(transport.history[0]["content"])["ok"] is True

    @pytest.mark.asyncio
    async def test_depth_limit(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("lookup", category="action"))
        model = scripted_model(*[tool_message("lookup", f"c{i}", query=f"q{i}") for i in range(6)],
                               final="Here is what I found.")
        result = await orch.run_text_turn(model)

        assert handlers.count() == 5
        assert result.depth_limited
        assert result.text == f"Here is what I found.\n\n{DEPTH_LIMIT_NOTICE}"
        assert result.calls[-1].response.error_type == "BUDGET_EXCEEDED"
        assert model.seen[-1] is False

    @pytest.mark.asyncio
    async def test_retrieval_chain_reaches_depth_limit(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), budget=default_budget("text"))
        model = scripted_model(*[tool_message("kb_search", f"c{i}", query=f"q{i}") for i in range(6)],
                               final="Here is what I found.")
        result = await orch.run_text_turn(model)

        assert handlers.count() == 5
        assert result.depth_limited
        assert result.text.endswith(DEPTH_LIMIT_NOTICE)
        assert model.seen[-1] is False

    @pytest.mark.asyncio
    async def test_retrieval_cap_below_chain_cap_shows_notice(self, make_orchestrator, tool_entry, handlers):
        orch = make_orchestrator(tool_entry("kb_search"), budget=TurnBudget(2, 5))
        model = scripted_model(*[tool_message("kb_search", f"c{i}", query=f"q{i}") for i in range(3)])
        result = await orch.run_text_turn(model)

        assert handlers.count() == 2
        assert result.depth_limited
        assert result.text == f"Done\n\n{DEPTH_LIMIT_NOTICE}"

    @pytest.mark.asyncio
    async def test_chain_stops_on_permanent_error(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("kb_get", ToolError(ErrorType.PERMANENT, "no such entity"))
        orch = make_orchestrator(tool_entry("kb_get"))
        model = scripted_model(tool_message("kb_get", "c1", query="x"), tool_message("kb_get", "c2", query="y"))
        result = await orch.run_text_turn(model)

        assert handlers.count() == 1
        assert model.seen == [True, False]
        assert not result.depth_limited
        assert result.text == "Done"

    @pytest.mark.asyncio
    async def test_text_retries_transient(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("kb_search", ToolError(ErrorType.TRANSIENT, "blip"), ToolResponse.success({"results": [1]}))
        orch = make_orchestrator(tool_entry("kb_search"))
        result = await orch.run_text_turn(scripted_model(tool_message("kb_search", "c1", query="x")))
        assert result.calls[0].response.ok
        assert handlers.count() == 2

    @pytest.mark.asyncio
    async def test_confirmation_request_surfaced(self, make_orchestrator, tool_entry):
        orch = make_orchestrator(tool_entry("leave_message", category="action", requires_confirmation=True,
                                            idempotent=False, side_effects="writes"))
        result = await orch.run_text_turn(scripted_model(tool_message("leave_message", "c1", query="hi")))
        assert result.confirmation_request["token"]
        assert set(result.confirmation_request) == {"token", "preview", "expiresAt"}

    @pytest.mark.asyncio
    async def test_end_session_after_turn(self, make_orchestrator, tool_entry, handlers):
        handlers.bind("bye", ToolResponse.success(
            {"ending": True}, intents=[EndSession(after="current_turn", reason="user_request")],
        ))
        orch = make_orchestrator(tool_entry("bye", category="action"))
        result = await orch.run_text_turn(scripted_model(tool_message("bye", "c1", query="x"), final="Goodbye!"))
        assert result.text == "Goodbye!"
        assert result.session_active is False

        again = await orch.run_text_turn(scripted_model(final="ignored"))
        assert again.session_active is False
        assert again.text == ""
