"""Tests for fram/voice.py providers and the fram/ws_server.py bridge."""
import asyncio
import base64
import json
import time

import pytest

from fram import ws_server
from fram.tools.intents import END_IMMEDIATE, EndSession, RecordTimeout, SuppressAudio
from fram.tools.response import ToolResponse
from fram.tools.transport import GeminiLiveTransport, OpenAIRealtimeTransport
from fram.voice import GeminiLiveProvider, OpenAIRealtimeProvider, get_provider, voice_instructions
from fram.ws_server import VoiceBridge, timeout_remaining


class FakeSocket:
    """Records sent frames; iterates over scripted incoming frames, then optionally
    hangs or waits for ``until`` before ending."""

    def __init__(self, incoming=(), hang=False, until=None):
        self.incoming = list(incoming)
        self.sent = []
        self.hang = hang
        self.until = until

    async def send(self, data):
        self.sent.append(data)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self.incoming:
            yield message
        if self.until is not None:
            await self.until.wait()
        elif self.hang:
            await asyncio.Event().wait()

    def decoded(self):
        return [json.loads(m) for m in self.sent]


def openai_provider():
    return OpenAIRealtimeProvider(api_key="sk-test", url="wss://realtime.test/v1", model="rt-model", voice="alloy")


def gemini_provider():
    return GeminiLiveProvider(api_key="g-key", url="wss://live.test/ws", model="models/live")


def function_call_event(name="kb_search", call_id="c1", **args):
    return {"type": "response.function_call_arguments.done", "call_id": call_id,
            "name": name, "arguments": json.dumps(args)}


@pytest.fixture
def voice_registry(make_registry, tool_entry):
    return make_registry(
        tool_entry("kb_search", summary="Search the knowledge base."),
        tool_entry("end_voice_session", category="action", modes=("voice",)),
        tool_entry("leave_message", category="action", modes=("text",)),
    )


@pytest.fixture
def make_bridge(voice_registry):
    def factory(provider=None, client_id="browser-1"):
        return VoiceBridge(FakeSocket(), FakeSocket(), provider or openai_provider(), voice_registry,
                           client_id=client_id)
    return factory


@pytest.fixture(autouse=True)
def clean_timeouts(monkeypatch):
    monkeypatch.setattr(ws_server, "_timeouts", {})


class TestOpenAIRealtimeProvider:
    def test_connection(self):
        url, headers = openai_provider().connection()
        assert url == "wss://realtime.test/v1?model=rt-model"
        assert headers["Authorization"] == "Bearer sk-test"
        assert headers["OpenAI-Beta"] == "realtime=v1"

    def test_setup_uses_voice_tools(self, voice_registry):
        (msg,) = openai_provider().setup_messages(voice_registry.snapshot())
        session = msg["session"]
        assert msg["type"] == "session.update"
        assert [t["name"] for t in session["tools"]] == ["end_voice_session", "kb_search"]
        assert "**kb_search** (retrieval): Search the knowledge base." in session["instructions"]
        assert "leave_message" not in session["instructions"]

    def test_audio_message(self):
        msg = openai_provider().audio_message(b"\x00\x01")
        assert msg == {"type": "input_audio_buffer.append", "audio": base64.b64encode(b"\x00\x01").decode()}

    def test_user_text_requests_response(self):
        msgs = openai_provider().user_text_messages("hello")
        assert msgs[0]["item"]["content"][0] == {"type": "input_text", "text": "hello"}
        assert msgs[-1] == {"type": "response.create"}

    def test_turn_complete(self):
        p = openai_provider()
        assert p.is_turn_complete({"type": "response.done", "response": {"output": [{"type": "message"}]}})
        assert not p.is_turn_complete({"type": "response.done", "response": {"output": [{"type": "function_call"}]}})
        assert not p.is_turn_complete({"type": "response.audio.delta"})

    def test_tool_output(self):
        p = openai_provider()
        assert p.is_tool_output({"type": "conversation.item.create", "item": {"type": "function_call_output"}})
        assert not p.is_tool_output({"type": "conversation.item.create", "item": {"type": "message"}})

    def test_filter_event(self):
        p = openai_provider()
        audio = {"type": "response.audio.delta", "delta": "AAA"}
        transcript = {"type": "response.audio_transcript.delta", "delta": "hi"}
        assert p.filter_event(audio, False, False) is audio
        assert p.filter_event(audio, True, False) is None
        assert p.filter_event(transcript, True, False) is transcript
        assert p.filter_event(transcript, False, True) is None

    def test_transport(self):
        assert isinstance(openai_provider().make_transport(lambda e: None), OpenAIRealtimeTransport)


class TestGeminiLiveProvider:
    def test_connection(self):
        url, headers = gemini_provider().connection()
        assert url == "wss://live.test/ws?key=g-key"
        assert headers == {}

    def test_setup(self, voice_registry):
        (msg,) = gemini_provider().setup_messages(voice_registry.snapshot())
        setup = msg["setup"]
        assert setup["model"] == "models/live"
        decls = setup["tools"][0]["functionDeclarations"]
        assert [d["name"] for d in decls] == ["end_voice_session", "kb_search"]

    def test_turn_complete_and_tool_output(self):
        p = gemini_provider()
        assert p.is_turn_complete({"serverContent": {"turnComplete": True}})
        assert not p.is_turn_complete({"serverContent": {"modelTurn": {}}})
        assert p.is_tool_output({"toolResponse": {"functionResponses": []}})

    def test_filter_strips_audio_parts(self):
        event = {"serverContent": {"modelTurn": {"parts": [
            {"inlineData": {"mimeType": "audio/pcm", "data": "AAA"}},
            {"text": "hi"},
        ]}, "outputTranscription": {"text": "hi"}}}
        out = gemini_provider().filter_event(event, True, True)
        assert out == {"serverContent": {"modelTurn": {"parts": [{"text": "hi"}]}}}
        assert len(event["serverContent"]["modelTurn"]["parts"]) == 2

    def test_filter_drops_empty(self):
        event = {"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data": "AAA"}}]}}}
        assert gemini_provider().filter_event(event, True, False) is None

    def test_transport(self):
        assert isinstance(gemini_provider().make_transport(lambda e: None), GeminiLiveTransport)


class TestGetProvider:
    def test_known(self):
        assert get_provider("OpenAI").name == "openai"
        assert get_provider("gemini").name == "gemini"

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_provider("carrier-pigeon")


def test_voice_instructions_empty_registry(make_registry, tool_entry):
    snap = make_registry(tool_entry("leave_message", modes=("text",))).snapshot()
    assert "(none)" in voice_instructions(snap)


class TestTimeouts:
    def test_no_timeout(self):
        assert timeout_remaining("browser-1") == 0.0
        assert timeout_remaining(None) == 0.0

    def test_active_and_expired(self):
        ws_server._timeouts["browser-1"] = 1000.0
        assert timeout_remaining("browser-1", now=940.0) == 60.0
        assert timeout_remaining("browser-1", now=1001.0) == 0.0
        assert "browser-1" not in ws_server._timeouts


class TestVoiceBridge:
    @pytest.mark.asyncio
    async def test_start(self, make_bridge):
        bridge = make_bridge()
        await bridge.start("tell me about robots")
        upstream = bridge.upstream.decoded()
        assert upstream[0]["type"] == "session.update"
        assert upstream[1]["item"]["content"][0]["text"] == "tell me about robots"
        ready = bridge.client.decoded()[0]
        assert ready["type"] == "session_ready"
        assert ready["provider"] == "openai"
        assert ready["registry_version"] == "1.0.deadbeef"

    @pytest.mark.asyncio
    async def test_client_messages(self, make_bridge):
        bridge = make_bridge()
        await bridge.handle_client_message(b"\x01\x02")
        await bridge.handle_client_message('{"type": "ping"}')
        await bridge.handle_client_message("{not json")
        await bridge.handle_client_message(json.dumps(
            {"type": "conversation.item.create", "item": {"type": "function_call_output", "output": "{}"}}))
        await bridge.handle_client_message('{"type": "input_audio_buffer.commit"}')

        assert [e["type"] for e in bridge.upstream.decoded()] == ["input_audio_buffer.append", "input_audio_buffer.commit"]
        assert [e["type"] for e in bridge.client.decoded()] == ["pong", "error"]

    @pytest.mark.asyncio
    async def test_tool_call_served_locally(self, make_bridge, handlers):
        bridge = make_bridge()
        assert await bridge.handle_provider_event(function_call_event(query="robots"))

        assert handlers.count("kb_search") == 1
        assert bridge.client.sent == []
        sent = bridge.upstream.decoded()
        assert sent[0]["item"]["type"] == "function_call_output"
        assert json.loads(sent[0]["item"]["output"])["ok"] is True
        assert bridge.session.state.get("turn") == 1

    @pytest.mark.asyncio
    async def test_one_turn_per_response(self, make_bridge, handlers):
        bridge = make_bridge()
        await bridge.handle_provider_event(function_call_event(query="a"))
        await bridge.handle_provider_event({"type": "response.done", "response": {"output": [{"type": "function_call"}]}})
        await bridge.handle_provider_event(function_call_event(call_id="c2", query="b"))
        assert bridge.session.state.get("turn") == 1
        assert bridge.session.state.get("total_calls_this_turn") == 2

        await bridge.handle_provider_event({"type": "response.done", "response": {"output": [{"type": "message"}]}})
        assert not bridge.turn_open
        await bridge.handle_provider_event(function_call_event(call_id="c3", query="c"))
        assert bridge.session.state.get("turn") == 2

    @pytest.mark.asyncio
    async def test_suppressed_audio_not_forwarded(self, make_bridge):
        bridge = make_bridge()
        bridge.session.state.apply(SuppressAudio(True))
        await bridge.handle_provider_event({"type": "response.audio.delta", "delta": "AAA"})
        await bridge.handle_provider_event({"type": "response.text.delta", "delta": "ok"})
        assert [e["type"] for e in bridge.client.decoded()] == ["response.text.delta"]

    @pytest.mark.asyncio
    async def test_end_session_stops_bridge(self, make_bridge, handlers):
        handlers.bind("end_voice_session", ToolResponse.success(
            {"ended": True}, intents=[EndSession(after=END_IMMEDIATE, reason="user_goodbye")],
        ))
        bridge = make_bridge()
        assert not await bridge.handle_provider_event(function_call_event("end_voice_session", query="bye"))
        assert bridge.session.state.get("ended_reason") == "user_goodbye"

    @pytest.mark.asyncio
    async def test_run_closes_on_client_disconnect(self, voice_registry):
        client = FakeSocket(incoming=['{"type": "ping"}'])
        upstream = FakeSocket(hang=True)
        bridge = VoiceBridge(client, upstream, openai_provider(), voice_registry)
        await bridge.run()
        assert not bridge.session.is_active
        assert bridge.session.state.get("ended_reason") == "client_disconnected"

    @pytest.mark.asyncio
    async def test_run_closes_on_provider_end(self, voice_registry):
        bridge = VoiceBridge(FakeSocket(hang=True), FakeSocket(incoming=['{"type": "session.created"}']),
                             openai_provider(), voice_registry)
        await bridge.run()
        assert bridge.session.state.get("ended_reason") == "provider_closed"
        assert bridge.client.decoded() == [{"type": "session.created"}]

    @pytest.mark.asyncio
    async def test_disconnect_lets_running_tool_finish(self, make_registry, tool_entry, handlers):
        started = asyncio.Event()
        finished = []

        async def slow_search(args, ctx):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(bridge.session.is_active)
            return ToolResponse.success({"results": [{"id": "project:robots"}]})

        handlers.table.add("kb_search", slow_search)
        registry = make_registry(tool_entry("kb_search"))
        client = FakeSocket(until=started)
        upstream = FakeSocket(incoming=[json.dumps(function_call_event(query="robots"))], hang=True)
        bridge = VoiceBridge(client, upstream, openai_provider(), registry)
        await bridge.run()

        assert finished == [False]
        assert bridge.session.state.get("ended_reason") == "client_disconnected"
        assert upstream.sent == []

    def test_finish_records_timeout(self, make_bridge):
        bridge = make_bridge(client_id="browser-9")
        bridge.session.state.apply(RecordTimeout(until=time.time() + 300, duration_seconds=300))
        bridge.finish()
        assert 290 < timeout_remaining("browser-9") <= 300

    def test_finish_without_client_id(self, make_bridge):
        bridge = make_bridge(client_id="")
        bridge.session.state.apply(RecordTimeout(until=time.time() + 300))
        bridge.finish()
        assert ws_server._timeouts == {}
