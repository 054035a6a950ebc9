"""WebSocket voice bridge: client <-> realtime provider, tool calls served locally.

Client protocol:
  1. client sends {"type": "hello", "client_id": ..., "pending_message": ...}
  2. server answers session_ready once the provider is configured
  3. binary frames are microphone PCM; text frames are provider events
  4. provider events are relayed back, minus tool calls and suppressed output
"""
import asyncio
import json
import logging
import time
import traceback
from typing import Any, Dict, Optional

import websockets
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import ServerConnection, serve

from .config import settings
from .protocol import ErrorMsg, Hello, SessionEnded, SessionReady
from .session import Session
from .tools.definition import Mode
from .tools.registry import ToolRegistry
from .voice import VoiceProvider, get_provider

logger = logging.getLogger(__name__)

WS_SEND_TIMEOUT = 5.0
HELLO_TIMEOUT = 10.0

# client_id -> epoch seconds until which the client is refused
_timeouts: Dict[str, float] = {}


def timeout_remaining(client_id: Optional[str], now: Optional[float] = None) -> float:
    if not client_id or client_id not in _timeouts:
        return 0.0
    remaining = _timeouts[client_id] - (now if now is not None else time.time())
    if remaining <= 0:
        _timeouts.pop(client_id, None)
        return 0.0
    return remaining


async def ws_send_safe(ws, data, label: str = "", session_id: str = "-") -> bool:
    """Send data via WebSocket with timeout. Returns True on success."""
    if not isinstance(data, (str, bytes)):
        data = json.dumps(data, ensure_ascii=False)
    try:
        await asyncio.wait_for(ws.send(data), timeout=WS_SEND_TIMEOUT)
        return True
    except asyncio.TimeoutError:
        logger.error(f"[{session_id}] ws.send() timed out ({WS_SEND_TIMEOUT}s) {label}")
        return False
    except Exception as e:
        logger.warning(f"[{session_id}] ws.send() failed {label}: {type(e).__name__}: {e}")
        return False


def _decode(message) -> Optional[Dict[str, Any]]:
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    try:
        event = json.loads(message)
    except ValueError:
        return None
    return event if isinstance(event, dict) else None


class VoiceBridge:
    """One client connection bound to one provider connection and one voice session."""

    def __init__(self, client, upstream, provider: VoiceProvider, registry: ToolRegistry,
                 client_id: str = ""):
        self.client = client
        self.upstream = upstream
        self.provider = provider
        self.session = Session(
            Mode.VOICE,
            registry.snapshot(),
            provider.make_transport(self.send_upstream),
            client_id=client_id,
            messenger=self.send_client,
        )
        self.turn_open = False
        self._in_flight: Optional[asyncio.Future] = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    async def send_upstream(self, event: Dict[str, Any]):
        await self.upstream.send(json.dumps(event, ensure_ascii=False))

    async def send_client(self, message: Dict[str, Any]):
        await ws_send_safe(self.client, message, label=message.get("type", ""), session_id=self.session_id)

    async def start(self, pending_message: Optional[str] = None):
        for msg in self.provider.setup_messages(self.session.registry):
            await self.send_upstream(msg)
        await self.send_client(SessionReady(
            session_id=self.session_id,
            provider=self.provider.name,
            registry_version=self.session.registry.version,
        ).model_dump())
        if pending_message:
            logger.info(f"[{self.session_id}] Replaying pending request from text chat")
            for msg in self.provider.user_text_messages(pending_message):
                await self.send_upstream(msg)

    # ──── Client -> provider ────

    async def handle_client_message(self, message):
        self.session.touch()
        if isinstance(message, bytes):
            await self.send_upstream(self.provider.audio_message(message))
            return

        event = _decode(message)
        if event is None:
            await self.send_client(ErrorMsg(message="invalid json").model_dump())
            return
        if event.get("type") == "ping":
            await self.send_client({"type": "pong"})
            return
        if self.provider.is_tool_output(event):
            logger.warning(f"[{self.session_id}] Dropping client-sent tool output")
            return
        await self.send_upstream(event)

    # ──── Provider -> client ────

    async def handle_provider_event(self, event: Dict[str, Any]) -> bool:
        """Returns False once the session has ended."""
        orchestrator = self.session.orchestrator
        if orchestrator.transport.extract_calls(event):
            if not self.turn_open:
                orchestrator.begin_turn()
                self.turn_open = True
            # shielded: a dropped connection must not cancel a handler mid-call
            self._in_flight = asyncio.ensure_future(orchestrator.serve_voice_event(event))
            await asyncio.shield(self._in_flight)
            return self.session.is_active

        state = self.session.state
        forwarded = self.provider.filter_event(
            event, state.get("suppress_audio"), state.get("suppress_transcript"),
        )
        if forwarded is not None:
            await self.send_client(forwarded)

        if self.provider.is_turn_complete(event):
            self.turn_open = False
            orchestrator.end_turn()
        return self.session.is_active

    async def _client_loop(self):
        async for message in self.client:
            await self.handle_client_message(message)

    async def _provider_loop(self):
        async for message in self.upstream:
            event = _decode(message)
            if event is None:
                logger.warning(f"[{self.session_id}] Undecodable provider message dropped")
                continue
            if not await self.handle_provider_event(event):
                return

    async def run(self):
        client_task = asyncio.create_task(self._client_loop())
        provider_task = asyncio.create_task(self._provider_loop())
        done, pending = await asyncio.wait({client_task, provider_task}, return_when=asyncio.FIRST_COMPLETED)
        self.session.close("client_disconnected" if client_task in done else "provider_closed")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._drain_in_flight()

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                if not isinstance(exc, websockets.exceptions.ConnectionClosed):
                    raise exc

    async def _drain_in_flight(self):
        """Let a tool call that was running at disconnect finish; the closed session discards its result."""
        task = self._in_flight
        if task is None:
            return
        running = not task.done()
        if running:
            logger.info(f"[{self.session_id}] Waiting for in-flight tool call to finish")
        (result,) = await asyncio.gather(task, return_exceptions=True)
        if running and isinstance(result, BaseException):
            logger.warning(f"[{self.session_id}] In-flight tool call failed after disconnect: {type(result).__name__}: {result}")

    def finish(self):
        """Record a requested timeout so reconnects from this client are refused."""
        until = self.session.state.get("timeout_until")
        if self.session.client_id and until and until > time.time():
            _timeouts[self.session.client_id] = until
            logger.info(f"[{self.session_id}] Client {self.session.client_id} timed out for {until - time.time():.0f}s")


async def _read_hello(ws) -> Optional[Hello]:
    try:
        raw = await asyncio.wait_for(ws.recv(), timeout=HELLO_TIMEOUT)
        return Hello.model_validate_json(raw)
    except (asyncio.TimeoutError, ValidationError, ValueError) as e:
        logger.warning(f"Bad hello from {ws.remote_address}: {type(e).__name__}")
        return None


async def _refuse(ws, message: str, code: int):
    await ws_send_safe(ws, ErrorMsg(message=message).model_dump(), label="refuse")
    await ws.close(code=code, reason=message[:120])


def make_handler(registry: ToolRegistry, provider_name: Optional[str] = None):
    async def handle_client(ws: ServerConnection):
        """Main WebSocket connection handler: hello, provider connect, relay, cleanup."""
        logger.info(f"New connection from {ws.remote_address}, path: {ws.request.path}")

        hello = await _read_hello(ws)
        if hello is None:
            await _refuse(ws, "expected hello", 4400)
            return

        remaining = timeout_remaining(hello.client_id)
        if remaining:
            logger.info(f"Refusing client {hello.client_id}: timed out for another {remaining:.0f}s")
            await _refuse(ws, "This conversation is paused. Please come back later.", 4403)
            return

        provider = get_provider(provider_name)
        url, headers = provider.connection()
        try:
            upstream: ClientConnection = await connect(url, additional_headers=headers, max_size=None)
        except Exception as e:
            logger.error(f"Provider {provider.name} connection failed: {type(e).__name__}: {e}")
            await _refuse(ws, "voice provider unavailable", 1011)
            return

        bridge = VoiceBridge(ws, upstream, provider, registry, client_id=hello.client_id or "")
        logger.info(f"[{bridge.session_id}] Voice session started via {provider.name}")
        try:
            await bridge.start(hello.pending_message)
            await bridge.run()
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"[{bridge.session_id}] Connection closed")
            bridge.session.close("connection_closed")
        except Exception as e:
            logger.error(f"[{bridge.session_id}] UNHANDLED in voice bridge: {type(e).__name__}: {e}")
            logger.error(traceback.format_exc())
            bridge.session.close("error")
            await ws_send_safe(ws, ErrorMsg(message=f"Internal error: {e}").model_dump(),
                               session_id=bridge.session_id)
        finally:
            bridge.finish()
            reason = bridge.session.state.get("ended_reason")
            await ws_send_safe(ws, SessionEnded(session_id=bridge.session_id, reason=reason).model_dump(),
                               label="session_ended", session_id=bridge.session_id)
            closing = [upstream.close(), ws.close()]
            await asyncio.gather(*closing, return_exceptions=True)
            logger.info(f"[{bridge.session_id}] Voice session ended ({reason})")

    return handle_client


async def start_websocket_server(registry: ToolRegistry):
    """Start the WebSocket server."""
    logger.info(f"Starting WebSocket server on {settings.ws_host}:{settings.ws_port}")

    async with serve(
        make_handler(registry),
        settings.ws_host,
        settings.ws_port,
        max_size=2 ** 20,
        max_queue=64,
    ):
        logger.info(f"WebSocket server listening on ws://{settings.ws_host}:{settings.ws_port}/ws")
        await asyncio.Future()
