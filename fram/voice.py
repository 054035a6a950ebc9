"""Realtime voice providers: connection setup and event classification.

A provider knows how to open its socket, configure the model with the
registry's tool declarations, wrap microphone audio, and recognise the
events the bridge cares about (tool calls, audio, transcripts, turn end).
"""
import base64
import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from .config import settings
from .tools.registry import RegistrySnapshot
from .tools.transport import GeminiLiveTransport, OpenAIRealtimeTransport, Sender, ToolTransport

logger = logging.getLogger(__name__)

VOICE_INSTRUCTIONS = """You are Fram, the voice assistant on a personal portfolio site. Speak briefly and naturally.

Tools available in this conversation:
{tool_summaries}

Tool results are JSON envelopes. If "ok" is false, never read the error out loud: answer with what you already know, or say you could not find it. Use at most one tool per reply."""


def voice_instructions(registry: RegistrySnapshot) -> str:
    summaries = registry.get_summaries(mode="voice") or "(none)"
    return VOICE_INSTRUCTIONS.replace("{tool_summaries}", summaries)


class VoiceProvider:
    name = ""

    def connection(self) -> Tuple[str, Dict[str, str]]:
        raise NotImplementedError

    def setup_messages(self, registry: RegistrySnapshot) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def audio_message(self, chunk: bytes) -> Dict[str, Any]:
        raise NotImplementedError

    def user_text_messages(self, text: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def make_transport(self, send: Sender) -> ToolTransport:
        raise NotImplementedError

    def is_turn_complete(self, event: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def is_tool_output(self, event: Dict[str, Any]) -> bool:
        """True for client messages that would answer a tool call themselves."""
        raise NotImplementedError

    def filter_event(self, event: Dict[str, Any], suppress_audio: bool,
                     suppress_transcript: bool) -> Optional[Dict[str, Any]]:
        """Return the event to forward to the client, or None to drop it."""
        raise NotImplementedError


# ──── OpenAI Realtime ────

OPENAI_AUDIO_EVENTS = {"response.audio.delta", "response.output_audio.delta"}
OPENAI_TRANSCRIPT_EVENTS = {
    "response.audio_transcript.delta",
    "response.audio_transcript.done",
    "response.output_audio_transcript.delta",
    "response.output_audio_transcript.done",
    "conversation.item.input_audio_transcription.delta",
    "conversation.item.input_audio_transcription.completed",
}


class OpenAIRealtimeProvider(VoiceProvider):
    name = "openai"

    def __init__(self, api_key: str = "", url: str = "", model: str = "", voice: str = ""):
        self.api_key = api_key or settings.openai_api_key
        self.url = url or settings.openai_realtime_url
        self.model = model or settings.openai_realtime_model
        self.voice = voice or settings.openai_realtime_voice

    def connection(self):
        headers = {"Authorization": f"Bearer {self.api_key}", "OpenAI-Beta": "realtime=v1"}
        return f"{self.url}?model={self.model}", headers

    def setup_messages(self, registry):
        return [{
            "type": "session.update",
            "session": {
                "instructions": voice_instructions(registry),
                "voice": self.voice,
                "tools": registry.get_provider_schemas("openai_realtime", mode="voice"),
                "tool_choice": "auto",
                "input_audio_transcription": {"model": "whisper-1"},
            },
        }]

    def audio_message(self, chunk):
        return {"type": "input_audio_buffer.append", "audio": base64.b64encode(chunk).decode("ascii")}

    def user_text_messages(self, text):
        return [
            {
                "type": "conversation.item.create",
                "item": {"type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]},
            },
            {"type": "response.create"},
        ]

    def make_transport(self, send):
        return OpenAIRealtimeTransport(send)

    def is_turn_complete(self, event):
        # A response that only carried function calls is followed by the model's answer.
        if event.get("type") != "response.done":
            return False
        output = (event.get("response") or {}).get("output") or []
        return not any(item.get("type") == "function_call" for item in output)

    def is_tool_output(self, event):
        item = event.get("item") or {}
        return event.get("type") == "conversation.item.create" and item.get("type") == "function_call_output"

    def filter_event(self, event, suppress_audio, suppress_transcript):
        etype = event.get("type")
        if suppress_audio and etype in OPENAI_AUDIO_EVENTS:
            return None
        if suppress_transcript and etype in OPENAI_TRANSCRIPT_EVENTS:
            return None
        return event


# ──── Gemini Live ────

class GeminiLiveProvider(VoiceProvider):
    name = "gemini"

    def __init__(self, api_key: str = "", url: str = "", model: str = ""):
        self.api_key = api_key or settings.gemini_api_key
        self.url = url or settings.gemini_live_url
        self.model = model or settings.gemini_live_model

    def connection(self):
        return f"{self.url}?key={self.api_key}", {}

    def setup_messages(self, registry):
        return [{
            "setup": {
                "model": self.model,
                "generationConfig": {"responseModalities": ["AUDIO"]},
                "systemInstruction": {"parts": [{"text": voice_instructions(registry)}]},
                "tools": [{"functionDeclarations": registry.get_provider_schemas("gemini", mode="voice")}],
                "inputAudioTranscription": {},
                "outputAudioTranscription": {},
            }
        }]

    def audio_message(self, chunk):
        return {"realtimeInput": {"mediaChunks": [{
            "mimeType": "audio/pcm;rate=16000",
            "data": base64.b64encode(chunk).decode("ascii"),
        }]}}

    def user_text_messages(self, text):
        return [{"clientContent": {"turns": [{"role": "user", "parts": [{"text": text}]}], "turnComplete": True}}]

    def make_transport(self, send):
        return GeminiLiveTransport(send)

    def is_turn_complete(self, event):
        return bool((event.get("serverContent") or {}).get("turnComplete"))

    def is_tool_output(self, event):
        return "toolResponse" in event or "tool_response" in event

    def filter_event(self, event, suppress_audio, suppress_transcript):
        content = event.get("serverContent")
        if not content or not (suppress_audio or suppress_transcript):
            return event

        content = copy.deepcopy(content)
        if suppress_audio and "modelTurn" in content:
            parts = [p for p in content["modelTurn"].get("parts", []) if "inlineData" not in p]
            if parts:
                content["modelTurn"]["parts"] = parts
            else:
                del content["modelTurn"]
        if suppress_transcript:
            content.pop("inputTranscription", None)
            content.pop("outputTranscription", None)
        if not content:
            return None
        return {**event, "serverContent": content}


def get_provider(name: Optional[str] = None) -> VoiceProvider:
    name = (name or settings.voice_provider).lower()
    if name == "openai":
        return OpenAIRealtimeProvider()
    if name == "gemini":
        return GeminiLiveProvider()
    raise ValueError(f"Unknown voice provider: {name}")
