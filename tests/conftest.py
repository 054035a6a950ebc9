"""Shared fixtures: compiled tool entries, recording handlers, orchestrators."""
import json
from pathlib import Path

import pytest

from fram.tools.adapters import PROVIDER_ADAPTERS
from fram.tools.handlers import HandlerTable
from fram.tools.orchestrator import Orchestrator
from fram.tools.registry import ToolRegistry
from fram.tools.response import ToolResponse
from fram.tools.state import StateController
from fram.tools.transport import OpenAIChatTransport

DEFAULT_PARAMS = {
    "type": "object",
    "properties": {"query": {"type": "string", "minLength": 1}},
    "required": ["query"],
    "additionalProperties": False,
}


def _tool_entry(tool_id, category="retrieval", modes=("text", "voice"), side_effects="read_only",
                idempotent=True, requires_confirmation=False, parameters=None, latency_budget_ms=2000,
                version="1.0.0", summary=None, description=None):
    entry = {
        "toolId": tool_id,
        "version": version,
        "category": category,
        "description": description or f"{tool_id} test tool",
        "sideEffects": side_effects,
        "idempotent": idempotent,
        "requiresConfirmation": requires_confirmation,
        "allowedModes": list(modes),
        "latencyBudgetMs": latency_budget_ms,
        "jsonSchema": parameters or DEFAULT_PARAMS,
        "summary": summary or f"Summary of {tool_id}.",
        "documentation": f"# {tool_id}\n\n## Purpose\nTesting.",
        "handler": tool_id,
    }
    entry["providerSchemas"] = {p: adapt(entry) for p, adapt in PROVIDER_ADAPTERS.items()}
    return entry


def _artifact(*entries, version="1.0.deadbeef"):
    return {
        "version": version,
        "sourceRevision": None,
        "buildTimestamp": "2026-01-01T00:00:00+00:00",
        "tools": list(entries),
    }


class RecordingHandlers:
    """Handler table whose handlers record calls and replay scripted results."""

    def __init__(self):
        self.table = HandlerTable()
        self.calls = []

    def bind(self, tool_id, *results):
        """Each call pops the next result; the last one repeats.

        A result may be a ToolResponse, a dict, an exception to raise, or a
        callable ``(args, ctx) -> result``.
        """
        script = list(results) or [None]

        async def handler(args, ctx):
            self.calls.append((tool_id, args, ctx))
            result = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(result, BaseException):
                raise result
            if callable(result):
                result = result(args, ctx)
            if result is None:
                return ToolResponse.success({"echo": args})
            return result

        self.table.add(tool_id, handler)
        return handler

    def count(self, tool_id=None):
        return sum(1 for c in self.calls if tool_id is None or c[0] == tool_id)


@pytest.fixture
def tool_entry():
    return _tool_entry


@pytest.fixture
def artifact():
    return _artifact


@pytest.fixture
def handlers():
    return RecordingHandlers()


@pytest.fixture
def make_registry(handlers):
    def factory(*entries, production=False, version="1.0.deadbeef"):
        for e in entries:
            if e["toolId"] not in handlers.table:
                handlers.bind(e["toolId"])
        registry = ToolRegistry(handlers.table, production=production)
        registry.load(_artifact(*entries, version=version))
        return registry
    return factory


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_orchestrator(make_registry, clock):
    def factory(*entries, mode="text", transport=None, budget=None, messenger=None):
        registry = make_registry(*entries)
        state = StateController(mode, session_id="test")
        return Orchestrator(
            registry.snapshot(),
            state,
            transport or OpenAIChatTransport(),
            budget=budget,
            messenger=messenger,
            retry_delay=0,
            clock=clock,
        )
    return factory


@pytest.fixture
def write_tool(tmp_path):
    """Write one tool definition directory; returns its path."""
    def factory(dir_name, root=None, schema_overrides=None, summary=None, doc=None,
                files=("schema.json", "doc_summary.md", "doc.md", "handler.py")):
        root = Path(root or tmp_path / "tools")
        tool_dir = root / dir_name
        tool_dir.mkdir(parents=True, exist_ok=True)
        tool_id = dir_name.lower().replace("-", "_")
        schema = {
            "toolId": tool_id,
            "version": "1.0.0",
            "category": "retrieval",
            "description": f"Look things up with {tool_id}",
            "parameters": DEFAULT_PARAMS,
            "sideEffects": "read_only",
            "idempotent": True,
            "requiresConfirmation": False,
            "allowedModes": ["text", "voice"],
            "latencyBudgetMs": 1500,
        }
        schema.update(schema_overrides or {})
        contents = {
            "schema.json": json.dumps(schema, indent=2),
            "doc_summary.md": summary if summary is not None else f"# {tool_id}\n\nSearch the test corpus.\n",
            "doc.md": doc if doc is not None else (
                f"# {tool_id}\n\n## Purpose\nTest.\n\n## Parameters\n- query\n\n"
                "## Returns\nResults.\n\n## Errors\nNone.\n"
            ),
            "handler.py": "",
        }
        for name in files:
            (tool_dir / name).write_text(contents[name], encoding="utf-8")
        return tool_dir
    return factory
