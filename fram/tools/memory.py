"""Per-session record of executed tool calls.

Newest calls keep their full envelope; older ones keep only a one-line
summary; beyond that, or past the age limit, records are dropped.
Summaries are rule-based and written when the call is recorded.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .response import ToolResponse

logger = logging.getLogger(__name__)

RECENT_COUNT = 10
SUMMARY_COUNT = 40
MAX_AGE_SECONDS = 3600
ARG_VALUE_CHARS = 30

TIME_RANGES = ("all", "last_turn", "last_3_turns")
RESULT_LIST_KEYS = ("results", "items", "documents")


@dataclass
class MemoryRecord:
    call_id: str
    tool_id: str
    args: Dict[str, Any]
    ok: bool
    turn: int
    timestamp: float
    duration_ms: int
    summary: str
    full_response: Optional[Dict[str, Any]] = None


def summarize_args(args: Optional[Dict[str, Any]]) -> str:
    if not args:
        return "no arguments"
    if "query" in args:
        return f"query='{args['query']}'"
    if "id" in args:
        return f"id='{args['id']}'"
    parts = []
    for key, value in list(args.items())[:2]:
        if isinstance(value, str):
            short = value if len(value) <= ARG_VALUE_CHARS else value[:ARG_VALUE_CHARS] + "..."
            parts.append(f"{key}='{short}'")
        else:
            parts.append(f"{key}={json.dumps(value, default=str)}")
    return ", ".join(parts)


def _count_results(data: Any) -> Optional[int]:
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        for key in RESULT_LIST_KEYS:
            if isinstance(data.get(key), list):
                return len(data[key])
        if isinstance(data.get("count"), int):
            return data["count"]
    return None


def summarize_call(tool_id: str, args: Optional[Dict[str, Any]], response: ToolResponse) -> str:
    args_summary = summarize_args(args)
    if not response.ok:
        return f"{tool_id} failed: {args_summary}. Error: {response.error.type} - {response.error.message}"
    if not response.data:
        return f"{tool_id} executed: {args_summary}. No data returned."
    if "search" in tool_id or "kb" in tool_id:
        count = _count_results(response.data)
        if count is not None:
            return f"{tool_id} executed: {args_summary}. Found {count} result(s)."
    if "get" in tool_id:
        return f"{tool_id} executed: {args_summary}. Data retrieved successfully."
    return f"{tool_id} executed: {args_summary}. Completed successfully."


class ToolMemory:
    def __init__(self, recent_count: int = RECENT_COUNT, summary_count: int = SUMMARY_COUNT,
                 max_age_seconds: float = MAX_AGE_SECONDS, clock: Callable[[], float] = time.time):
        self.recent_count = recent_count
        self.summary_count = summary_count
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._records: List[MemoryRecord] = []  # newest first

    def __len__(self):
        return len(self._records)

    def record(self, call_id: str, tool_id: str, args: Optional[Dict[str, Any]],
               response: ToolResponse, turn: int) -> MemoryRecord:
        entry = MemoryRecord(
            call_id=call_id,
            tool_id=tool_id,
            args=dict(args or {}),
            ok=response.ok,
            turn=turn,
            timestamp=self._clock(),
            duration_ms=int(response.meta.get("durationMs") or 0),
            summary=summarize_call(tool_id, args, response),
            full_response=response.to_dict(),
        )
        self._records.insert(0, entry)
        self._apply_window()
        return entry

    def _apply_window(self):
        now = self._clock()
        kept = []
        for entry in self._records:
            if now - entry.timestamp > self.max_age_seconds:
                continue
            if len(kept) >= self.recent_count + self.summary_count:
                break
            if len(kept) >= self.recent_count:
                entry.full_response = None
            kept.append(entry)
        dropped = len(self._records) - len(kept)
        if dropped:
            logger.debug(f"Tool memory dropped {dropped} old record(s)")
        self._records = kept

    def latest_turn(self) -> int:
        return max((r.turn for r in self._records), default=0)

    def query(self, tool_id: Optional[str] = None, time_range: str = "all",
              include_errors: bool = False) -> List[MemoryRecord]:
        """Matching records, newest first. Turn ranges count back from the latest recorded turn."""
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range}")
        self._apply_window()
        latest = self.latest_turn()
        out = []
        for entry in self._records:
            if tool_id and entry.tool_id != tool_id:
                continue
            if not include_errors and not entry.ok:
                continue
            if time_range == "last_turn" and entry.turn != latest:
                continue
            if time_range == "last_3_turns" and entry.turn < latest - 2:
                continue
            out.append(entry)
        return out

    def full_response(self, call_id: str) -> Optional[Dict[str, Any]]:
        for entry in self._records:
            if entry.call_id == call_id:
                return entry.full_response
        return None

    def call_ids(self) -> List[str]:
        return [r.call_id for r in self._records]
