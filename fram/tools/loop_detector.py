"""Per-turn loop detection.

Stops two patterns within one turn:
  1. the same (tool, args) pair proposed again
  2. a tool that already came back empty twice
"""
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional

from .canonical import hash_args
from .response import ToolResponse

EMPTY_RESULT_LIMIT = 2


@dataclass(frozen=True)
class LoopVerdict:
    kind: str
    message: str
    count: int


def is_empty_result(response: ToolResponse) -> bool:
    if not response.ok:
        return False
    data = response.data
    if data is None:
        return True
    if isinstance(data, str):
        return not data.strip()
    if isinstance(data, (list, tuple)):
        return len(data) == 0
    if isinstance(data, dict):
        if not data:
            return True
        results = data.get("results")
        return isinstance(results, list) and len(results) == 0
    return False


class LoopDetector:
    def __init__(self, empty_limit: int = EMPTY_RESULT_LIMIT):
        self.empty_limit = empty_limit
        self._calls: Counter = Counter()
        self._empty: Counter = Counter()

    def reset(self):
        self._calls.clear()
        self._empty.clear()

    def check(self, tool_id: str, args: Any) -> Optional[LoopVerdict]:
        seen = self._calls[(tool_id, hash_args(args))]
        if seen:
            return LoopVerdict(
                kind="SAME_CALL_REPEATED",
                message=(
                    f"{tool_id} was already called with these arguments this turn. "
                    "Try different arguments or answer with what you already have."
                ),
                count=seen + 1,
            )
        empties = self._empty[tool_id]
        if empties >= self.empty_limit:
            return LoopVerdict(
                kind="EMPTY_RESULTS_REPEATED",
                message=(
                    f"{tool_id} returned empty results {empties} times this turn. "
                    "The data may not exist. Try different search terms or a different tool."
                ),
                count=empties,
            )
        return None

    def record(self, tool_id: str, args: Any, response: Optional[ToolResponse] = None):
        self._calls[(tool_id, hash_args(args))] += 1
        if response is not None and is_empty_result(response):
            self._empty[tool_id] += 1
