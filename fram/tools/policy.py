"""Per-mode turn budgets and chain continuation rules."""
from dataclasses import dataclass
from typing import Optional

from .definition import Mode
from .errors import ErrorType

DEPTH_LIMIT_NOTICE = "(Reached maximum tool chain depth)"


@dataclass(frozen=True)
class TurnBudget:
    max_retrieval_calls: int
    max_total_calls: int


VOICE_BUDGET = TurnBudget(max_retrieval_calls=2, max_total_calls=3)
TEXT_BUDGET = TurnBudget(max_retrieval_calls=5, max_total_calls=5)


def default_budget(mode) -> TurnBudget:
    return VOICE_BUDGET if Mode(mode) == Mode.VOICE else TEXT_BUDGET


# Errors after which the model gets no further tool calls this turn
CHAIN_STOPPING_ERRORS = frozenset({
    ErrorType.AUTH.value,
    ErrorType.PERMANENT.value,
    ErrorType.INTERNAL.value,
    ErrorType.SESSION_INACTIVE.value,
    ErrorType.BUDGET_EXCEEDED.value,
    ErrorType.CONFIRMATION_REQUIRED.value,
})


def stops_chain(error_type: Optional[str]) -> bool:
    return error_type in CHAIN_STOPPING_ERRORS
