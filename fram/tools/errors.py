"""Error taxonomy shared by handlers, the registry and the orchestrator."""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    # Registry (pre-execution / normalization)
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"

    # Orchestrator (policy gates)
    MODE_RESTRICTED = "MODE_RESTRICTED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    LOOP_DETECTED = "LOOP_DETECTED"

    # Handlers (domain failures)
    SESSION_INACTIVE = "SESSION_INACTIVE"
    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTH = "AUTH"
    CONFLICT = "CONFLICT"


RETRYABLE_TYPES = frozenset({ErrorType.TRANSIENT, ErrorType.RATE_LIMIT})


class ToolError(Exception):
    """Expected failure raised by a tool handler.

    The registry turns it into the ``error`` block of a ToolResponse, so the
    model sees the type and retryability instead of a stack trace.
    """

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        retryable: Optional[bool] = None,
        partial_side_effects: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.type = ErrorType(error_type)
        self.message = message
        self.retryable = self.type in RETRYABLE_TYPES if retryable is None else retryable
        self.partial_side_effects = partial_side_effects
        self.details = details


class BuildError(Exception):
    """A tool definition failed validation; the whole build is aborted."""


class RegistryError(Exception):
    """Fatal registry configuration error (bad artifact, unbound handler, reload after lock)."""
