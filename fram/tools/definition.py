"""Tool definition types: what the builder emits and the registry loads."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class Mode(str, Enum):
    TEXT = "text"
    VOICE = "voice"


class Category(str, Enum):
    RETRIEVAL = "retrieval"
    ACTION = "action"
    UTILITY = "utility"


class SideEffects(str, Enum):
    NONE = "none"
    READ_ONLY = "read_only"
    WRITES = "writes"


@dataclass(frozen=True)
class ToolMetadata:
    """Orchestration-relevant subset of a definition."""
    tool_id: str
    version: str
    category: Category
    side_effects: SideEffects
    idempotent: bool
    requires_confirmation: bool
    allowed_modes: Tuple[Mode, ...]
    latency_budget_ms: int
    description: str = ""

    @property
    def is_retrieval(self) -> bool:
        return self.category == Category.RETRIEVAL

    def allows(self, mode) -> bool:
        return Mode(mode) in self.allowed_modes


@dataclass(frozen=True)
class ToolDefinition:
    tool_id: str
    version: str
    category: Category
    description: str
    side_effects: SideEffects
    idempotent: bool
    requires_confirmation: bool
    allowed_modes: Tuple[Mode, ...]
    latency_budget_ms: int
    json_schema: Dict[str, Any]
    summary: str
    documentation: str
    handler: str
    provider_schemas: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def metadata(self) -> ToolMetadata:
        return ToolMetadata(
            tool_id=self.tool_id,
            version=self.version,
            category=self.category,
            side_effects=self.side_effects,
            idempotent=self.idempotent,
            requires_confirmation=self.requires_confirmation,
            allowed_modes=self.allowed_modes,
            latency_budget_ms=self.latency_budget_ms,
            description=self.description,
        )

    @classmethod
    def from_artifact(cls, entry: Dict[str, Any]) -> "ToolDefinition":
        return cls(
            tool_id=entry["toolId"],
            version=entry["version"],
            category=Category(entry["category"]),
            description=entry.get("description", ""),
            side_effects=SideEffects(entry["sideEffects"]),
            idempotent=bool(entry["idempotent"]),
            requires_confirmation=bool(entry["requiresConfirmation"]),
            allowed_modes=tuple(Mode(m) for m in entry["allowedModes"]),
            latency_budget_ms=int(entry["latencyBudgetMs"]),
            json_schema=entry["jsonSchema"],
            summary=entry["summary"],
            documentation=entry.get("documentation", ""),
            handler=entry.get("handler", entry["toolId"]),
            provider_schemas=entry.get("providerSchemas", {}),
        )
