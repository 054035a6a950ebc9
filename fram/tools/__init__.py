"""Tool system: build pipeline, registry, state and orchestration."""
from .definition import Category, Mode, SideEffects, ToolDefinition, ToolMetadata
from .errors import BuildError, ErrorType, RegistryError, ToolError
from .handlers import BUILTIN_HANDLERS, HandlerTable
from .context import ExecutionContext
from .response import ToolResponse
from .registry import RegistrySnapshot, ToolRegistry
from .state import StateController
from .orchestrator import Orchestrator, TurnResult
from .transport import GeminiLiveTransport, OpenAIChatTransport, OpenAIRealtimeTransport, ProposedCall
