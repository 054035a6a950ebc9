"""Tool registry: loads the compiled artifact and executes tools.

ToolRegistry owns the lifecycle (load, lock, reload). Each load produces an
immutable RegistrySnapshot; sessions hold on to the snapshot they started
with, so a dev reload never changes tools under a live session.
"""
import copy
import json
import logging
import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from jsonschema import Draft202012Validator, validators
from jsonschema.exceptions import SchemaError

from .context import ExecutionContext
from .definition import Mode, ToolDefinition, ToolMetadata
from .errors import ErrorType, RegistryError, ToolError
from .handlers import HandlerTable
from .response import RESPONSE_SCHEMA_VERSION, ToolResponse

logger = logging.getLogger(__name__)


def _extend_with_defaults(validator_class):
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(validator, properties, instance, schema):
        if validator.is_type(instance, "object"):
            for name, sub in properties.items():
                if isinstance(sub, dict) and "default" in sub:
                    instance.setdefault(name, copy.deepcopy(sub["default"]))
        yield from validate_properties(validator, properties, instance, schema)

    return validators.extend(validator_class, {"properties": set_defaults})


DefaultFillingValidator = _extend_with_defaults(Draft202012Validator)


def compile_validator(tool_id: str, schema: Dict[str, Any]):
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise RegistryError(f"Failed to compile validator for {tool_id}: {e.message}") from e
    return DefaultFillingValidator(schema, format_checker=Draft202012Validator.FORMAT_CHECKER)


def _error_path(error) -> str:
    return "/" + "/".join(str(p) for p in error.absolute_path)


def _added_paths(before: Dict[str, Any], after: Dict[str, Any], prefix: str = "") -> List[str]:
    """Dotted paths of keys present in ``after`` but not ``before``, at any depth."""
    added = []
    for key, value in after.items():
        path = f"{prefix}{key}"
        if key not in before:
            added.append(path)
        elif isinstance(value, dict) and isinstance(before[key], dict):
            added.extend(_added_paths(before[key], value, f"{path}."))
    return sorted(added)


class RegistrySnapshot:
    """One immutable generation of the registry."""

    def __init__(self, version: str, source_revision: Optional[str],
                 tools: Dict[str, ToolDefinition], handlers: Dict[str, Any]):
        self.version = version
        self.source_revision = source_revision
        self._tools = MappingProxyType(dict(tools))
        self._handlers = MappingProxyType(dict(handlers))
        self._validators = MappingProxyType(
            {tid: compile_validator(tid, t.json_schema) for tid, t in tools.items()}
        )

    @property
    def tool_ids(self) -> List[str]:
        return sorted(self._tools)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def _tools_for(self, mode=None) -> List[ToolDefinition]:
        tools = [self._tools[tid] for tid in self.tool_ids]
        if mode is None:
            return tools
        return [t for t in tools if Mode(mode) in t.allowed_modes]

    # ──── Lookups ────

    def get_provider_schema(self, tool_id: str, provider: str) -> Optional[Dict[str, Any]]:
        tool = self._tools.get(tool_id)
        if tool is None:
            return None
        if provider not in tool.provider_schemas:
            raise ValueError(f"Unsupported provider: {provider}")
        return copy.deepcopy(tool.provider_schemas[provider])

    def get_provider_schemas(self, provider: str, mode=None) -> List[Dict[str, Any]]:
        return [self.get_provider_schema(t.tool_id, provider) for t in self._tools_for(mode)]

    def get_summaries(self, mode=None) -> str:
        return "\n\n".join(
            f"**{t.tool_id}** ({t.category.value}): {t.summary}" for t in self._tools_for(mode)
        )

    def get_documentation(self, tool_id: str) -> Optional[str]:
        tool = self._tools.get(tool_id)
        return tool.documentation if tool else None

    def get_metadata(self, tool_id: str) -> Optional[ToolMetadata]:
        tool = self._tools.get(tool_id)
        return tool.metadata if tool else None

    # ──── Execution ────

    def _meta(self, tool_id: str, t0: float, tool: Optional[ToolDefinition] = None) -> Dict[str, Any]:
        return {
            "toolId": tool_id,
            "toolVersion": tool.version if tool else None,
            "registryVersion": self.version,
            "durationMs": int((time.monotonic() - t0) * 1000),
            "responseSchemaVersion": RESPONSE_SCHEMA_VERSION,
        }

    def validate_args(self, tool_id: str, args: Any):
        """Return (filled_args, None) or (None, ToolResponse) for a VALIDATION failure."""
        validator = self._validators[tool_id]
        filled = copy.deepcopy(args) if args is not None else {}
        errors = sorted(validator.iter_errors(filled), key=lambda e: [str(p) for p in e.absolute_path])
        if errors:
            message = ", ".join(f"{_error_path(e)} {e.message}" for e in errors)
            details = {"errors": [{"path": _error_path(e), "message": e.message, "keyword": e.validator}
                                  for e in errors]}
            return None, ToolResponse.failure(
                ErrorType.VALIDATION, f"Invalid parameters: {message}", details=details,
            )
        if isinstance(args, dict):
            added = _added_paths(args, filled)
            if added:
                logger.debug(f"Filled defaults for {tool_id}: {added}")
        return filled, None

    async def execute(self, tool_id: str, args: Any, context: ExecutionContext) -> ToolResponse:
        """Run one tool. Never raises for tool-level problems; always returns an envelope."""
        t0 = time.monotonic()
        tool = self._tools.get(tool_id)
        if tool is None:
            logger.warning(f"[{context.session_id}] Unknown tool: {tool_id}")
            return ToolResponse.failure(
                ErrorType.NOT_FOUND, f"Tool {tool_id} not found"
            ).with_meta(**self._meta(tool_id, t0))

        filled, invalid = self.validate_args(tool_id, args)
        if invalid is not None:
            logger.info(f"[{context.session_id}] {tool_id} rejected: {invalid.error.message}")
            return invalid.with_meta(**self._meta(tool_id, t0, tool))

        handler = self._handlers[tool_id]
        ctx = context.for_tool(tool.metadata)
        try:
            result = await handler(filled, ctx)
        except ToolError as e:
            logger.info(f"[{context.session_id}] {tool_id} failed: {e.type.value} {e.message}")
            response = ToolResponse.failure(
                e.type, e.message,
                retryable=e.retryable,
                partial_side_effects=e.partial_side_effects,
                details=e.details,
            )
        except Exception as e:
            logger.error(f"[{context.session_id}] Unexpected error in handler {tool_id}: {e}", exc_info=True)
            response = ToolResponse.failure(
                ErrorType.INTERNAL, f"Unexpected error: {e}",
                retryable=False, partial_side_effects=True,
            )
        else:
            response = self._normalize(tool_id, result, context.session_id)

        return response.with_meta(**self._meta(tool_id, t0, tool))

    def _normalize(self, tool_id: str, result: Any, session_id: str) -> ToolResponse:
        if isinstance(result, ToolResponse):
            return result
        try:
            return ToolResponse.from_dict(result)
        except ValueError as e:
            logger.error(f"[{session_id}] Handler {tool_id} returned invalid ToolResponse: {e}")
            return ToolResponse.failure(
                ErrorType.INTERNAL, f"Handler returned invalid response: {e}", retryable=False,
            )


class ToolRegistry:
    """Process-wide registry. Construct once at startup and pass it around."""

    def __init__(self, handlers: HandlerTable, production: bool = False):
        self.handlers = handlers
        self.production = production
        self.locked = False
        self._source: Union[str, Path, Mapping, None] = None
        self._current: Optional[RegistrySnapshot] = None

    def _read(self, source) -> Dict[str, Any]:
        if isinstance(source, Mapping):
            return dict(source)
        path = Path(source)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise RegistryError(f"Registry artifact not found: {path}") from e
        except json.JSONDecodeError as e:
            raise RegistryError(f"Registry artifact is not valid JSON: {path}: {e}") from e

    def _compile(self, source) -> RegistrySnapshot:
        artifact = self._read(source)
        if not isinstance(artifact.get("version"), str) or not isinstance(artifact.get("tools"), list):
            raise RegistryError("Registry artifact must have a version string and a tools list")

        tools: Dict[str, ToolDefinition] = {}
        bound: Dict[str, Any] = {}
        for entry in artifact["tools"]:
            try:
                tool = ToolDefinition.from_artifact(entry)
            except (KeyError, TypeError, ValueError) as e:
                raise RegistryError(f"Malformed tool entry {entry.get('toolId', '?')}: {e}") from e
            if tool.tool_id in tools:
                raise RegistryError(f"Duplicate tool {tool.tool_id} in artifact")
            handler = self.handlers.get(tool.handler)
            if handler is None:
                raise RegistryError(f"No handler registered for {tool.tool_id}")
            tools[tool.tool_id] = tool
            bound[tool.tool_id] = handler

        return RegistrySnapshot(
            version=artifact["version"],
            source_revision=artifact.get("sourceRevision"),
            tools=tools,
            handlers=bound,
        )

    def load(self, source) -> RegistrySnapshot:
        if self.locked:
            raise RegistryError("Cannot load registry after lock()")
        self._current = self._compile(source)
        self._source = source
        logger.info(f"Tool registry loaded: v{self._current.version} ({len(self._current)} tools)")
        return self._current

    def lock(self):
        if self._current is None:
            raise RegistryError("Cannot lock an empty registry; load() first")
        if not self.locked:
            self.locked = True
            logger.info(f"Tool registry locked (v{self._current.version})")

    def snapshot(self) -> RegistrySnapshot:
        if self._current is None:
            raise RegistryError("Registry not loaded")
        return self._current

    def reload(self, source=None) -> RegistrySnapshot:
        """Swap in a new generation. Refused once locked in production."""
        if self.locked and self.production:
            raise RegistryError("Cannot reload locked registry in production")
        source = source if source is not None else self._source
        if source is None:
            raise RegistryError("Nothing to reload; load() first")
        self._current = self._compile(source)
        self._source = source
        logger.info(f"Tool registry reloaded: v{self._current.version}")
        return self._current

    # Convenience passthroughs to the current generation

    @property
    def version(self) -> Optional[str]:
        return self._current.version if self._current else None

    def get_provider_schema(self, tool_id, provider):
        return self.snapshot().get_provider_schema(tool_id, provider)

    def get_provider_schemas(self, provider, mode=None):
        return self.snapshot().get_provider_schemas(provider, mode)

    def get_summaries(self, mode=None):
        return self.snapshot().get_summaries(mode)

    def get_documentation(self, tool_id):
        return self.snapshot().get_documentation(tool_id)

    def get_metadata(self, tool_id):
        return self.snapshot().get_metadata(tool_id)

    async def execute(self, tool_id, args, context):
        return await self.snapshot().execute(tool_id, args, context)
