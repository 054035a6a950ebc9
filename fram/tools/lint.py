"""Schema and documentation checks for one tool definition directory.

Each check raises BuildError with the directory name in the message; the
builder lets it propagate so a single bad tool aborts the whole build.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .adapters import PORTABLE_KEYWORDS
from .definition import Category, Mode, SideEffects
from .errors import BuildError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "toolId", "version", "category", "description", "parameters",
    "sideEffects", "idempotent", "requiresConfirmation", "allowedModes", "latencyBudgetMs",
)
REQUIRED_FILES = ("schema.json", "doc_summary.md", "doc.md", "handler.py")
REQUIRED_DOC_SECTIONS = ("## Purpose", "## Parameters", "## Returns", "## Errors")
MAX_SUMMARY_CHARS = 250

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


def canonical_tool_id(dir_name: str) -> str:
    return dir_name.lower().replace("-", "_")


def read_schema(tool_dir: Path) -> Dict[str, Any]:
    path = tool_dir / "schema.json"
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BuildError(f"Tool {tool_dir.name}: schema.json is not valid JSON: {e}") from e


def check_files(tool_dir: Path):
    for name in REQUIRED_FILES:
        if not (tool_dir / name).is_file():
            raise BuildError(f"Tool {tool_dir.name}: missing {name}")


def lint_metadata(schema: Dict[str, Any], dir_name: str):
    for key in REQUIRED_FIELDS:
        if key not in schema:
            raise BuildError(f'Tool {dir_name}: missing required field "{key}" in schema.json')

    def one_of(key, enum):
        allowed = [e.value for e in enum]
        if schema[key] not in allowed:
            raise BuildError(
                f'Tool {dir_name}: invalid {key} "{schema[key]}". Must be one of: {", ".join(allowed)}'
            )

    one_of("category", Category)
    one_of("sideEffects", SideEffects)

    expected = canonical_tool_id(dir_name)
    if schema["toolId"] != expected:
        raise BuildError(
            f'Tool {dir_name}: toolId "{schema["toolId"]}" does not match directory name (expected "{expected}")'
        )

    if not isinstance(schema["version"], str) or not SEMVER_RE.match(schema["version"]):
        raise BuildError(f'Tool {dir_name}: version "{schema["version"]}" is not semver')

    if not isinstance(schema["description"], str) or not schema["description"].strip():
        raise BuildError(f"Tool {dir_name}: description must be a non-empty string")

    for key in ("idempotent", "requiresConfirmation"):
        if not isinstance(schema[key], bool):
            raise BuildError(f"Tool {dir_name}: {key} must be a boolean")

    modes = schema["allowedModes"]
    if not isinstance(modes, list) or not modes:
        raise BuildError(f"Tool {dir_name}: allowedModes must be a non-empty array")
    valid_modes = [m.value for m in Mode]
    for m in modes:
        if m not in valid_modes:
            raise BuildError(f'Tool {dir_name}: invalid mode "{m}" in allowedModes')
    if len(set(modes)) != len(modes):
        raise BuildError(f"Tool {dir_name}: allowedModes has duplicates")

    budget = schema["latencyBudgetMs"]
    if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
        raise BuildError(f"Tool {dir_name}: latencyBudgetMs must be a positive integer")

    if schema["category"] == Category.RETRIEVAL.value:
        if not schema["idempotent"]:
            raise BuildError(f"Tool {dir_name}: retrieval tools must be idempotent")
        if schema["sideEffects"] == SideEffects.WRITES.value:
            raise BuildError(f"Tool {dir_name}: retrieval tools cannot declare writes")


def _check_closed_objects(node: Any, dir_name: str, path: str):
    if isinstance(node, dict):
        if "properties" in node and node.get("additionalProperties") is not False:
            raise BuildError(f'Tool {dir_name}: {path} must set "additionalProperties: false"')
        for key, child in node.items():
            if key == "properties" and isinstance(child, dict):
                for name, prop in child.items():
                    _check_closed_objects(prop, dir_name, f"{path}.{name}")
            elif key != "enum" and key != "default":
                _check_closed_objects(child, dir_name, f"{path}.{key}")
    elif isinstance(node, list):
        for i, child in enumerate(node):
            _check_closed_objects(child, dir_name, f"{path}[{i}]")


def _check_portable(node: Any, dir_name: str, path: str):
    """Every provider schema must carry the same constraints, so only keywords
    the Gemini conversion keeps are allowed."""
    if not isinstance(node, dict):
        raise BuildError(f"Tool {dir_name}: {path} must be a schema object")
    unknown = sorted(set(node) - PORTABLE_KEYWORDS)
    if unknown:
        raise BuildError(f"Tool {dir_name}: {path} uses keywords not supported by every provider: {', '.join(unknown)}")

    jtype = node.get("type")
    if jtype is None and "anyOf" not in node:
        raise BuildError(f'Tool {dir_name}: {path} needs a "type" or "anyOf"')
    if isinstance(jtype, list):
        non_null = [t for t in jtype if t != "null"]
        if len(non_null) != 1:
            raise BuildError(f'Tool {dir_name}: {path} type union must be one type plus optional "null"')
    if jtype == "object" or (isinstance(jtype, list) and "object" in jtype):
        if node.get("additionalProperties") is not False:
            raise BuildError(f'Tool {dir_name}: {path} must set "additionalProperties: false"')
    elif "additionalProperties" in node:
        raise BuildError(f"Tool {dir_name}: {path} sets additionalProperties on a non-object")

    for name, prop in (node.get("properties") or {}).items():
        _check_portable(prop, dir_name, f"{path}.{name}")
    if "items" in node:
        _check_portable(node["items"], dir_name, f"{path}.items")
    for i, sub in enumerate(node.get("anyOf") or []):
        _check_portable(sub, dir_name, f"{path}.anyOf[{i}]")


def lint_parameters(parameters: Any, dir_name: str):
    if not isinstance(parameters, dict):
        raise BuildError(f"Tool {dir_name}: parameters must be an object")
    if parameters.get("type") != "object":
        raise BuildError(f'Tool {dir_name}: parameters must have "type": "object"')
    if parameters.get("additionalProperties") is not False:
        raise BuildError(f'Tool {dir_name}: parameters must have "additionalProperties: false"')
    _check_closed_objects(parameters, dir_name, "parameters")
    try:
        Draft202012Validator.check_schema(parameters)
    except SchemaError as e:
        raise BuildError(f"Tool {dir_name}: invalid JSON Schema in parameters: {e.message}") from e
    _check_portable(parameters, dir_name, "parameters")


def extract_summary(text: str, dir_name: str) -> str:
    """Summary = the non-heading lines of doc_summary.md joined into one line."""
    lines = [ln.strip() for ln in text.splitlines()]
    body = " ".join(ln for ln in lines if ln and not ln.startswith("#"))
    if not body:
        raise BuildError(f"Tool {dir_name}: doc_summary.md is empty")
    if len(body) > MAX_SUMMARY_CHARS:
        raise BuildError(
            f"Tool {dir_name}: summary is {len(body)} chars, max {MAX_SUMMARY_CHARS}"
        )
    return body


def lint_documentation(doc: str, dir_name: str):
    headings = {ln.strip() for ln in doc.splitlines() if ln.startswith("## ")}
    missing = [s for s in REQUIRED_DOC_SECTIONS if s not in headings]
    if missing:
        raise BuildError(f"Tool {dir_name}: doc.md missing sections: {', '.join(missing)}")
