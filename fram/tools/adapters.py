"""Provider schema adapters.

Pure functions from a canonical tool schema (the schema.json dict, with
``jsonSchema`` holding the parameters) to the shape each provider expects.
The builder runs every adapter once and stores the output in the artifact,
so nothing here is called at request time.
"""
import copy
from typing import Any, Callable, Dict

GEMINI_TYPES = {
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "object": "OBJECT",
    "array": "ARRAY",
}

# Keywords Gemini's Schema accepts unchanged
GEMINI_PASSTHROUGH = (
    "description", "enum", "format", "required", "default", "title",
    "minimum", "maximum", "minItems", "maxItems", "minLength", "maxLength",
    "minProperties", "maxProperties", "pattern",
)

# Everything gemini_schema carries over; additionalProperties may only be false
PORTABLE_KEYWORDS = frozenset(GEMINI_PASSTHROUGH) | {"type", "properties", "items", "anyOf", "additionalProperties"}


def to_openai(tool: Dict[str, Any]) -> Dict[str, Any]:
    """Chat-completions function tool. JSON Schema passes through untouched."""
    return {
        "type": "function",
        "function": {
            "name": tool["toolId"],
            "description": tool["description"],
            "parameters": copy.deepcopy(tool["jsonSchema"]),
        },
    }


def to_openai_realtime(tool: Dict[str, Any]) -> Dict[str, Any]:
    """Realtime API session tool (flat, no nested "function" key)."""
    return {
        "type": "function",
        "name": tool["toolId"],
        "description": tool["description"],
        "parameters": copy.deepcopy(tool["jsonSchema"]),
    }


def to_gemini(tool: Dict[str, Any]) -> Dict[str, Any]:
    """Gemini Live function declaration."""
    return {
        "name": tool["toolId"],
        "description": tool["description"],
        "parameters": gemini_schema(tool["jsonSchema"]),
    }


def gemini_schema(node: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively convert one JSON Schema node to Gemini's OpenAPI subset."""
    out: Dict[str, Any] = {}

    jtype = node.get("type")
    if isinstance(jtype, list):
        non_null = [t for t in jtype if t != "null"]
        if len(non_null) != len(jtype):
            out["nullable"] = True
        jtype = non_null[0] if non_null else "string"
    if jtype is not None:
        out["type"] = GEMINI_TYPES.get(jtype, "STRING")
    elif "anyOf" not in node:
        out["type"] = "STRING"

    for key in GEMINI_PASSTHROUGH:
        if key in node:
            out[key] = copy.deepcopy(node[key])

    if isinstance(node.get("properties"), dict):
        out["properties"] = {name: gemini_schema(prop) for name, prop in node["properties"].items()}
        out["propertyOrdering"] = list(node["properties"].keys())

    if isinstance(node.get("items"), dict):
        out["items"] = gemini_schema(node["items"])

    if isinstance(node.get("anyOf"), list):
        out["anyOf"] = [gemini_schema(sub) for sub in node["anyOf"]]

    return out


PROVIDER_ADAPTERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "openai": to_openai,
    "openai_realtime": to_openai_realtime,
    "gemini": to_gemini,
}
