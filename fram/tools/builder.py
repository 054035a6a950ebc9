"""Tool registry builder.

Scans a tools directory and compiles every tool definition into one JSON
artifact loaded by the runtime registry at startup:

    python -m fram.tools.builder --tools-dir fram/tools/builtin --output tool_registry.json

Any invalid tool aborts the build and nothing is written.
"""
import argparse
import json
import logging
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .adapters import PROVIDER_ADAPTERS
from .canonical import canonical_json, sha256_hex
from .errors import BuildError
from .lint import (
    check_files,
    extract_summary,
    lint_documentation,
    lint_metadata,
    lint_parameters,
    read_schema,
)

logger = logging.getLogger(__name__)

DEFAULT_TOOLS_DIR = Path(__file__).parent / "builtin"
DEFAULT_OUTPUT = Path("tool_registry.json")

_AUTO = object()


def git_revision(cwd: Optional[Path] = None) -> Optional[str]:
    try:
        out = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=cwd, capture_output=True, text=True, timeout=5, check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return out.stdout.strip() or None


def registry_version(tools: List[Dict[str, Any]], revision: Optional[str] = None) -> str:
    digest = sha256_hex(canonical_json(tools))[:8]
    version = f"1.0.{digest}"
    if revision:
        meta = re.sub(r"[^0-9A-Za-z-]", "-", revision)
        version = f"{version}+{meta}"
    return version


def build_tool(tool_dir: Path) -> Dict[str, Any]:
    name = tool_dir.name
    logger.info(f"Building {name}...")
    check_files(tool_dir)

    schema = read_schema(tool_dir)
    lint_metadata(schema, name)
    lint_parameters(schema["parameters"], name)

    summary = extract_summary((tool_dir / "doc_summary.md").read_text(encoding="utf-8"), name)
    documentation = (tool_dir / "doc.md").read_text(encoding="utf-8").strip()
    lint_documentation(documentation, name)

    tool = {
        "toolId": schema["toolId"],
        "version": schema["version"],
        "category": schema["category"],
        "description": schema["description"],
        "sideEffects": schema["sideEffects"],
        "idempotent": schema["idempotent"],
        "requiresConfirmation": schema["requiresConfirmation"],
        "allowedModes": list(schema["allowedModes"]),
        "latencyBudgetMs": schema["latencyBudgetMs"],
        "jsonSchema": schema["parameters"],
        "summary": summary,
        "documentation": documentation,
        "handler": schema["toolId"],
    }
    tool["providerSchemas"] = {provider: adapt(tool) for provider, adapt in PROVIDER_ADAPTERS.items()}
    return tool


def build_registry(tools_dir, output=None, revision=_AUTO) -> Dict[str, Any]:
    """Compile every tool under ``tools_dir``. Writes ``output`` only if all tools pass."""
    tools_dir = Path(tools_dir)
    if not tools_dir.is_dir():
        raise BuildError(f"Tools directory not found: {tools_dir}")

    tool_dirs = sorted(
        p for p in tools_dir.iterdir()
        if p.is_dir() and not p.name.startswith(("_", "."))
    )
    if not tool_dirs:
        logger.warning(f"No tool directories found in {tools_dir}")

    tools = [build_tool(d) for d in tool_dirs]

    seen = set()
    for t in tools:
        if t["toolId"] in seen:
            raise BuildError(f"Duplicate toolId {t['toolId']}")
        seen.add(t["toolId"])

    if revision is _AUTO:
        revision = git_revision(tools_dir)

    artifact = {
        "version": registry_version(tools, revision),
        "sourceRevision": revision,
        "buildTimestamp": datetime.now(timezone.utc).isoformat(),
        "tools": tools,
    }

    if output is not None:
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        tmp = output.with_suffix(output.suffix + ".tmp")
        tmp.write_text(json.dumps(artifact, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(output)
        logger.info(f"Registry {artifact['version']} written to {output} ({len(tools)} tools)")

    return artifact


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Compile tool definitions into a registry artifact")
    parser.add_argument("--tools-dir", default=str(DEFAULT_TOOLS_DIR))
    parser.add_argument("--output", default=str(DEFAULT_OUTPUT))
    parser.add_argument("--revision", default=None, help="source revision (default: git HEAD)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    try:
        artifact = build_registry(
            args.tools_dir,
            output=args.output,
            revision=args.revision if args.revision else _AUTO,
        )
    except BuildError as e:
        logger.error(f"Build failed: {e}")
        return 1

    print(f"Version: {artifact['version']}")
    print(f"Tools: {len(artifact['tools'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
