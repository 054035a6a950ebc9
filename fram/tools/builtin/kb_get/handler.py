"""kb_get: direct lookup of one knowledge-base entity."""
import logging

import httpx

from fram import vector_store

from ...errors import ErrorType, ToolError
from ...handlers import BUILTIN_HANDLERS
from ...response import ToolResponse
from ..classify import classify_http_error

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3


def similar_ids(wanted: str, candidates) -> list:
    """Candidates sharing at least half their words (or two words) with ``wanted``."""
    name = wanted.split(":", 1)[-1].lower()
    words = {w for w in name.split("_") if w}
    out = []
    for cid in candidates:
        cname = cid.split(":", 1)[-1].lower()
        cwords = {w for w in cname.split("_") if w}
        common = words & cwords
        overlap = len(common) / max(len(words | cwords), 1)
        if overlap >= 0.5 or len(common) >= 2 or name in cname or cname in name:
            out.append(cid)
    return out


async def _suggestion(entity_id: str, session_id: str) -> str:
    if ":" not in entity_id:
        return ""
    entity_type = entity_id.split(":", 1)[0]
    try:
        known = await vector_store.list_entity_ids(entity_type)
    except httpx.HTTPError as e:
        logger.warning(f"[{session_id}] kb_get: could not load suggestions: {e}")
        return ""
    close = similar_ids(entity_id, known)
    if close:
        return " Did you mean one of: " + ", ".join(f'"{i}"' for i in close[:MAX_SUGGESTIONS]) + "?"
    if known:
        return f" Available {entity_type} entities include: " + ", ".join(
            f'"{i}"' for i in known[:MAX_SUGGESTIONS]) + "."
    return ""


@BUILTIN_HANDLERS.register("kb_get")
async def kb_get(args, ctx):
    entity_id = args["id"]
    max_chars = args.get("max_chars", 4000)

    try:
        chunks = await vector_store.get_entity_chunks(entity_id)
    except httpx.HTTPError as e:
        raise classify_http_error(e, "qdrant") from e

    if not chunks:
        hint = await _suggestion(entity_id, ctx.session_id)
        raise ToolError(
            ErrorType.PERMANENT,
            f"Entity '{entity_id}' not found in KB.{hint} Use kb_search to find the correct entity ID.",
            details={"id": entity_id},
        )

    first = chunks[0].get("payload") or {}
    text = "\n\n".join((c.get("payload") or {}).get("text", "") for c in chunks).strip()
    truncated = len(text) > max_chars
    if truncated:
        text = text[:max_chars]

    logger.info(f"[{ctx.session_id}] kb_get: {entity_id} ({len(chunks)} chunks)")
    return ToolResponse.success({
        "id": entity_id,
        "type": first.get("entity_type", "unknown"),
        "title": first.get("title") or entity_id,
        "text": text,
        "truncated": truncated,
        "metadata": {k: v for k, v in first.items() if k not in ("text", "chunk_index")},
        "chunks": len(chunks),
    })
