"""kb_search: semantic search over the knowledge base."""
import logging
import time

import httpx
import openai

from fram import embedding, vector_store

from ...definition import Mode
from ...handlers import BUILTIN_HANDLERS
from ...response import ToolResponse
from ..classify import classify_http_error, classify_openai_error

logger = logging.getLogger(__name__)

VOICE_MAX_TOP_K = 3
SNIPPET_CHARS = 200
INTERNAL_PAYLOAD_KEYS = {"text", "chunk_index", "file_path", "embedding_model"}


def _result(point: dict, include_snippet: bool) -> dict:
    payload = point.get("payload") or {}
    text = payload.get("text") or ""
    snippet = None
    if include_snippet and text:
        snippet = text[:SNIPPET_CHARS] + ("..." if len(text) > SNIPPET_CHARS else "")
    return {
        "id": payload.get("entity_id") or str(point.get("id")),
        "type": payload.get("entity_type", "unknown"),
        "title": payload.get("title") or payload.get("entity_id") or str(point.get("id")),
        "snippet": snippet,
        "score": point.get("score", 0.0),
        "metadata": {k: v for k, v in payload.items() if k not in INTERNAL_PAYLOAD_KEYS},
    }


def dedupe_by_entity(results: list, limit: int) -> list:
    best = {}
    for r in results:
        current = best.get(r["id"])
        if current is None or r["score"] > current["score"]:
            best[r["id"]] = r
    return sorted(best.values(), key=lambda r: r["score"], reverse=True)[:limit]


@BUILTIN_HANDLERS.register("kb_search")
async def kb_search(args, ctx):
    query = args["query"]
    requested = args.get("top_k", 5)
    top_k = requested
    if ctx.mode == Mode.VOICE and top_k > VOICE_MAX_TOP_K:
        top_k = VOICE_MAX_TOP_K
        logger.info(f"[{ctx.session_id}] kb_search: clamped top_k {requested} -> {top_k}")

    filters = {}
    for key, value in (args.get("filters") or {}).items():
        filters["entity_type" if key == "type" else key] = value

    t0 = time.monotonic()
    try:
        vector = await embedding.embed_query(query)
    except openai.OpenAIError as e:
        raise classify_openai_error(e, "embedding") from e
    t_embed = time.monotonic()

    # Chunks, not entities: fetch extra so dedupe still leaves top_k
    try:
        points = await vector_store.search(vector, max(top_k * 3, 15), filters)
    except httpx.HTTPError as e:
        raise classify_http_error(e, "qdrant") from e
    t_search = time.monotonic()

    include_snippets = args.get("include_snippets", True)
    results = dedupe_by_entity([_result(p, include_snippets) for p in points], top_k)

    timing = {
        "embeddingMs": int((t_embed - t0) * 1000),
        "searchMs": int((t_search - t_embed) * 1000),
    }
    logger.info(
        f"[{ctx.session_id}] kb_search: {len(results)} entities from {len(points)} chunks "
        f"({timing['embeddingMs']}+{timing['searchMs']}ms)"
    )
    ctx.audit("kb_search", query=query, found=len(results))

    return ToolResponse.success({
        "results": results,
        "total_found": len(results),
        "query": query,
        "filters_applied": args.get("filters") or None,
        "clamped": top_k != requested,
        "_timing": timing,
    })
