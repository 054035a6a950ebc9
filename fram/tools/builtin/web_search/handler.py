"""web_search: Perplexity-backed web answers for the text channel."""
import logging

import httpx

from fram.config import settings

from ...errors import ErrorType, ToolError
from ...handlers import BUILTIN_HANDLERS
from ...response import ToolResponse
from ..classify import classify_http_error

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"


@BUILTIN_HANDLERS.register("web_search")
async def web_search(args, ctx):
    if not settings.perplexity_api_key:
        raise ToolError(ErrorType.PERMANENT, "Web search is not configured on this server")

    query = args["query"]
    body = {
        "model": settings.perplexity_model,
        "messages": [{"role": "user", "content": query}],
        "temperature": 0.2,
        "max_tokens": 1000,
    }
    if args.get("recency"):
        body["search_recency_filter"] = args["recency"]

    try:
        async with httpx.AsyncClient(timeout=15) as client:
            resp = await client.post(
                PERPLEXITY_URL,
                json=body,
                headers={"Authorization": f"Bearer {settings.perplexity_api_key}"},
            )
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPError as e:
        logger.error(f"[{ctx.session_id}] Perplexity search error: {e}")
        raise classify_http_error(e, "perplexity") from e

    choices = data.get("choices") or []
    answer = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
    citations = data.get("citations") or []
    logger.info(f"[{ctx.session_id}] web_search: {len(answer)} chars, {len(citations)} citations")

    return ToolResponse.success({
        "answer": answer or "No answer returned from search",
        "citations": citations,
        "query": query,
        "model": data.get("model") or settings.perplexity_model,
    })
