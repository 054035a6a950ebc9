"""Minimal Qdrant REST client for knowledge-base search and lookup."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)

TIMEOUT_S = 10


def _headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.qdrant_api_key:
        headers["api-key"] = settings.qdrant_api_key
    return headers


def _collection_url(path: str) -> str:
    return f"{settings.qdrant_url.rstrip('/')}/collections/{settings.qdrant_collection}/{path}"


def build_filter(filters: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not filters:
        return None
    return {"must": [{"key": key, "match": {"value": value}} for key, value in sorted(filters.items())]}


async def search(vector: List[float], limit: int, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Nearest chunks: [{id, score, payload}]. Raises httpx errors on failure."""
    body: Dict[str, Any] = {"vector": vector, "limit": limit, "with_payload": True}
    qfilter = build_filter(filters)
    if qfilter:
        body["filter"] = qfilter
    async with httpx.AsyncClient(timeout=TIMEOUT_S) as client:
        resp = await client.post(_collection_url("points/search"), json=body, headers=_headers())
        resp.raise_for_status()
        data = resp.json()
    results = data.get("result") or []
    logger.debug(f"Qdrant search returned {len(results)} chunks")
    return results


async def _scroll(filters: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
    body = {
        "filter": build_filter(filters),
        "limit": limit,
        "with_payload": True,
        "with_vector": False,
    }
    async with httpx.AsyncClient(timeout=TIMEOUT_S) as client:
        resp = await client.post(_collection_url("points/scroll"), json=body, headers=_headers())
        resp.raise_for_status()
        data = resp.json()
    return (data.get("result") or {}).get("points") or []


async def get_entity_chunks(entity_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """All stored chunks of one entity, ordered by chunk index."""
    points = await _scroll({"entity_id": entity_id}, limit)
    return sorted(points, key=lambda p: (p.get("payload") or {}).get("chunk_index", 0))


async def list_entity_ids(entity_type: str, limit: int = 100) -> List[str]:
    points = await _scroll({"entity_type": entity_type}, limit)
    ids = {(p.get("payload") or {}).get("entity_id") for p in points}
    return sorted(i for i in ids if i)
