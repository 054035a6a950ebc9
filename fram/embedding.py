"""Query embeddings via the OpenAI embeddings API."""
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from .config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncOpenAI] = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
    return _client


async def embed_query(text: str) -> List[float]:
    """Embed one search query. Provider errors propagate (callers classify them)."""
    client = _get_client()
    response = await client.embeddings.create(
        model=settings.openai_embedding_model,
        input=text,
    )
    vector = response.data[0].embedding
    logger.debug(f"Embedded query ({len(text)} chars) -> {len(vector)} dims")
    return vector
