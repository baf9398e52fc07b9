# =============================================================================
# Embedding Service — Query Vectors for the Knowledge Store
# =============================================================================
#
# The knowledge search embeds the head of each chunk before asking Chroma
# for neighbours. Any OpenAI-compatible embeddings endpoint works; the key
# falls back from OPENAI_API_KEY to the shared LLM_API_KEY.
#
# The client is synchronous. Event-loop callers go through
# asyncio.to_thread() (app/services/knowledge.py).
# =============================================================================

from __future__ import annotations

import logging
from functools import lru_cache

from openai import OpenAI

from app.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _embeddings_client(api_key: str, base_url: str | None) -> OpenAI:
    logger.info("Embeddings client ready (endpoint=%s)", base_url or "default")
    return OpenAI(api_key=api_key, base_url=base_url)


def embed_query(text: str) -> list[float]:
    """
    Embed one knowledge-search query with EMBEDDING_MODEL.

    Raises:
        ValueError: Neither OPENAI_API_KEY nor LLM_API_KEY is set.
        openai.APIError: The embeddings endpoint rejected the call.
    """
    settings = get_settings()
    api_key = settings.openai_api_key or settings.llm_api_key
    if not api_key:
        raise ValueError("Knowledge search needs an embeddings key: set OPENAI_API_KEY or LLM_API_KEY")

    client = _embeddings_client(api_key, settings.embedding_base_url)
    response = client.embeddings.create(model=settings.embedding_model, input=text)
    return response.data[0].embedding
