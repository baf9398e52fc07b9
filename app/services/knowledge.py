# =============================================================================
# Knowledge Search — Context Snippets for Agent Prompts
# =============================================================================
#
# Before a chunk is sent to the agents, the orchestrator asks the knowledge
# store for topically related snippets and hands them to every agent as
# extra context.
#
# ARCHITECTURE:
#   KnowledgeSearch (Protocol)
#   ├── ChromaKnowledgeSearch — embed query (OpenAI) + Chroma nearest neighbours
#   ├── NullKnowledgeSearch   — always empty (KNOWLEDGE_ENABLED=false)
#   └── search_or_empty()     — degrades any failure to []
#
# Knowledge lookups are best-effort: a failing store leaves the agents with
# no extra context, it never fails the chunk or the job.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

import chromadb

from app.config import Settings
from app.services.embedder import embed_query

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class KnowledgeSnippet:
    """One ranked result from the knowledge store."""

    content: str
    source: str | None = None
    score: float = 0.0  # 0.0–1.0, higher = more relevant
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class KnowledgeSearch(Protocol):
    """Nearest-neighbour search over the knowledge store."""

    async def search(self, query: str, limit: int = 5) -> list[KnowledgeSnippet]:
        """Return up to `limit` snippets, most relevant first."""
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class NullKnowledgeSearch:
    """Knowledge store disabled: every search comes back empty."""

    async def search(self, query: str, limit: int = 5) -> list[KnowledgeSnippet]:
        return []


class ChromaKnowledgeSearch:
    """
    Chroma-backed knowledge search.

    - CHROMA_URL set   → HttpClient (client/server mode)
    - CHROMA_URL unset → PersistentClient at CHROMA_PATH
    """

    def __init__(
        self,
        collection_name: str,
        chroma_url: str | None = None,
        chroma_path: str = "data/chroma",
    ) -> None:
        if chroma_url:
            self._client = chromadb.HttpClient(host=chroma_url)
        else:
            self._client = chromadb.PersistentClient(path=chroma_path)

        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info("Knowledge search using Chroma collection '%s'", collection_name)

    async def search(self, query: str, limit: int = 5) -> list[KnowledgeSnippet]:
        # Both the OpenAI embeddings client and Chroma's client are sync
        return await asyncio.to_thread(self._sync_search, query, limit)

    def _sync_search(self, query: str, limit: int) -> list[KnowledgeSnippet]:
        embedding = embed_query(query)
        results = self._collection.query(
            query_embeddings=[embedding],
            n_results=limit,
            include=["documents", "metadatas", "distances"],
        )

        snippets: list[KnowledgeSnippet] = []
        if not results or not results["ids"] or not results["ids"][0]:
            return snippets

        documents = results["documents"][0] if results["documents"] else []
        metadatas = results["metadatas"][0] if results["metadatas"] else []
        distances = results["distances"][0] if results["distances"] else []

        for i, _ in enumerate(results["ids"][0]):
            metadata = dict(metadatas[i] or {}) if i < len(metadatas) else {}
            distance = distances[i] if i < len(distances) else 1.0
            snippets.append(KnowledgeSnippet(
                content=documents[i] if i < len(documents) else "",
                source=metadata.get("source_document") or metadata.get("source"),
                # Chroma cosine distance is in [0, 2]; convert to similarity
                score=round(max(0.0, 1.0 - distance), 4),
                metadata=metadata,
            ))
        return snippets


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def search_or_empty(
    knowledge: KnowledgeSearch,
    query: str,
    limit: int,
) -> list[KnowledgeSnippet]:
    """Run a knowledge search, degrading any failure to an empty list."""
    if not query.strip():
        return []
    try:
        return await knowledge.search(query, limit=limit)
    except Exception as e:
        logger.warning("Knowledge search failed, continuing without context: %s", e)
        return []


def get_knowledge_search(settings: Settings) -> KnowledgeSearch:
    """Build the knowledge search backend described by settings."""
    if not settings.knowledge_enabled:
        logger.info("Knowledge search disabled")
        return NullKnowledgeSearch()
    return ChromaKnowledgeSearch(
        collection_name=settings.knowledge_collection,
        chroma_url=settings.chroma_url,
        chroma_path=settings.chroma_path,
    )
