"""
Vector search clients for the knowledge base.

This module provides the read-only nearest-neighbor search used by the
retriever, with the following implementations:

- VectorSearchClient: the search contract, search(vector, k) -> candidates
- PineconeVectorSearch: queries a Pinecone index whose metadata carries the
  item source, title and content
- InMemoryVectorSearch: numpy cosine search over a fixed list of knowledge
  items (local development, diagnostics and tests)

Search calls are synchronous; the retriever runs them off the event loop
under a timeout.

ENVIRONMENT VARIABLES USED:
- PINECONE_API_KEY: Pinecone API key
- PINECONE_INDEX_NAME: Name of the Pinecone index
- EMBEDDING_DIMENSION: Expected vector length
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger
from pinecone import Pinecone

from assistly.models import Document, FaqEntry, KnowledgeItem, MatchCandidate, SourceType
from assistly.utils import AssistlyError, get_config, require, Timer


class KnowledgeStoreError(AssistlyError):
    """Raised when the knowledge store is unreachable or holds invalid data."""
    pass


class VectorSearchClient:
    """Nearest-neighbor search over knowledge item embeddings."""

    def search(self, vector: List[float], k: int) -> List[MatchCandidate]:
        """
        Return up to ``k`` candidates ordered by descending similarity.

        Args:
            vector: Query embedding
            k: Maximum number of candidates

        Returns:
            List[MatchCandidate]: Matches with cosine similarity
        """
        raise NotImplementedError


def _parse_source(value: Any) -> SourceType:
    try:
        return SourceType(str(value).lower())
    except ValueError:
        return SourceType.DOC


class PineconeVectorSearch(VectorSearchClient):
    """
    Pinecone-backed search.

    Each vector's metadata is expected to hold ``source`` ("doc" or "faq"),
    ``title`` (document title or FAQ question) and ``content`` (document text
    or FAQ answer). Missing metadata is passed through as None so that the
    retriever's validity filter can drop the row.
    """

    def __init__(self, api_key: str, index_name: str, index: Optional[Any] = None):
        self.index_name = index_name

        if index is not None:
            self.index = index
            return

        try:
            self.pc_client = Pinecone(api_key=api_key)
            self.index = self.pc_client.Index(index_name)
        except Exception as e:
            logger.error("Failed to initialize Pinecone client", index_name=index_name, error=str(e))
            raise KnowledgeStoreError(f"Client initialization failed: {str(e)}") from e

        logger.info("Pinecone search client initialized", index_name=index_name)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "PineconeVectorSearch":
        config = config or get_config()
        return cls(
            api_key=require(config, "PINECONE_API_KEY"),
            index_name=config["PINECONE_INDEX_NAME"]
        )

    @staticmethod
    def _match_to_candidate(match: Any) -> MatchCandidate:
        if isinstance(match, dict):
            match_id = match.get("id")
            score = match.get("score")
            metadata = match.get("metadata") or {}
        else:
            match_id = getattr(match, "id", None)
            score = getattr(match, "score", None)
            metadata = getattr(match, "metadata", None) or {}

        return MatchCandidate(
            id=str(match_id),
            source=_parse_source(metadata.get("source", SourceType.DOC.value)),
            title=metadata.get("title"),
            content=metadata.get("content"),
            similarity=score
        )

    def search(self, vector: List[float], k: int) -> List[MatchCandidate]:
        if k <= 0:
            return []

        with Timer("pinecone_query"):
            try:
                response = self.index.query(vector=list(vector), top_k=k, include_metadata=True)
            except Exception as e:
                logger.error("Pinecone query failed", index_name=self.index_name, error=str(e))
                raise KnowledgeStoreError(f"Search execution failed: {str(e)}") from e

        if isinstance(response, dict):
            matches = response.get("matches") or []
        else:
            matches = getattr(response, "matches", None) or []

        candidates = [self._match_to_candidate(m) for m in matches if m is not None]
        logger.debug("Pinecone query returned matches", count=len(candidates), top_k=k)
        return candidates


class InMemoryVectorSearch(VectorSearchClient):
    """
    Read-only cosine search over knowledge items held in memory.

    Items without an embedding are skipped. An embedding whose length differs
    from ``dimension`` is rejected with KnowledgeStoreError.
    """

    def __init__(self, items: Sequence[KnowledgeItem], dimension: int = 384):
        self.dimension = dimension
        self.items: List[KnowledgeItem] = []
        vectors = []
        skipped = 0

        for item in items:
            if item.embedding is None:
                skipped += 1
                continue
            if len(item.embedding) != dimension:
                raise KnowledgeStoreError(
                    f"Embedding for {item.id} has length {len(item.embedding)}, expected {dimension}"
                )
            self.items.append(item)
            vectors.append(item.embedding)

        self._matrix = np.asarray(vectors, dtype=np.float64).reshape(len(vectors), dimension)
        self._norms = np.linalg.norm(self._matrix, axis=1)

        logger.info("In-memory knowledge index built", items=len(self.items), skipped=skipped)

    @staticmethod
    def _to_candidate(item: KnowledgeItem, similarity: float) -> MatchCandidate:
        if isinstance(item, FaqEntry):
            title, content = item.question, item.answer
        else:
            title, content = item.title, item.content
        return MatchCandidate(
            id=item.id,
            source=item.source,
            title=title,
            content=content,
            similarity=similarity
        )

    def search(self, vector: List[float], k: int) -> List[MatchCandidate]:
        if k <= 0 or not self.items:
            return []

        query = np.asarray(vector, dtype=np.float64)
        if query.shape != (self.dimension,):
            raise KnowledgeStoreError(
                f"Query vector has shape {query.shape}, expected ({self.dimension},)"
            )

        denominator = self._norms * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(denominator > 0, self._matrix @ query / denominator, 0.0)

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        return [self._to_candidate(self.items[i], round(float(scores[i]), 6)) for i in order]


def documents_and_faqs(records: Sequence[Dict[str, Any]]) -> List[KnowledgeItem]:
    """
    Build knowledge items from plain records.

    Records with ``question``/``answer`` keys become FAQ entries, everything
    else is read as a document.
    """
    items: List[KnowledgeItem] = []
    for record in records:
        if "question" in record:
            items.append(FaqEntry(**record))
        else:
            items.append(Document(**record))
    return items


# Global instance
_search_client: Optional[VectorSearchClient] = None


def get_search_client() -> VectorSearchClient:
    """
    Get the global search client, initializing the Pinecone client if needed.

    Returns:
        VectorSearchClient: Configured search client
    """
    global _search_client
    if _search_client is None:
        _search_client = PineconeVectorSearch.from_config()
    return _search_client
