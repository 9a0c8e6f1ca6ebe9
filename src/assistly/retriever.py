"""
Query retrieval with tiered relevance selection.

This module provides the retrieval step of the answer pipeline:

RETRIEVAL:
- Embeds the query off the event loop under a timeout
- Calls the vector search client off the event loop under a timeout
- Degrades search errors and timeouts to zero matches
- Treats query embedding errors as fatal for the request

SELECTION:
- Validity filter (non-blank title and content, similarity present and >= 0)
- Tiered threshold selection over candidates sorted by similarity:
  Tier A (> 0.4) when at least two candidates qualify, Tier B (> 0.3)
  otherwise, and a small top-N fallback when neither tier has members

DIAGNOSTICS:
- Similarity statistics over a candidate list

ENVIRONMENT VARIABLES USED:
- RETRIEVAL_TOP_K, EMBEDDING_TIMEOUT, VECTOR_SEARCH_TIMEOUT
- TIER_A_THRESHOLD, TIER_A_LIMIT, TIER_B_THRESHOLD, TIER_B_MIN,
  TIER_B_MAX, FALLBACK_LIMIT
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from assistly.embedder import LocalEmbedder, get_embedder
from assistly.models import MatchCandidate
from assistly.normalizer import normalize_query
from assistly.utils import AssistlyError, get_config, sanitize_for_logging, Timer
from assistly.vector import VectorSearchClient, get_search_client


class RetrievalFailedError(AssistlyError):
    """Raised when the query could not be embedded."""
    pass


class SearchDegradedError(AssistlyError):
    """Raised internally when vector search errors or times out."""
    pass


class SelectionPolicy(BaseModel):
    """Thresholds and slice sizes for tiered candidate selection."""
    tier_a_threshold: float = Field(0.4, description="Tier A admits similarity strictly above this")
    tier_a_limit: int = Field(7, ge=1, description="Maximum Tier A candidates kept")
    tier_b_threshold: float = Field(0.3, description="Tier B admits similarity strictly above this")
    tier_b_min: int = Field(3, ge=1, description="Lower bound of the Tier B slice")
    tier_b_max: int = Field(5, ge=1, description="Upper bound of the Tier B slice")
    fallback_limit: int = Field(3, ge=0, description="Candidates kept when no tier has members")

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "SelectionPolicy":
        config = config or get_config()
        return cls(
            tier_a_threshold=config["TIER_A_THRESHOLD"],
            tier_a_limit=config["TIER_A_LIMIT"],
            tier_b_threshold=config["TIER_B_THRESHOLD"],
            tier_b_min=config["TIER_B_MIN"],
            tier_b_max=config["TIER_B_MAX"],
            fallback_limit=config["FALLBACK_LIMIT"]
        )


def _is_blank(value: Optional[str]) -> bool:
    return not isinstance(value, str) or not value.strip()


def filter_valid_candidates(candidates: List[MatchCandidate]) -> List[MatchCandidate]:
    """
    Drop candidates that cannot be used as context.

    Args:
        candidates: Raw candidates from the search client

    Returns:
        List[MatchCandidate]: Candidates with non-blank title and content and
        a similarity that is present and non-negative, in input order
    """
    valid = [
        c for c in candidates
        if not _is_blank(c.content)
        and not _is_blank(c.title)
        and c.similarity is not None
        and c.similarity >= 0
    ]

    dropped = len(candidates) - len(valid)
    if dropped:
        logger.debug("Dropped invalid candidates", dropped=dropped, kept=len(valid))

    return valid


def select_candidates(
    candidates: List[MatchCandidate],
    policy: Optional[SelectionPolicy] = None
) -> List[MatchCandidate]:
    """
    Apply the tiered threshold policy.

    Valid candidates are sorted by similarity descending (stable for ties).
    If at least two exceed the Tier A threshold, the top Tier A candidates
    are returned. Otherwise, if any exceed the Tier B threshold, between
    ``tier_b_min`` and ``tier_b_max`` of them are returned (never more than
    exist). Otherwise the top ``fallback_limit`` valid candidates are
    returned.

    Args:
        candidates: Candidates from the search client, in any order
        policy: Selection policy, defaults to the standard thresholds

    Returns:
        List[MatchCandidate]: Selected candidates, best first
    """
    policy = policy or SelectionPolicy()

    ranked = sorted(filter_valid_candidates(candidates), key=lambda c: c.similarity, reverse=True)

    tier_a = [c for c in ranked if c.similarity > policy.tier_a_threshold]
    if len(tier_a) >= 2:
        selected = tier_a[:policy.tier_a_limit]
        tier = "A"
    else:
        tier_b = [c for c in ranked if c.similarity > policy.tier_b_threshold]
        if tier_b:
            limit = min(policy.tier_b_max, max(policy.tier_b_min, len(tier_b)))
            selected = tier_b[:limit]
            tier = "B"
        else:
            selected = ranked[:policy.fallback_limit]
            tier = "fallback"

    logger.debug("Candidates selected", tier=tier, valid=len(ranked), selected=len(selected))
    return selected


def similarity_stats(candidates: List[MatchCandidate]) -> Dict[str, Any]:
    """
    Summarize candidate similarities.

    Candidates without a similarity are ignored.

    Returns:
        Dict[str, Any]: count, max, min, mean, above_0_5 and above_0_7
    """
    scores = [c.similarity for c in candidates if c.similarity is not None]

    if not scores:
        return {"count": 0, "max": 0.0, "min": 0.0, "mean": 0.0, "above_0_5": 0, "above_0_7": 0}

    return {
        "count": len(scores),
        "max": max(scores),
        "min": min(scores),
        "mean": sum(scores) / len(scores),
        "above_0_5": sum(1 for s in scores if s > 0.5),
        "above_0_7": sum(1 for s in scores if s > 0.7),
    }


class Retriever:
    """
    Embeds a query, searches the knowledge base and selects candidates.

    The embedder and search client are injected so that tests and tools can
    substitute their own.
    """

    def __init__(
        self,
        embedder: LocalEmbedder,
        search_client: VectorSearchClient,
        policy: Optional[SelectionPolicy] = None,
        normalize: bool = False,
        embedding_timeout: float = 10.0,
        search_timeout: float = 10.0
    ):
        self.embedder = embedder
        self.search_client = search_client
        self.policy = policy or SelectionPolicy()
        self.normalize = normalize
        self.embedding_timeout = embedding_timeout
        self.search_timeout = search_timeout

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "Retriever":
        config = config or get_config()
        return cls(
            embedder=get_embedder(),
            search_client=get_search_client(),
            policy=SelectionPolicy.from_config(config),
            embedding_timeout=config["EMBEDDING_TIMEOUT"],
            search_timeout=config["VECTOR_SEARCH_TIMEOUT"]
        )

    def _query_text(self, query: str) -> str:
        if not self.normalize:
            return query
        normalized = normalize_query(query)
        return normalized or query

    async def embed_query(self, query: str) -> Optional[List[float]]:
        """
        Embed the query off the event loop.

        The timeout applies to inference only. A model that is not loaded
        yet is loaded first, without a timeout.

        Returns:
            Optional[List[float]]: Query vector, or None when embedding timed out

        Raises:
            RetrievalFailedError: If the embedder rejects the query or fails
        """
        try:
            if not self.embedder.is_loaded:
                await asyncio.to_thread(self.embedder.load)
            return await asyncio.wait_for(
                asyncio.to_thread(self.embedder.embed, self._query_text(query)),
                timeout=self.embedding_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Query embedding timed out, continuing without matches",
                           timeout=self.embedding_timeout)
            return None
        except AssistlyError as e:
            logger.error("Query embedding failed", error=str(e))
            raise RetrievalFailedError(f"Query embedding failed: {str(e)}") from e

    async def _search(self, vector: List[float], top_k: int) -> List[MatchCandidate]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.search_client.search, vector, top_k),
                timeout=self.search_timeout
            )
        except asyncio.TimeoutError as e:
            raise SearchDegradedError(f"Search timed out after {self.search_timeout} seconds") from e
        except Exception as e:
            raise SearchDegradedError(f"Search failed: {str(e)}") from e

    async def search(self, vector: List[float], top_k: int) -> List[MatchCandidate]:
        """Run the vector search, returning [] when it errors or times out."""
        try:
            return await self._search(vector, top_k)
        except SearchDegradedError as e:
            logger.warning("Vector search degraded to zero matches", error=str(e), top_k=top_k)
            return []

    async def retrieve(self, query: str, top_k: int = 15) -> List[MatchCandidate]:
        """
        Retrieve the selected candidates for a query.

        Args:
            query: User question
            top_k: Number of raw candidates requested from the search client

        Returns:
            List[MatchCandidate]: Selected subset, best first; empty when no
            context could be found

        Raises:
            RetrievalFailedError: If the query could not be embedded
        """
        with Timer("retrieval"):
            vector = await self.embed_query(query)
            if vector is None:
                return []

            raw = await self.search(vector, top_k)
            selected = select_candidates(raw, self.policy)

        stats = similarity_stats(raw)
        logger.info(
            "Retrieval completed",
            query=sanitize_for_logging(query, 100),
            raw_count=len(raw),
            selected_count=len(selected),
            max_similarity=stats["max"]
        )
        return selected
