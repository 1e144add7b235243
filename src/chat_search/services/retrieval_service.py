"""Hybrid (vector + full-text) retrieval service with score fusion."""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from chat_search.services.embedding_service import EmbeddingService
from chat_search.storage.corpus_store import CorpusStore
from chat_search.storage.models import QueryResult, SearchCandidate
from chat_search.utils.errors import RetrievalError, ValidationError


logger = logging.getLogger("chat-search.retrieval")

MAX_LIMIT = 50


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


class RetrievalService:
    """Resolves a free-text query into one fused, ranked list of messages."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        corpus_store: CorpusStore,
        fusion_method: str = "weighted",
        semantic_weight: float = 1.0,
        full_text_weight: float = 1.0,
        k: int = 60,
        default_limit: int = 10,
        max_query_chars: int = 2000,
        timeout: Optional[float] = None
    ):
        """
        Initialize retrieval service.

        Args:
            embedding_service: Embedding service for query embeddings
            corpus_store: Store answering vector and lexical searches
            fusion_method: "weighted" (normalized score blend) or "rrf"
            semantic_weight: Relative weight of the vector path
            full_text_weight: Relative weight of the lexical path
            k: RRF constant (standard value: 60)
            default_limit: Result count when the caller gives none
            max_query_chars: Longest accepted query
            timeout: Per-request deadline in seconds (None/0 disables)
        """
        if fusion_method not in ("weighted", "rrf"):
            raise ValueError(f"Unknown fusion method: {fusion_method}")

        total_weight = semantic_weight + full_text_weight
        if semantic_weight < 0 or full_text_weight < 0 or total_weight == 0:
            raise ValueError("Fusion weights must be non-negative and not both zero")

        self.embedding_service = embedding_service
        self.corpus_store = corpus_store
        self.fusion_method = fusion_method
        self.semantic_weight = semantic_weight / total_weight
        self.full_text_weight = full_text_weight / total_weight
        self.k = k
        self.default_limit = default_limit
        self.max_query_chars = max_query_chars
        self.timeout = timeout or None

    def merge_results(
        self,
        vector_results: List[SearchCandidate],
        lexical_results: List[SearchCandidate],
        limit: int
    ) -> List[QueryResult]:
        """
        Fuse the two candidate lists into one ranked list.

        A record found by both paths appears once. Ordering is by
        descending fused score, ties broken by ascending id.

        Args:
            vector_results: Candidates from the vector path, best first
            lexical_results: Candidates from the lexical path, best first
            limit: Maximum results to return

        Returns:
            Fused results with similarity in [0, 1]
        """
        if self.fusion_method == "rrf":
            scores = self._rrf_scores(vector_results, lexical_results)
        else:
            scores = self._weighted_scores(vector_results, lexical_results)

        messages: Dict[str, str] = {}
        for candidate in list(vector_results) + list(lexical_results):
            messages.setdefault(candidate.id, candidate.message)

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))

        return [
            QueryResult(id=record_id, message=messages[record_id], similarity=score)
            for record_id, score in ranked[:limit]
        ]

    def _weighted_scores(
        self,
        vector_results: List[SearchCandidate],
        lexical_results: List[SearchCandidate]
    ) -> Dict[str, float]:
        scores: Dict[str, float] = {}
        # Only the best score per id and path counts
        for weight, results in (
            (self.semantic_weight, vector_results),
            (self.full_text_weight, lexical_results),
        ):
            best: Dict[str, float] = {}
            for candidate in results:
                best[candidate.id] = max(best.get(candidate.id, 0.0), _clamp(candidate.score))
            for record_id, score in best.items():
                scores[record_id] = scores.get(record_id, 0.0) + weight * score
        return scores

    def _rrf_scores(
        self,
        vector_results: List[SearchCandidate],
        lexical_results: List[SearchCandidate]
    ) -> Dict[str, float]:
        """
        Reciprocal Rank Fusion scaled by its maximum (rank 0 on both paths).
        """
        scores: Dict[str, float] = {}
        for weight, results in (
            (self.semantic_weight, vector_results),
            (self.full_text_weight, lexical_results),
        ):
            seen = set()
            for rank, candidate in enumerate(results):
                if candidate.id in seen:
                    continue
                seen.add(candidate.id)
                scores[candidate.id] = scores.get(candidate.id, 0.0) + weight / (self.k + rank + 1)

        scale = self.k + 1
        return {record_id: score * scale for record_id, score in scores.items()}

    async def hybrid_search(self, query: str, limit: Optional[int] = None) -> List[QueryResult]:
        """
        Run vector and lexical search for *query* and fuse the results.

        Args:
            query: Free-text query
            limit: Maximum results (1-50, default configured match count)

        Returns:
            Ranked results; empty when nothing matches

        Raises:
            ValidationError: Empty/whitespace query or invalid limit, raised
                before any external call
            RetrievalError: Any embedding, store or deadline failure
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query is required.")

        if len(query) > self.max_query_chars:
            raise ValidationError(
                f"Query must be at most {self.max_query_chars} characters"
            )

        if limit is None:
            limit = self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > MAX_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_LIMIT}")

        start_time = time.time()
        try:
            if self.timeout:
                results = await asyncio.wait_for(self._resolve(query, limit), self.timeout)
            else:
                results = await self._resolve(query, limit)

        except asyncio.TimeoutError as e:
            logger.error(f"Hybrid search exceeded {self.timeout}s deadline")
            raise RetrievalError(f"Search timed out after {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Hybrid search failed: {e}")
            raise RetrievalError(f"Failed to perform hybrid search: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Hybrid search completed: query_length={len(query)}, "
            f"fusion={self.fusion_method}, results={len(results)}, latency={latency_ms}ms"
        )
        return results

    async def _resolve(self, query: str, limit: int) -> List[QueryResult]:
        query_embedding = await self.embedding_service.generate_embedding(query)

        # Both paths must finish before fusing
        vector_results, lexical_results = await asyncio.gather(
            self.corpus_store.search_vector(query_embedding, limit),
            self.corpus_store.search_lexical(query, limit),
            return_exceptions=True
        )

        for path, results in (("vector", vector_results), ("lexical", lexical_results)):
            if isinstance(results, BaseException):
                raise results
            if not isinstance(results, list):
                raise RetrievalError(f"Malformed {path} search response: {type(results).__name__}")

        return self.merge_results(vector_results, lexical_results, limit)
