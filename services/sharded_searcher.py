"""Sharded searcher service for mgrep-local - queries fanned out over shard stores."""

import inspect
import time
from typing import Dict, List, Optional, Tuple

from loguru import logger

from core.models import SearchOptions, SearchResult, SearchStats
from interfaces.embedding_provider import Embedder
from providers.database.sharded_vector_store import ShardedVectorStore

from .base_service import BaseService
from .searcher import (
    DEFAULT_CONTEXT_LINES,
    DEFAULT_LIMIT,
    HYBRID_CANDIDATE_FACTOR,
    HYBRID_THRESHOLD_FACTOR,
    add_highlights,
    apply_keyword_boost,
    extract_keywords,
)

DEFAULT_SHARDED_THRESHOLD = 0.0
DEFAULT_SIMILAR_THRESHOLD = 0.5


class ShardedSearcher(BaseService[ShardedVectorStore]):
    """Searcher over a ShardedVectorStore.

    Plain searches use parallel fan-out unless progressive delivery is
    requested, in which case shards are queried in rank order and the merged
    top results are reported after each one.
    """

    def __init__(
        self,
        sharded_store: ShardedVectorStore,
        embedder: Embedder,
        default_limit: int = DEFAULT_LIMIT,
        default_threshold: float = DEFAULT_SHARDED_THRESHOLD,
        similar_threshold: float = DEFAULT_SIMILAR_THRESHOLD,
        default_context_lines: int = DEFAULT_CONTEXT_LINES,
    ):
        super().__init__(sharded_store, embedder)
        self._default_limit = default_limit
        self._default_threshold = default_threshold
        self._similar_threshold = similar_threshold
        self._default_context_lines = default_context_lines

    def _limits(self, options: SearchOptions, default_threshold: float) -> Tuple[int, float]:
        limit = options.limit or self._default_limit
        threshold = default_threshold if options.threshold is None else options.threshold
        return limit, threshold

    async def _fetch(
        self, embedding: List[float], limit: int, threshold: float, options: SearchOptions
    ) -> List[SearchResult]:
        if options.progressive:
            return await self._store.search_progressive(embedding, limit, threshold, options.on_progress)
        return await self._store.search_parallel(embedding, limit, threshold)

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        options = options or SearchOptions()
        limit, threshold = self._limits(options, self._default_threshold)
        try:
            embedding = await self._embedder.embed(query)
            results = await self._fetch(embedding, limit, threshold, options)
        except Exception as e:
            logger.error(f"Sharded search failed: {e}")
            raise
        return self._finish(results, query, options)

    async def hybrid_search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Sharded search re-ranked by literal keyword matches, as Searcher.hybrid_search."""
        options = options or SearchOptions()
        limit, threshold = self._limits(options, self._default_threshold)
        try:
            embedding = await self._embedder.embed(query)
            candidates = await self._fetch(
                embedding, limit * HYBRID_CANDIDATE_FACTOR, threshold * HYBRID_THRESHOLD_FACTOR, options
            )
        except Exception as e:
            logger.error(f"Sharded hybrid search failed: {e}")
            raise

        keywords = extract_keywords(query)
        if keywords:
            results = apply_keyword_boost(candidates, keywords, limit)
        else:
            results = [result for result in candidates if result.similarity >= threshold][:limit]
        return self._finish(results, query, options)

    async def search_with_stats(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> Tuple[List[SearchResult], SearchStats]:
        """Progressive search that also reports how long each shard took."""
        options = options or SearchOptions()
        limit, threshold = self._limits(options, self._default_threshold)
        started = time.perf_counter()
        last_mark = started
        shard_durations: Dict[int, float] = {}

        async def record(partial: List[SearchResult], shard_id: int, is_last: bool) -> None:
            nonlocal last_mark
            now = time.perf_counter()
            shard_durations[shard_id] = (now - last_mark) * 1000
            last_mark = now
            if options.on_progress is not None:
                outcome = options.on_progress(partial, shard_id, is_last)
                if inspect.isawaitable(outcome):
                    await outcome

        embedding = await self._embedder.embed(query)
        results = await self._store.search_progressive(embedding, limit, threshold, record)

        stats = SearchStats(
            total_shards=self._store.shard_count,
            shards_queried=len(shard_durations),
            total_results=len(results),
            duration_ms=(time.perf_counter() - started) * 1000,
            shard_durations=shard_durations,
        )
        logger.debug(
            f"Sharded search queried {stats.shards_queried}/{stats.total_shards} shards "
            f"in {stats.duration_ms:.1f}ms"
        )
        return self._finish(results, query, options), stats

    async def find_similar(self, code: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Find chunks similar to a code snippet, with a stricter default threshold."""
        options = options or SearchOptions()
        limit, threshold = self._limits(options, self._similar_threshold)
        embedding = await self._embedder.embed(code)
        results = await self._store.search_parallel(embedding, limit, threshold)
        return self._finish(results, code, options)

    def _finish(self, results: List[SearchResult], query: str, options: SearchOptions) -> List[SearchResult]:
        if not options.return_context:
            return results
        context_lines = (
            self._default_context_lines if options.context_lines is None else options.context_lines
        )
        return add_highlights(results, query, context_lines)
