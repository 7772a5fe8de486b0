"""Searcher service for mgrep-local - semantic and keyword-boosted hybrid search."""

import re
from typing import List, Optional

from loguru import logger

from core.models import SearchOptions, SearchResult
from interfaces.embedding_provider import Embedder
from interfaces.vector_store import VectorStore

from .base_service import BaseService

DEFAULT_LIMIT = 10
DEFAULT_THRESHOLD = 0.3
DEFAULT_CONTEXT_LINES = 3
KEYWORD_BOOST = 0.1
HYBRID_CANDIDATE_FACTOR = 2
HYBRID_THRESHOLD_FACTOR = 0.8

STOP_WORDS = frozenset("""
    a an the and or but in on at to for of with by from as is was are were been be
    have has had do does did will would could should may might must can this that
    these those it its my your his her our their what which who whom where when why
    how all each every both few more most other some such no not only same so than
    too very just also now here there then if else
""".split())

_KEYWORD_SPLIT = re.compile(r"[\s\-_.,;:!?()\[\]{}'\"]+")


def extract_keywords(query: str) -> List[str]:
    """Lowercased query tokens minus stop words and single characters."""
    return [
        token
        for token in _KEYWORD_SPLIT.split(query.lower())
        if len(token) >= 2 and token not in STOP_WORDS
    ]


def count_keyword_matches(content: str, keywords: List[str]) -> int:
    """Number of keywords occurring (case-insensitively) in the content."""
    lowered = content.lower()
    return sum(1 for keyword in keywords if keyword in lowered)


def create_highlight(content: str, keywords: List[str], context_lines: int = DEFAULT_CONTEXT_LINES) -> str:
    """Return the lines around the first keyword hit with every hit wrapped in ``**``.

    Without a hit the first ``2 * context_lines + 1`` lines are returned.
    """
    lines = content.split("\n")
    lowered_keywords = [keyword.lower() for keyword in keywords if keyword]

    first_hit = None
    for index, line in enumerate(lines):
        lowered = line.lower()
        if any(keyword in lowered for keyword in lowered_keywords):
            first_hit = index
            break

    if first_hit is None:
        window = lines[: 2 * context_lines + 1]
    else:
        window = lines[max(0, first_hit - context_lines): first_hit + context_lines + 1]

    snippet = "\n".join(window)
    for keyword in lowered_keywords:
        snippet = re.sub(f"({re.escape(keyword)})", r"**\1**", snippet, flags=re.IGNORECASE)
    return snippet


def apply_keyword_boost(
    results: List[SearchResult], keywords: List[str], limit: int
) -> List[SearchResult]:
    """Raise each result by KEYWORD_BOOST per matched keyword, capped at 1.0, then re-rank."""
    boosted = [
        result.with_similarity(
            min(1.0, result.similarity + count_keyword_matches(result.content, keywords) * KEYWORD_BOOST)
        )
        for result in results
    ]
    boosted.sort(key=lambda result: result.similarity, reverse=True)
    return boosted[:limit]


def add_highlights(
    results: List[SearchResult], query: str, context_lines: int
) -> List[SearchResult]:
    keywords = extract_keywords(query)
    return [
        result.with_highlight(create_highlight(result.content, keywords, context_lines))
        for result in results
    ]


class Searcher(BaseService[VectorStore]):
    """Service answering natural-language queries against a single vector store."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        default_limit: int = DEFAULT_LIMIT,
        default_threshold: float = DEFAULT_THRESHOLD,
        default_context_lines: int = DEFAULT_CONTEXT_LINES,
    ):
        super().__init__(vector_store, embedder)
        self._default_limit = default_limit
        self._default_threshold = default_threshold
        self._default_context_lines = default_context_lines

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Semantic search.

        Args:
            query: Natural language query
            options: Limit, threshold and highlight settings

        Returns:
            Results ordered by descending similarity
        """
        options = options or SearchOptions()
        limit = options.limit or self._default_limit
        threshold = self._default_threshold if options.threshold is None else options.threshold

        try:
            logger.debug(f"Searching for: '{query}' (limit={limit}, threshold={threshold})")
            embedding = await self._embedder.embed(query)
            results = await self._store.search(embedding, limit, threshold)
        except Exception as e:
            logger.error(f"Search failed: {e}")
            raise

        return self._finish(results, query, options)

    async def hybrid_search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Semantic search re-ranked by literal keyword matches.

        Fetches twice the limit at a lowered threshold, then boosts every
        candidate by KEYWORD_BOOST per query keyword it contains.
        """
        options = options or SearchOptions()
        limit = options.limit or self._default_limit
        threshold = self._default_threshold if options.threshold is None else options.threshold

        try:
            embedding = await self._embedder.embed(query)
            candidates = await self._store.search(
                embedding, limit * HYBRID_CANDIDATE_FACTOR, threshold * HYBRID_THRESHOLD_FACTOR
            )
        except Exception as e:
            logger.error(f"Hybrid search failed: {e}")
            raise

        keywords = extract_keywords(query)
        if keywords:
            results = apply_keyword_boost(candidates, keywords, limit)
        else:
            results = [result for result in candidates if result.similarity >= threshold][:limit]
        return self._finish(results, query, options)

    def _finish(self, results: List[SearchResult], query: str, options: SearchOptions) -> List[SearchResult]:
        if not options.return_context:
            return results
        context_lines = (
            self._default_context_lines if options.context_lines is None else options.context_lines
        )
        return add_highlights(results, query, context_lines)
