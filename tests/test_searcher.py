"""Tests for the Searcher service and its keyword helpers."""

from unittest.mock import AsyncMock

import pytest

from core.exceptions import StorageError
from core.models import ChunkMetadata, SearchOptions, SearchResult
from services import Indexer, Searcher
from services.searcher import (
    KEYWORD_BOOST,
    apply_keyword_boost,
    count_keyword_matches,
    create_highlight,
    extract_keywords,
)


def make_result(file_path: str, content: str, similarity: float) -> SearchResult:
    return SearchResult(
        file_path=file_path,
        chunk_index=0,
        content=content,
        similarity=similarity,
        metadata=ChunkMetadata(start_line=1, end_line=1, language="python"),
    )


class TestKeywordHelpers:
    def test_extract_keywords_drops_stop_words(self):
        assert extract_keywords("How does the user_login work?") == ["user", "login", "work"]

    def test_extract_keywords_only_stop_words(self):
        assert extract_keywords("what is the a") == []

    def test_count_keyword_matches_is_case_insensitive(self):
        assert count_keyword_matches("def Login(USER):", ["login", "user", "token"]) == 2

    def test_highlight_around_first_hit(self):
        content = "line one\nline two\ncall login here\nline four\nline five"
        assert create_highlight(content, ["login"], context_lines=1) == (
            "line two\ncall **login** here\nline four"
        )

    def test_highlight_without_hit_takes_leading_lines(self):
        content = "\n".join(f"row {i}" for i in range(10))
        assert create_highlight(content, ["missing"], context_lines=1) == "row 0\nrow 1\nrow 2"

    def test_highlight_escapes_regex_and_ignores_case(self):
        assert create_highlight("Call A+B now", ["a+b"], context_lines=0) == "Call **A+B** now"

    def test_keyword_boost_reranks_and_caps(self):
        results = [
            make_result("a.py", "nothing relevant", 0.8),
            make_result("b.py", "login and token", 0.7),
            make_result("c.py", "login token user", 0.95),
        ]
        boosted = apply_keyword_boost(results, ["login", "token"], limit=2)

        assert [result.file_path for result in boosted] == ["c.py", "b.py"]
        assert boosted[0].similarity == 1.0
        assert boosted[1].similarity == pytest.approx(0.7 + 2 * KEYWORD_BOOST)


class TestSearcher:
    @pytest.fixture
    async def searcher(self, store, embedder, sample_files):
        await Indexer(store, embedder).index_files(sample_files)
        return Searcher(store, embedder)

    async def test_search_finds_relevant_file(self, searcher):
        results = await searcher.search("database sql query")
        assert results
        assert results[0].file_path == "src/db/query.py"
        assert all(result.similarity >= 0.3 for result in results)

    async def test_search_respects_limit(self, searcher):
        results = await searcher.search("login", SearchOptions(limit=1, threshold=0.0))
        assert len(results) == 1

    async def test_high_threshold_returns_nothing_for_unrelated_query(self, searcher):
        assert await searcher.search("sort rank order", SearchOptions(threshold=0.5)) == []

    async def test_return_context_adds_highlight(self, searcher):
        results = await searcher.search("evict cache", SearchOptions(return_context=True, context_lines=0))
        assert results[0].file_path == "src/cache/lru.py"
        assert "**" in results[0].highlight

    async def test_no_highlight_by_default(self, searcher):
        results = await searcher.search("evict cache")
        assert results[0].highlight is None

    async def test_hybrid_boosts_keyword_matches(self, searcher):
        plain = await searcher.search("fetch url", SearchOptions(threshold=0.0))
        hybrid = await searcher.hybrid_search("fetch url", SearchOptions(threshold=0.0))

        assert hybrid[0].file_path == "src/net/client.py"
        assert hybrid[0].similarity >= plain[0].similarity

    @pytest.mark.parametrize("query", ["fetch url", "evict cache", "sql table connection"])
    async def test_hybrid_never_lowers_keyword_matches(self, searcher, query):
        options = SearchOptions(limit=20, threshold=0.0)
        plain = {r.key: r for r in await searcher.search(query, options)}
        hybrid = {r.key: r for r in await searcher.hybrid_search(query, options)}
        keywords = extract_keywords(query)

        matched = [key for key, r in plain.items() if count_keyword_matches(r.content, keywords)]
        assert matched
        for key in matched:
            assert hybrid[key].similarity >= plain[key].similarity

    async def test_search_error_propagates(self, store, embedder):
        await store.dispose()
        with pytest.raises(StorageError):
            await Searcher(store, embedder).search("login")


class TestHybridCandidates:
    """Candidate fetching with a mocked store."""

    @pytest.fixture
    def mock_store(self):
        store = AsyncMock()
        store.search.return_value = [
            make_result("a.py", "alpha", 0.5),
            make_result("b.py", "beta", 0.28),
            make_result("c.py", "gamma", 0.25),
        ]
        return store

    async def test_fetches_double_limit_at_lowered_threshold(self, mock_store, embedder):
        searcher = Searcher(mock_store, embedder)
        await searcher.hybrid_search("beta", SearchOptions(limit=4, threshold=0.3))

        _, limit, threshold = mock_store.search.call_args.args
        assert limit == 8
        assert threshold == pytest.approx(0.24)

    async def test_keyword_lifts_candidate_below_threshold(self, mock_store, embedder):
        searcher = Searcher(mock_store, embedder)
        results = await searcher.hybrid_search("beta", SearchOptions(limit=2, threshold=0.3))
        assert [r.file_path for r in results] == ["a.py", "b.py"]
        assert results[1].similarity == pytest.approx(0.38)

    async def test_without_keywords_applies_threshold(self, mock_store, embedder):
        searcher = Searcher(mock_store, embedder)
        results = await searcher.hybrid_search("the a", SearchOptions(limit=5, threshold=0.3))
        assert [r.file_path for r in results] == ["a.py"]
