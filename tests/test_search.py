"""Tests for SearchCoordinator (hybrid read path)."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from aimo.errors import EmbeddingError, NotFoundError, StoreWriteError, ValidationError
from aimo.models import SearchFilters


def unit(*values):
    """8-dim vector with the given leading components."""
    return list(values) + [0.0] * (8 - len(values))


@pytest.fixture
def shaped_embedder(embedder):
    embedder.vectors.update(
        {
            "query": unit(1.0),
            "foreign nearest": unit(1.0, 0.01),
            "close": unit(1.0, 0.1),
            "mid": unit(1.0, 1.0),
            "far": unit(0.0, 1.0),
        }
    )
    return embedder


class TestVectorSearch:
    """Tests for vector_search."""

    @pytest.mark.asyncio
    async def test_results_sorted_by_relevance(self, search, memos, shaped_embedder):
        for text in ("far", "close", "mid"):
            await memos.create_memo("u1", text)

        result = await search.vector_search("u1", "query", page=1, limit=10)

        scores = [item.relevance_score for item in result.items]
        assert [item.content for item in result.items] == ["close", "mid", "far"]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert result.pagination.model_dump() == {"total": 3, "page": 1, "limit": 10, "total_pages": 1}

    @pytest.mark.asyncio
    async def test_relevance_from_distance(self, search, memos, embedder):
        embedder.vectors.update({"same": unit(1.0), "opposite": unit(-1.0), "q": unit(1.0)})
        await memos.create_memo("u1", "same")
        await memos.create_memo("u1", "opposite")

        result = await search.vector_search("u1", "q", limit=5)

        by_content = {item.content: item.relevance_score for item in result.items}
        assert by_content["same"] == pytest.approx(1.0)
        assert by_content["opposite"] == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_other_users_shrink_the_page(self, search, memos, shaped_embedder):
        """The user filter runs after the vector window is fixed."""
        await memos.create_memo("u2", "foreign nearest")
        for text in ("close", "mid", "far"):
            await memos.create_memo("u1", text)

        first = await search.vector_search("u1", "query", page=1, limit=2)
        assert [item.content for item in first.items] == ["close"]
        assert first.pagination.total == 1

        second = await search.vector_search("u1", "query", page=2, limit=2)
        assert [item.content for item in second.items] == ["mid", "far"]
        assert second.pagination.total == 3
        assert second.pagination.total_pages == 2

    @pytest.mark.asyncio
    async def test_scalar_filters(self, search, memos, shaped_embedder):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await memos.create_memo("u1", "close", category_id="work", created_at=base)
        await memos.create_memo("u1", "mid", created_at=base + timedelta(days=30))

        work = await search.vector_search("u1", "query", filters=SearchFilters(category_id="work"))
        assert [item.content for item in work.items] == ["close"]

        loose = await search.vector_search(
            "u1", "query", filters=SearchFilters(category_id="uncategorized")
        )
        assert [item.content for item in loose.items] == ["mid"]

        recent = await search.vector_search(
            "u1", "query", filters=SearchFilters(start_date=base + timedelta(days=1))
        )
        assert [item.content for item in recent.items] == ["mid"]

    @pytest.mark.asyncio
    async def test_results_are_enriched(self, search, memos, shaped_embedder):
        other = await memos.create_memo("u1", "far")
        await memos.create_memo("u1", "close", tags=["dairy"], related_memo_ids=[other.memo_id])

        result = await search.vector_search("u1", "query", limit=1)

        item = result.items[0]
        assert [t.name for t in item.tags] == ["dairy"]
        assert [r.memo_id for r in item.relations] == [other.memo_id]

    @pytest.mark.asyncio
    async def test_relation_enrichment_failure_degrades(self, search, memos, shaped_embedder, caplog):
        await memos.create_memo("u1", "close")
        memos.relations.get_related_memo_ids = AsyncMock(side_effect=RuntimeError("graph down"))

        with caplog.at_level(logging.WARNING):
            result = await search.vector_search("u1", "query")

        assert result.items[0].relations == []
        assert result.items[0].backlinks == []
        assert "graph down" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_store(self, search):
        result = await search.vector_search("u1", "anything")
        assert result.items == []
        assert result.pagination.total == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_rejects_empty_query(self, search, embedder, query):
        with pytest.raises(ValidationError):
            await search.vector_search("u1", query)
        assert embedder.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 1000)])
    async def test_rejects_bad_paging(self, search, page, limit):
        with pytest.raises(ValidationError):
            await search.vector_search("u1", "query", page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_embedding_failure(self, search, embedder):
        embedder.fail = True
        with pytest.raises(EmbeddingError):
            await search.vector_search("u1", "query")

    @pytest.mark.asyncio
    async def test_vector_search_failure(self, search, vectors):
        vectors.fail_on.add("search")
        with pytest.raises(StoreWriteError) as exc_info:
            await search.vector_search("u1", "query")
        assert exc_info.value.stage == "vector"


class TestFindRelatedMemos:
    """Tests for find_related_memos."""

    @pytest.mark.asyncio
    async def test_excludes_seed(self, search, memos, shaped_embedder):
        seed = await memos.create_memo("u1", "close")
        await memos.create_memo("u1", "mid")
        await memos.create_memo("u1", "far")

        result = await search.find_related_memos(seed.memo_id, "u1", limit=5)

        contents = [item.content for item in result.items]
        assert "close" not in contents
        assert contents == ["mid", "far"]

    @pytest.mark.asyncio
    async def test_paginates(self, search, memos, shaped_embedder):
        seed = await memos.create_memo("u1", "query")
        for text in ("close", "mid", "far"):
            await memos.create_memo("u1", text)

        page_two = await search.find_related_memos(seed.memo_id, "u1", limit=2, page=2)

        assert [item.content for item in page_two.items] == ["far"]
        assert page_two.pagination.total == 3

    @pytest.mark.asyncio
    async def test_missing_embedding(self, search):
        with pytest.raises(NotFoundError):
            await search.find_related_memos("m_missing", "u1")

    @pytest.mark.asyncio
    async def test_rejects_zero_limit(self, search, memos):
        seed = await memos.create_memo("u1", "note")
        with pytest.raises(ValidationError):
            await search.find_related_memos(seed.memo_id, "u1", limit=0)
