"""Search coordinator: the hybrid read path.

Ranking comes from the vector store, materialization from the relational
store. The vector search is not filtered by user; the ``uid`` and scalar
filters are applied to the page window afterwards. A page can therefore hold
fewer than ``limit`` items even when it is not the last one, and ``total``
only counts matches among the neighbours fetched so far.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from aimo.errors import NotFoundError, ValidationError
from aimo.models import (
    MemoRecord,
    Pagination,
    ScoredMemo,
    ScoredMemoPage,
    SearchFilters,
    VectorHit,
)
from aimo.repositories.memo import MemoRepository, store_stage
from aimo.storage import StorageContext

logger = logging.getLogger(__name__)


class SearchCoordinator:
    """Semantic search over a user's memos."""

    def __init__(self, storage: StorageContext, memos: MemoRepository):
        self.storage = storage
        self.memos = memos

    def _check_paging(self, page: int, limit: int) -> None:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= self.storage.config.max_search_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.storage.config.max_search_limit}"
            )

    async def vector_search(
        self,
        uid: str,
        query: str,
        page: int = 1,
        limit: int | None = None,
        filters: SearchFilters | None = None,
    ) -> ScoredMemoPage:
        """Memos of ``uid`` most similar to ``query``, by relevance descending.

        Raises:
            ValidationError: Empty query or bad paging.
            EmbeddingError: The query could not be embedded.
            StoreWriteError: A store call failed.
        """
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty")
        if limit is None:
            limit = self.storage.config.default_search_limit
        self._check_paging(page, limit)

        embedding = await self.memos.embed_text(query)
        offset = (page - 1) * limit
        vectors = self.storage.require_vectors()
        async with store_stage("vector", "vector_search"):
            hits = await vectors.search(embedding, limit=limit + offset)

        return await self._build_page(uid, hits, page, limit, filters)

    async def find_related_memos(
        self,
        memo_id: str,
        uid: str,
        limit: int | None = None,
        page: int = 1,
        filters: SearchFilters | None = None,
    ) -> ScoredMemoPage:
        """Memos similar to an existing memo, excluding the memo itself.

        Raises:
            NotFoundError: The memo has no stored embedding.
        """
        if limit is None:
            limit = self.storage.config.related_memo_limit
        self._check_paging(page, limit)
        vectors = self.storage.require_vectors()

        async with store_stage("vector", "find_related_memos", memo_id):
            seed = await vectors.get(memo_id)
        if seed is None:
            raise NotFoundError(f"No embedding stored for memo {memo_id}")

        offset = (page - 1) * limit
        async with store_stage("vector", "find_related_memos", memo_id):
            hits = await vectors.search(
                seed.embedding, limit=limit + offset, exclude_memo_id=memo_id
            )
        hits = [h for h in hits if h.memo_id != memo_id]

        return await self._build_page(uid, hits, page, limit, filters)

    async def _build_page(
        self,
        uid: str,
        hits: Sequence[VectorHit],
        page: int,
        limit: int,
        filters: SearchFilters | None,
    ) -> ScoredMemoPage:
        if not hits:
            return ScoredMemoPage.empty(page, limit)

        offset = (page - 1) * limit
        window = hits[offset : offset + limit]
        distances = {h.memo_id: h for h in hits}

        # One relational query over every fetched neighbour gives both the
        # window's rows and the approximate total.
        matching: list[MemoRecord] = await self.memos.find_by_ids(
            uid, [h.memo_id for h in hits], filters
        )
        total = len(matching)
        window_ids = {h.memo_id for h in window}
        records = [r for r in matching if r.memo_id in window_ids]

        details = await self.memos.enrich_records(records, uid)
        items = [
            ScoredMemo(
                **detail.model_dump(),
                relevance_score=distances[detail.memo_id].relevance_score,
            )
            for detail in details
        ]
        items.sort(key=lambda item: item.relevance_score, reverse=True)

        logger.debug(
            f"Search page {page}: {len(hits)} neighbours, {len(items)} items, total {total}"
        )
        return ScoredMemoPage(items=items, pagination=Pagination.build(total, page, limit))
