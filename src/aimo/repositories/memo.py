"""Memo repository: the hybrid write path.

A memo lives in two stores. The relational row is written first inside a
transaction and is the source of truth; the embedding row is written to the
vector store afterwards. There is no distributed transaction: if the vector
write fails the relational row stays committed and StoreWriteError (stage
``vector``) reaches the caller. ``VectorReconciler`` repairs such memos later.

Tag usage counts and relation edges are side effects. Their failures are
logged at WARNING and never fail the memo operation.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Literal, Protocol

from sqlalchemy import ColumnElement, asc, delete, desc, func, select

from aimo.db.constants import UNCATEGORIZED_CATEGORY_ID
from aimo.db.models import Memo, utc_now
from aimo.db.row_mapper import ensure_utc, memo_to_record
from aimo.errors import AimoError, EmbeddingError, NotFoundError, StoreWriteError, ValidationError
from aimo.ids import generate_memo_id
from aimo.models import (
    AttachmentDto,
    MemoDetail,
    MemoPage,
    MemoRecord,
    MemoVectorRecord,
    Pagination,
    SearchFilters,
    SortField,
    SortOrder,
    TagDto,
)
from aimo.repositories.relation import MemoRelationRepository
from aimo.repositories.tag import TagRepository
from aimo.storage import StorageContext

logger = logging.getLogger(__name__)


class AttachmentResolver(Protocol):
    """Looks up attachment metadata in the blob store."""

    async def resolve(self, attachment_ids: Sequence[str]) -> list[AttachmentDto]: ...


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@asynccontextmanager
async def store_stage(
    stage: Literal["relational", "vector"],
    operation: str,
    memo_id: str | None = None,
) -> AsyncIterator[None]:
    """Wrap store exceptions in StoreWriteError; aimo errors pass through."""
    try:
        yield
    except AimoError:
        raise
    except Exception as e:
        logger.error(f"{operation} failed in {stage} store (memo={memo_id}): {e}")
        raise StoreWriteError(
            f"{operation} failed in {stage} store: {e}",
            stage=stage,
            operation=operation,
            memo_id=memo_id,
        ) from e


def _unique(values: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


class MemoRepository:
    """Create, update, delete and read memos across both stores."""

    def __init__(
        self,
        storage: StorageContext,
        attachment_resolver: AttachmentResolver | None = None,
    ):
        self.storage = storage
        self.attachment_resolver = attachment_resolver
        self._tags: TagRepository | None = None
        self._relations: MemoRelationRepository | None = None

    @property
    def tags(self) -> TagRepository:
        if self._tags is None:
            self._tags = TagRepository(self.storage.require_database())
        return self._tags

    @property
    def relations(self) -> MemoRelationRepository:
        if self._relations is None:
            self._relations = MemoRelationRepository(self.storage.require_database())
        return self._relations

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_memo(
        self,
        uid: str,
        content: str,
        *,
        category_id: str | None = None,
        tags: Sequence[str] | None = None,
        tag_ids: Sequence[str] | None = None,
        attachment_ids: Sequence[str] | None = None,
        related_memo_ids: Sequence[str] | None = None,
        is_public: bool = False,
        source: str | None = None,
        created_at: datetime | None = None,
    ) -> MemoDetail:
        """Create a memo in both stores.

        Raises:
            ValidationError: Empty content.
            EmbeddingError: Embedding failed; nothing was written.
            StoreWriteError: ``stage="relational"`` if the insert failed,
                ``stage="vector"`` if the memo row committed but its embedding
                could not be stored.
        """
        self._check_content(content)
        database = self.storage.require_database()
        vectors = self.storage.require_vectors()

        embedding = await self.embed_text(content)
        resolved_tag_ids = await self._resolve_tag_ids(uid, tags, tag_ids)

        memo_id = generate_memo_id()
        now = ensure_utc(created_at) if created_at else utc_now()
        memo = Memo(
            memo_id=memo_id,
            uid=uid,
            content=content,
            category_id=category_id,
            source=source,
            tag_ids=resolved_tag_ids,
            attachment_ids=list(attachment_ids or []),
            is_public=is_public,
            created_at=now,
            updated_at=now,
        )
        async with store_stage("relational", "create_memo", memo_id):
            async with database.transaction(operation="create_memo", memo_id=memo_id) as session:
                session.add(memo)
        record = memo_to_record(memo)
        logger.info(f"Created memo {memo_id} for {uid}")

        async with store_stage("vector", "create_memo", memo_id):
            await vectors.add([MemoVectorRecord(memo_id=memo_id, embedding=embedding)])

        if related_memo_ids:
            await self._replace_relations_best_effort(uid, memo_id, related_memo_ids)
        await self._adjust_tag_usage(uid, memo_id, added=resolved_tag_ids, removed=[])

        return await self._materialize(record)

    async def update_memo(
        self,
        memo_id: str,
        uid: str,
        *,
        content: str | None = None,
        category_id: str | None = UNSET,
        tags: Sequence[str] | None = None,
        tag_ids: Sequence[str] | None = None,
        attachment_ids: Sequence[str] | None = None,
        related_memo_ids: Sequence[str] | None = None,
        is_public: bool | None = None,
        source: str | None = UNSET,
    ) -> MemoDetail:
        """Update a memo; re-embeds only when the content changed.

        ``category_id=None`` clears the category; leaving it out keeps it.
        Passing ``tags`` and/or ``tag_ids`` replaces the memo's tag set.
        """
        database = self.storage.require_database()
        vectors = self.storage.require_vectors()
        existing = await self._get_record(memo_id, uid, "update_memo")

        content_changed = False
        embedding: list[float] | None = None
        if content is not None:
            self._check_content(content)
            content_changed = content != existing.content
            if content_changed:
                embedding = await self.embed_text(content)

        new_tag_ids = existing.tag_ids
        if tags is not None or tag_ids is not None:
            new_tag_ids = await self._resolve_tag_ids(uid, tags, tag_ids)

        async with store_stage("relational", "update_memo", memo_id):
            async with database.transaction(operation="update_memo", memo_id=memo_id) as session:
                memo = await session.get(Memo, memo_id)
                if memo is None or memo.uid != uid:
                    raise NotFoundError(f"Memo {memo_id} not found")
                if content is not None:
                    memo.content = content
                if category_id is not UNSET:
                    memo.category_id = category_id
                if source is not UNSET:
                    memo.source = source
                if attachment_ids is not None:
                    memo.attachment_ids = list(attachment_ids)
                if is_public is not None:
                    memo.is_public = is_public
                memo.tag_ids = list(new_tag_ids)
                memo.updated_at = self._next_updated_at(memo)
        record = memo_to_record(memo)
        logger.info(f"Updated memo {memo_id}")

        if embedding is not None:
            async with store_stage("vector", "update_memo", memo_id):
                await vectors.upsert(MemoVectorRecord(memo_id=memo_id, embedding=embedding))
            logger.debug(f"Re-embedded memo {memo_id}")

        old, new = set(existing.tag_ids), set(new_tag_ids)
        await self._adjust_tag_usage(
            uid,
            memo_id,
            added=[t for t in new_tag_ids if t not in old],
            removed=[t for t in existing.tag_ids if t not in new],
        )
        if related_memo_ids is not None:
            await self._replace_relations_best_effort(uid, memo_id, related_memo_ids)

        return await self._materialize(record)

    async def update_tags(
        self,
        memo_id: str,
        uid: str,
        tags: Sequence[str] | None = None,
        tag_ids: Sequence[str] | None = None,
    ) -> MemoDetail:
        """Replace only the tags of a memo."""
        return await self.update_memo(memo_id, uid, tags=tags or [], tag_ids=tag_ids or [])

    async def delete_memo(self, memo_id: str, uid: str) -> bool:
        """Delete a memo from both stores.

        Raises:
            NotFoundError: Unknown memo or owned by another user.
            StoreWriteError: Relational delete or vector delete failed.
        """
        database = self.storage.require_database()
        vectors = self.storage.require_vectors()
        existing = await self._get_record(memo_id, uid, "delete_memo")

        async with store_stage("relational", "delete_memo", memo_id):
            async with database.transaction(operation="delete_memo", memo_id=memo_id) as session:
                await session.execute(delete(Memo).where(Memo.memo_id == memo_id))
        logger.info(f"Deleted memo {memo_id}")

        async with store_stage("vector", "delete_memo", memo_id):
            await vectors.delete_by_memo_id(memo_id)

        for cleanup in (
            self.relations.delete_relations_by_source_memo,
            self.relations.delete_relations_by_target_memo,
        ):
            try:
                await cleanup(memo_id)
            except Exception as e:
                logger.warning(f"Relation cleanup for deleted memo {memo_id} failed: {e}")
        await self._adjust_tag_usage(uid, memo_id, added=[], removed=existing.tag_ids)
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_memo_by_id(self, memo_id: str, uid: str) -> MemoDetail:
        record = await self._get_record(memo_id, uid, "get_memo")
        return await self._materialize(record)

    async def get_memos_by_ids(self, memo_ids: Sequence[str], uid: str) -> list[MemoDetail]:
        """Memos in the order of ``memo_ids``; unknown or foreign ids are dropped."""
        records = await self.find_by_ids(uid, memo_ids)
        return await self.enrich_records(records, uid)

    async def find_by_ids(
        self,
        uid: str,
        memo_ids: Sequence[str],
        filters: SearchFilters | None = None,
    ) -> list[MemoRecord]:
        """Scalar rows for ``memo_ids`` owned by ``uid`` matching ``filters``.

        Result order follows ``memo_ids``.
        """
        ids = _unique(memo_ids)
        if not ids:
            return []
        database = self.storage.require_database()
        conditions = self._conditions(uid, filters)
        conditions.append(Memo.memo_id.in_(ids))

        async with store_stage("relational", "find_by_ids"):
            async with database.async_session() as session:
                rows = await session.scalars(select(Memo).where(*conditions))
                by_id = {memo.memo_id: memo_to_record(memo) for memo in rows}
        return [by_id[i] for i in ids if i in by_id]

    async def list_memos(
        self,
        uid: str,
        page: int = 1,
        limit: int = 20,
        filters: SearchFilters | None = None,
        sort_by: SortField = "created_at",
        sort_order: SortOrder = "desc",
        search: str | None = None,
        tag_names: Sequence[str] | None = None,
    ) -> MemoPage:
        """Page through a user's memos with scalar filters.

        ``tag_names`` keeps memos carrying all of the named tags.
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        database = self.storage.require_database()
        conditions = self._conditions(uid, filters)
        if search and search.strip():
            conditions.append(Memo.content.ilike(f"%{search.strip()}%"))

        sort_column = Memo.updated_at if sort_by == "updated_at" else Memo.created_at
        direction = asc if sort_order == "asc" else desc
        order = (direction(sort_column), direction(Memo.memo_id))
        offset = (page - 1) * limit

        required: set[str] | None = None
        if tag_names:
            async with store_stage("relational", "list_memos"):
                required = await self._required_tag_ids(uid, tag_names)
            if required is None:
                return MemoPage(items=[], pagination=Pagination.build(0, page, limit))

        async with store_stage("relational", "list_memos"):
            async with database.async_session() as session:
                if required is not None:
                    rows = await session.execute(
                        select(Memo.memo_id, Memo.tag_ids).where(*conditions).order_by(*order)
                    )
                    matching = [
                        memo_id
                        for memo_id, ids in rows
                        if required.issubset(set(ids or []))
                    ]
                    total = len(matching)
                    page_ids = matching[offset : offset + limit]
                    memos = await session.scalars(select(Memo).where(Memo.memo_id.in_(page_ids)))
                    by_id = {m.memo_id: memo_to_record(m) for m in memos}
                    records = [by_id[i] for i in page_ids if i in by_id]
                else:
                    total = await session.scalar(
                        select(func.count()).select_from(Memo).where(*conditions)
                    ) or 0
                    memos = await session.scalars(
                        select(Memo).where(*conditions).order_by(*order).offset(offset).limit(limit)
                    )
                    records = [memo_to_record(m) for m in memos]

        items = await self.enrich_records(records, uid)
        return MemoPage(items=items, pagination=Pagination.build(total, page, limit))

    async def count_memos(self, uid: str) -> int:
        database = self.storage.require_database()
        async with store_stage("relational", "count_memos"):
            async with database.async_session() as session:
                count = await session.scalar(
                    select(func.count()).select_from(Memo).where(Memo.uid == uid)
                )
        return int(count or 0)

    async def scan_records(self, after: str | None = None, limit: int = 200) -> list[MemoRecord]:
        """All users' memos in ``memo_id`` order, starting after ``after``."""
        database = self.storage.require_database()
        query = select(Memo).order_by(Memo.memo_id).limit(limit)
        if after is not None:
            query = query.where(Memo.memo_id > after)
        async with store_stage("relational", "scan_records"):
            async with database.async_session() as session:
                return [memo_to_record(m) for m in await session.scalars(query)]

    async def existing_memo_ids(self, memo_ids: Sequence[str]) -> set[str]:
        """Subset of ``memo_ids`` that still have a relational row."""
        ids = _unique(memo_ids)
        if not ids:
            return set()
        database = self.storage.require_database()
        async with store_stage("relational", "existing_memo_ids"):
            async with database.async_session() as session:
                rows = await session.scalars(select(Memo.memo_id).where(Memo.memo_id.in_(ids)))
                return set(rows)

    # =========================================================================
    # Enrichment
    # =========================================================================

    async def enrich_records(self, records: Sequence[MemoRecord], uid: str) -> list[MemoDetail]:
        """Attach tags (one batch call), attachments and relation links (per memo).

        Enrichment failures degrade to empty fields and are logged.
        """
        if not records:
            return []

        tags_by_id: dict[str, TagDto] = {}
        all_tag_ids = _unique([t for r in records for t in r.tag_ids])
        if all_tag_ids:
            try:
                found = await self.tags.get_tags_by_ids(uid, all_tag_ids)
                tags_by_id = {t.tag_id: t for t in found}
            except Exception as e:
                logger.warning(f"Tag enrichment failed for {len(records)} memos: {e}")

        details = []
        for record in records:
            relations, backlinks = await self._links(record.memo_id, uid)
            details.append(
                MemoDetail(
                    **record.model_dump(),
                    tags=[tags_by_id[t] for t in record.tag_ids if t in tags_by_id],
                    attachments=await self._attachments(record),
                    relations=relations,
                    backlinks=backlinks,
                )
            )
        return details

    async def _links(self, memo_id: str, uid: str) -> tuple[list[MemoRecord], list[MemoRecord]]:
        try:
            forward_ids = await self.relations.get_related_memo_ids(memo_id)
            backlink_ids = await self.relations.get_backlink_ids(memo_id)
            return (
                await self.find_by_ids(uid, forward_ids),
                await self.find_by_ids(uid, backlink_ids),
            )
        except Exception as e:
            logger.warning(f"Relation enrichment failed for memo {memo_id}: {e}")
            return [], []

    async def _attachments(self, record: MemoRecord) -> list[AttachmentDto]:
        fallback = [AttachmentDto(attachment_id=a) for a in record.attachment_ids]
        if not record.attachment_ids or self.attachment_resolver is None:
            return fallback
        try:
            return await self.attachment_resolver.resolve(record.attachment_ids)
        except Exception as e:
            logger.warning(f"Attachment lookup failed for memo {record.memo_id}: {e}")
            return fallback

    async def _materialize(self, record: MemoRecord) -> MemoDetail:
        return (await self.enrich_records([record], record.uid))[0]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_content(content: str | None) -> None:
        if not content or not content.strip():
            raise ValidationError("Memo content must not be empty")

    async def embed_text(self, text: str) -> list[float]:
        """Embed text; any failure surfaces as EmbeddingError before store writes."""
        embedder = self.storage.require_embedder()
        try:
            embedding = await embedder.embed(text)
        except AimoError:
            raise
        except Exception as e:
            logger.error(f"Embedding failed: {e}")
            raise EmbeddingError(f"Embedding failed: {e}") from e

        return self._check_dimension(embedding)

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed several texts with batched requests, in input order."""
        if not texts:
            return []
        embedder = self.storage.require_embedder()
        try:
            embeddings = await embedder.embed_batch(list(texts))
        except AimoError:
            raise
        except Exception as e:
            logger.error(f"Batch embedding of {len(texts)} texts failed: {e}")
            raise EmbeddingError(f"Batch embedding failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(f"Got {len(embeddings)} embeddings for {len(texts)} texts")
        return [self._check_dimension(e) for e in embeddings]

    def _check_dimension(self, embedding: Sequence[float]) -> list[float]:
        expected = self.storage.config.embedding_dimension
        if len(embedding) != expected:
            raise EmbeddingError(f"Embedding has dimension {len(embedding)}, expected {expected}")
        return list(embedding)

    async def _get_record(self, memo_id: str, uid: str, operation: str) -> MemoRecord:
        database = self.storage.require_database()
        async with store_stage("relational", operation, memo_id):
            async with database.async_session() as session:
                memo = await session.get(Memo, memo_id)
                record = memo_to_record(memo) if memo is not None and memo.uid == uid else None
        if record is None:
            raise NotFoundError(f"Memo {memo_id} not found")
        return record

    @staticmethod
    def _next_updated_at(memo: Memo) -> datetime:
        """Current time, nudged forward so ``updated_at`` strictly advances."""
        floor = max(ensure_utc(memo.created_at), ensure_utc(memo.updated_at))
        return max(utc_now(), floor + timedelta(microseconds=1))

    @staticmethod
    def _conditions(uid: str, filters: SearchFilters | None) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [Memo.uid == uid]
        if filters is None:
            return conditions
        if filters.category_id == UNCATEGORIZED_CATEGORY_ID:
            conditions.append(Memo.category_id.is_(None))
        elif filters.category_id:
            conditions.append(Memo.category_id == filters.category_id)
        if filters.start_date:
            conditions.append(Memo.created_at >= filters.start_date)
        if filters.end_date:
            conditions.append(Memo.created_at <= filters.end_date)
        return conditions

    async def _required_tag_ids(self, uid: str, tag_names: Sequence[str]) -> set[str] | None:
        """Tag ids for all names, or None if any name is unknown."""
        wanted = _unique([n.strip().lower() for n in tag_names if n and n.strip()])
        found = await self.tags.find_tag_ids_by_names(uid, wanted)
        if any(name not in found for name in wanted):
            return None
        return set(found.values())

    async def _resolve_tag_ids(
        self,
        uid: str,
        tags: Sequence[str] | None,
        tag_ids: Sequence[str] | None,
    ) -> list[str]:
        """Explicit ids owned by ``uid`` plus ids for tag names.

        Foreign or unknown ids are dropped; names that fail to resolve are skipped.
        """
        resolved: list[str] = []
        if tag_ids:
            try:
                resolved = await self.tags.owned_tag_ids(uid, tag_ids)
            except Exception as e:
                logger.warning(f"Could not verify tag ids {list(tag_ids)} for {uid}: {e}")
            dropped = [t for t in tag_ids if t not in resolved]
            if dropped:
                logger.warning(f"Ignoring tag ids not owned by {uid}: {dropped}")
        for name in tags or []:
            try:
                resolved.extend(await self.tags.resolve_tag_names_to_ids(uid, [name]))
            except Exception as e:
                logger.warning(f"Could not resolve tag {name!r} for {uid}: {e}")
        return _unique(resolved)

    async def _adjust_tag_usage(
        self,
        uid: str,
        memo_id: str,
        added: Sequence[str],
        removed: Sequence[str],
    ) -> None:
        if added:
            try:
                await self.tags.increment_usage_count(uid, added)
            except Exception as e:
                logger.warning(f"Tag usage increment failed for memo {memo_id} {list(added)}: {e}")
        if removed:
            try:
                await self.tags.decrement_usage_count(uid, removed)
            except Exception as e:
                logger.warning(f"Tag usage decrement failed for memo {memo_id} {list(removed)}: {e}")

    async def _replace_relations_best_effort(
        self,
        uid: str,
        memo_id: str,
        related_memo_ids: Sequence[str],
    ) -> None:
        try:
            await self.relations.replace_relations(uid, memo_id, related_memo_ids)
        except Exception as e:
            logger.warning(f"Relation update failed for memo {memo_id}: {e}")
