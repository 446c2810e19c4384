"""Directed memo-to-memo links."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select

from aimo.db.database import Database
from aimo.db.models import Memo, MemoRelation
from aimo.errors import NotFoundError, ValidationError
from aimo.ids import generate_relation_id

logger = logging.getLogger(__name__)


class MemoRelationRepository:
    """Relation edges ``source -> target`` owned by one user."""

    def __init__(self, database: Database):
        self.database = database

    async def create_relation(self, uid: str, source_memo_id: str, target_memo_id: str) -> str:
        """Link two memos; returns the relation id (existing one if already linked).

        Raises:
            ValidationError: If source and target are the same memo.
            NotFoundError: If the target memo does not exist for ``uid``.
        """
        if source_memo_id == target_memo_id:
            raise ValidationError("A memo cannot be related to itself")

        async with self.database.async_session() as session:
            target = await session.get(Memo, target_memo_id)
            if target is None or target.uid != uid:
                raise NotFoundError(f"Memo {target_memo_id} not found")

            existing = await session.scalar(
                select(MemoRelation).where(
                    MemoRelation.source_memo_id == source_memo_id,
                    MemoRelation.target_memo_id == target_memo_id,
                )
            )
            if existing is not None:
                return existing.relation_id

            relation = MemoRelation(
                relation_id=generate_relation_id(),
                uid=uid,
                source_memo_id=source_memo_id,
                target_memo_id=target_memo_id,
            )
            session.add(relation)
        return relation.relation_id

    async def replace_relations(
        self,
        uid: str,
        source_memo_id: str,
        target_memo_ids: Sequence[str],
    ) -> list[str]:
        """Make ``target_memo_ids`` the complete forward-link set of a memo.

        Self links and duplicates are dropped. Targets that are missing or owned
        by another user are skipped and logged. Returns the linked target ids.
        """
        targets = [t for t in dict.fromkeys(target_memo_ids) if t and t != source_memo_id]
        await self.delete_relations_by_source_memo(source_memo_id)

        linked: list[str] = []
        for target in targets:
            try:
                await self.create_relation(uid, source_memo_id, target)
            except NotFoundError as e:
                logger.warning(f"Skipping relation {source_memo_id} -> {target}: {e}")
                continue
            linked.append(target)
        return linked

    async def get_related_memo_ids(self, memo_id: str) -> list[str]:
        """Forward links, oldest first."""
        async with self.database.async_session() as session:
            rows = await session.scalars(
                select(MemoRelation.target_memo_id)
                .where(MemoRelation.source_memo_id == memo_id)
                .order_by(MemoRelation.created_at)
            )
            return list(rows)

    async def get_backlink_ids(self, memo_id: str) -> list[str]:
        """Memos that link to ``memo_id``, oldest first."""
        async with self.database.async_session() as session:
            rows = await session.scalars(
                select(MemoRelation.source_memo_id)
                .where(MemoRelation.target_memo_id == memo_id)
                .order_by(MemoRelation.created_at)
            )
            return list(rows)

    async def delete_relations_by_source_memo(self, memo_id: str) -> int:
        async with self.database.transaction(operation="delete_relations", source=memo_id) as session:
            result = await session.execute(
                delete(MemoRelation).where(MemoRelation.source_memo_id == memo_id)
            )
        return result.rowcount or 0

    async def delete_relations_by_target_memo(self, memo_id: str) -> int:
        async with self.database.transaction(operation="delete_relations", target=memo_id) as session:
            result = await session.execute(
                delete(MemoRelation).where(MemoRelation.target_memo_id == memo_id)
            )
        return result.rowcount or 0
