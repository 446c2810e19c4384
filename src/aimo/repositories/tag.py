"""Tag lookups and usage-count bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import case, func, select, update

from aimo.db.database import Database
from aimo.db.models import Tag, utc_now
from aimo.db.row_mapper import tag_to_dto
from aimo.ids import generate_tag_id
from aimo.models import TagDto

logger = logging.getLogger(__name__)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


class TagRepository:
    """Per-user tags. Names are unique per user, case-insensitively."""

    def __init__(self, database: Database):
        self.database = database

    async def resolve_tag_names_to_ids(self, uid: str, names: Sequence[str]) -> list[str]:
        """Find or create a tag for each name; blank names are skipped.

        Returns tag ids in input order without duplicates.
        """
        tag_ids: list[str] = []
        async with self.database.transaction(operation="resolve_tags", uid=uid) as session:
            for raw in names:
                name = (raw or "").strip()
                if not name:
                    continue
                existing = await session.scalar(
                    select(Tag).where(Tag.uid == uid, func.lower(Tag.name) == name.lower())
                )
                if existing is None:
                    existing = Tag(tag_id=generate_tag_id(), uid=uid, name=name, usage_count=0)
                    session.add(existing)
                    await session.flush()
                    logger.debug(f"Created tag {existing.tag_id} ({name}) for {uid}")
                tag_ids.append(existing.tag_id)
        return _unique(tag_ids)

    async def find_tag_ids_by_names(self, uid: str, names: Sequence[str]) -> dict[str, str]:
        """Existing tags by lower-cased name. Never creates tags."""
        lowered = _unique(n.strip().lower() for n in names if n and n.strip())
        if not lowered:
            return {}
        async with self.database.async_session() as session:
            rows = await session.scalars(
                select(Tag).where(Tag.uid == uid, func.lower(Tag.name).in_(lowered))
            )
            return {tag.name.lower(): tag.tag_id for tag in rows}

    async def owned_tag_ids(self, uid: str, tag_ids: Sequence[str]) -> list[str]:
        """The subset of ``tag_ids`` that belongs to ``uid``, in input order."""
        ids = _unique(tag_ids)
        if not ids:
            return []
        async with self.database.async_session() as session:
            rows = await session.scalars(
                select(Tag.tag_id).where(Tag.uid == uid, Tag.tag_id.in_(ids))
            )
            owned = set(rows)
        return [tag_id for tag_id in ids if tag_id in owned]

    async def get_tags_by_ids(self, uid: str, tag_ids: Sequence[str]) -> list[TagDto]:
        """Tags of ``uid`` in the order of ``tag_ids``; unknown or foreign ids are dropped."""
        ids = _unique(tag_ids)
        if not ids:
            return []
        async with self.database.async_session() as session:
            rows = await session.scalars(select(Tag).where(Tag.uid == uid, Tag.tag_id.in_(ids)))
            by_id = {tag.tag_id: tag_to_dto(tag) for tag in rows}
        return [by_id[tag_id] for tag_id in ids if tag_id in by_id]

    async def increment_usage_count(self, uid: str, tag_ids: Sequence[str]) -> None:
        ids = _unique(tag_ids)
        if not ids:
            return
        async with self.database.transaction(operation="increment_tag_usage", uid=uid) as session:
            await session.execute(
                update(Tag)
                .where(Tag.uid == uid, Tag.tag_id.in_(ids))
                .values(usage_count=Tag.usage_count + 1, updated_at=utc_now())
            )

    async def decrement_usage_count(self, uid: str, tag_ids: Sequence[str]) -> None:
        """Decrement usage counts, never below zero."""
        ids = _unique(tag_ids)
        if not ids:
            return
        async with self.database.transaction(operation="decrement_tag_usage", uid=uid) as session:
            await session.execute(
                update(Tag)
                .where(Tag.uid == uid, Tag.tag_id.in_(ids))
                .values(
                    usage_count=case((Tag.usage_count > 0, Tag.usage_count - 1), else_=0),
                    updated_at=utc_now(),
                )
            )
