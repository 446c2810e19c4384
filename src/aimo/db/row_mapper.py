"""Row mapping utilities for aimo store records.

All conversions from raw store rows (ORM objects, asyncpg records) into typed
models happen here, so callers never touch untyped rows.
"""

import json
import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from aimo.db.models import Memo, Tag
from aimo.models import MemoRecord, MemoVectorRecord, TableMigrationState, TagDto, VectorHit


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def decode_string_list(value: Any) -> list[str]:
    """Decode a list-of-strings column.

    Accepts a list, a JSON-encoded string or ``None``. Anything that is not a
    list of strings after decoding yields an empty list.
    """
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item is not None]


def decode_embedding(value: Any) -> list[float]:
    """Decode an embedding column into a plain list of floats.

    pgvector hands back numpy arrays, text-protocol rows hand back ``"[1,2,3]"``.

    Raises:
        ValueError: If the value cannot be read as a finite float vector.
    """
    if value is None:
        raise ValueError("Embedding is missing")
    if hasattr(value, "tolist"):
        value = value.tolist()
    elif isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Embedding is not a vector literal: {e}") from e
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValueError(f"Embedding has unsupported type {type(value).__name__}")

    floats = [float(x) for x in value]
    if not all(math.isfinite(x) for x in floats):
        raise ValueError("Embedding contains non-finite values")
    return floats


def memo_to_record(memo: Memo) -> MemoRecord:
    """Convert a Memo ORM row to a MemoRecord."""
    return MemoRecord(
        memo_id=memo.memo_id,
        uid=memo.uid,
        content=memo.content,
        category_id=memo.category_id,
        source=memo.source,
        tag_ids=decode_string_list(memo.tag_ids),
        attachment_ids=decode_string_list(memo.attachment_ids),
        is_public=bool(memo.is_public),
        created_at=ensure_utc(memo.created_at),
        updated_at=ensure_utc(memo.updated_at),
    )


def tag_to_dto(tag: Tag) -> TagDto:
    """Convert a Tag ORM row to a TagDto."""
    return TagDto(
        tag_id=tag.tag_id,
        name=tag.name,
        color=tag.color,
        usage_count=tag.usage_count or 0,
        created_at=ensure_utc(tag.created_at),
        updated_at=ensure_utc(tag.updated_at),
    )


def row_to_vector_record(row: Mapping[str, Any]) -> MemoVectorRecord:
    """Convert a vector-store row to a MemoVectorRecord."""
    return MemoVectorRecord(
        memo_id=str(row["memo_id"]),
        embedding=decode_embedding(row["embedding"]),
    )


def row_to_vector_hit(row: Mapping[str, Any]) -> VectorHit:
    """Convert a ``memo_id, distance`` search row to a VectorHit."""
    return VectorHit(memo_id=str(row["memo_id"]), distance=float(row["distance"]))


def row_to_migration_state(row: Mapping[str, Any]) -> TableMigrationState:
    """Convert a ``table_migrations`` row to a TableMigrationState."""
    return TableMigrationState(
        table_name=row["table_name"],
        current_version=int(row["current_version"]),
        last_migrated_at=ensure_utc(row["last_migrated_at"]),
    )
