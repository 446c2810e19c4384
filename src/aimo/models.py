"""Data models for aimo.

These are the typed shapes that leave the storage layer. Rows coming out of the
relational store or the vector store are converted into these exactly once, in
``aimo.db.row_mapper``.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


class TagDto(BaseModel):
    """Tag as returned to callers."""

    tag_id: str
    name: str
    color: str | None = None
    usage_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AttachmentDto(BaseModel):
    """Attachment reference. Only ``attachment_id`` is guaranteed."""

    attachment_id: str
    filename: str | None = None
    url: str | None = None
    mime_type: str | None = None
    size: int | None = None


class MemoRecord(BaseModel):
    """Scalar memo row (relational store)."""

    model_config = ConfigDict(frozen=False)

    memo_id: str = Field(description="Stable join key shared with the vector store")
    uid: str = Field(description="Owner user id")
    content: str
    category_id: str | None = None
    source: str | None = None
    tag_ids: list[str] = Field(default_factory=list)
    attachment_ids: list[str] = Field(default_factory=list)
    is_public: bool = False
    created_at: datetime
    updated_at: datetime


class MemoDetail(MemoRecord):
    """Memo materialized with tag/attachment DTOs and relation links."""

    tags: list[TagDto] = Field(default_factory=list)
    attachments: list[AttachmentDto] = Field(default_factory=list)
    relations: list[MemoRecord] = Field(default_factory=list, description="Forward links")
    backlinks: list[MemoRecord] = Field(default_factory=list, description="Memos linking here")


class ScoredMemo(MemoDetail):
    """Search hit with a similarity score in [0, 1]."""

    relevance_score: float = Field(ge=0.0, le=1.0)


class Pagination(BaseModel):
    """Paging block returned alongside list/search results."""

    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit > 0 else 0
        return cls(total=total, page=page, limit=limit, total_pages=total_pages)


class MemoPage(BaseModel):
    """Page of memos."""

    items: list[MemoDetail]
    pagination: Pagination


class ScoredMemoPage(BaseModel):
    """Page of search hits ordered by relevance (descending)."""

    items: list[ScoredMemo]
    pagination: Pagination

    @classmethod
    def empty(cls, page: int, limit: int) -> "ScoredMemoPage":
        return cls(items=[], pagination=Pagination(total=0, page=page, limit=limit, total_pages=0))


class SearchFilters(BaseModel):
    """Scalar filters applied in the relational store."""

    category_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


SortField = Literal["created_at", "updated_at"]
SortOrder = Literal["asc", "desc"]


class MemoVectorRecord(BaseModel):
    """Embedding row (vector store)."""

    memo_id: str
    embedding: list[float]


@dataclass(frozen=True)
class VectorHit:
    """Nearest-neighbour result: memo id plus cosine distance (0..2)."""

    memo_id: str
    distance: float

    @property
    def relevance_score(self) -> float:
        """Similarity in [0, 1] derived from the distance."""
        return max(0.0, min(1.0, 1.0 - self.distance / 2.0))


class TableMigrationState(BaseModel):
    """Version bookkeeping for one logical vector-store table."""

    table_name: str
    current_version: int = Field(ge=0)
    last_migrated_at: datetime = Field(default_factory=_utcnow)
