"""SQLAlchemy models for the aimo relational store.

Scalar memo fields live here; embeddings live in the vector store and are joined
back by ``memo_id``. Types are kept portable (JSON lists, string ids) so the same
schema runs on PostgreSQL and SQLite.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


class Category(Base):
    """User-defined memo category."""

    __tablename__ = "categories"

    category_id: Mapped[str] = mapped_column(String(191), primary_key=True)
    uid: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return f"<Category {self.category_id} {self.name}>"


class Memo(Base):
    """Memo scalar data. ``tag_ids`` and ``attachment_ids`` are JSON arrays."""

    __tablename__ = "memos"

    memo_id: Mapped[str] = mapped_column(String(191), primary_key=True)
    uid: Mapped[str] = mapped_column(String(191), nullable=False)
    category_id: Mapped[str | None] = mapped_column(
        String(191),
        ForeignKey("categories.category_id", ondelete="SET NULL"),
        nullable=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str | None] = mapped_column(String(500), nullable=True)
    attachment_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    tag_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_memos_uid", "uid"),
        Index("ix_memos_category_id", "category_id"),
        Index("ix_memos_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Memo {self.memo_id}>"


class Tag(Base):
    """Per-user tag with a denormalized usage count."""

    __tablename__ = "tags"

    tag_id: Mapped[str] = mapped_column(String(191), primary_key=True)
    uid: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<Tag {self.name} ({self.usage_count})>"


class MemoRelation(Base):
    """Directed edge between memos: source -> target."""

    __tablename__ = "memo_relations"

    relation_id: Mapped[str] = mapped_column(String(191), primary_key=True)
    uid: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    source_memo_id: Mapped[str] = mapped_column(
        String(191),
        ForeignKey("memos.memo_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_memo_id: Mapped[str] = mapped_column(
        String(191),
        ForeignKey("memos.memo_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("source_memo_id", "target_memo_id", name="uq_memo_relation_pair"),
    )

    def __repr__(self) -> str:
        return f"<MemoRelation {self.source_memo_id} -> {self.target_memo_id}>"
